"""
Bracket Store: load a tournament's records into id-keyed maps and write
them back in one commit.

The engines only ever see the maps; this module is the single place that
talks to the session for a build or an update.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable

from sqlalchemy.orm.attributes import flag_modified
from sqlmodel import Session, select

from bracket_service.exceptions import RecordNotFoundError
from bracket_service.models.match import Match
from bracket_service.models.playing_field import PlayingField
from bracket_service.models.team import Team
from bracket_service.models.tournament import Tournament
from bracket_service.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

MATCH_JSON_COLUMNS = ("set_results", "team1_points", "team2_points")


@dataclass
class BracketRecords:
    tournament: Tournament
    matches: Dict[str, Match] = field(default_factory=dict)
    teams: Dict[str, Team] = field(default_factory=dict)
    fields: Dict[str, PlayingField] = field(default_factory=dict)


def load_records(session: Session, tournament_id: str) -> BracketRecords:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise RecordNotFoundError("Tournament not found")

    teams = session.exec(
        select(Team).where(Team.tournament_id == tournament_id).order_by(Team.seed.desc(), Team.name)
    ).all()
    fields = session.exec(
        select(PlayingField).where(PlayingField.tournament_id == tournament_id).order_by(PlayingField.field_number)
    ).all()
    matches = session.exec(
        select(Match).where(Match.tournament_id == tournament_id).order_by(Match.division, Match.match_number)
    ).all()

    return BracketRecords(
        tournament=tournament,
        matches={m.id: m for m in matches},
        teams={t.id: t for t in teams},
        fields={f.id: f for f in fields},
    )


def save_records(session: Session, records: BracketRecords, previous_match_ids: Iterable[str] = ()) -> None:
    """
    Persist every record in the maps. Previously stored matches that are no
    longer in the map (replaced by a rebuild) are deleted.
    """
    stale = [mid for mid in previous_match_ids if mid not in records.matches]

    for match in list(records.matches.values()):
        merged = session.merge(match)
        for column in MATCH_JSON_COLUMNS:
            flag_modified(merged, column)

    for match_id in stale:
        old = session.get(Match, match_id)
        if old is not None:
            session.delete(old)

    for team in records.teams.values():
        session.add(team)
    for playing_field in records.fields.values():
        flag_modified(playing_field, "match_ids")
        session.add(playing_field)

    records.tournament.updated_at = utc_now()
    session.add(records.tournament)
    session.commit()
    logger.info(
        "Saved tournament %s: %s matches (%s removed)",
        records.tournament.id,
        len(records.matches),
        len(stale),
    )
