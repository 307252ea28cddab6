"""
Match Progression: apply one decided match and re-plan what depends on it.

Flow for apply_result(match_id):
  1. Decide the winner from the set results and bump win/loss counters
  2. Advance winner and loser into their successor matches
  3. Walk the division back from the final to find affected matches
  4. Release undecided bookings on the updated match's field
  5. Re-schedule affected matches that lost their field
  6. Swap out referees who are double-booked
  7. Hand free referee duty to the teams that just played, then to any
     unbeaten team idle before its next match

Everything happens on the in-memory record maps; the caller persists them
only when the whole pass succeeds.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from bracket_service.config import DEFAULT_SCHEDULE_SETTINGS, ScheduleSettings
from bracket_service.exceptions import (
    BracketIntegrityError,
    InvalidRequestError,
    MatchNotDecidedError,
    RecordNotFoundError,
)
from bracket_service.models.match import Match
from bracket_service.models.playing_field import PlayingField
from bracket_service.models.team import Team
from bracket_service.models.tournament import Tournament
from bracket_service.services.bracket_graph import (
    intervals_overlap,
    is_decided,
    is_ready,
    predecessors,
    root_match,
    winning_side,
)
from bracket_service.services.schedule_engine import ScheduleEngine

logger = logging.getLogger(__name__)


@dataclass
class MatchUpdateResult:
    match_id: str
    winner_id: str
    loser_id: str
    released_match_ids: List[str] = field(default_factory=list)
    rescheduled_match_ids: List[str] = field(default_factory=list)
    referee_changes: Dict[str, str] = field(default_factory=dict)  # match_id -> team_id
    unresolved_conflicts: List[str] = field(default_factory=list)  # match ids still double-booked


# ============================================================================
# Graph walks and lookups
# ============================================================================


def affected_walk(matches: Dict[str, Match], root_id: str) -> List[str]:
    """
    Breadth-first walk from the final over predecessor edges.

    Edges from a loser-bracket match back into the winner bracket are not
    followed, except that a loser-bracket match fed by one loser-bracket and
    one winner-bracket predecessor also pulls in the winner-bracket one.
    """
    order: List[str] = []
    seen = {root_id}
    queue = deque([root_id])

    def enqueue(match: Match) -> None:
        if match.id not in seen:
            seen.add(match.id)
            queue.append(match.id)

    while queue:
        current = matches[queue.popleft()]
        order.append(current.id)
        for prev in predecessors(matches, current):
            if current.losers_bracket and not prev.losers_bracket:
                continue
            if prev.id in seen:
                continue
            enqueue(prev)
            if prev.losers_bracket:
                feeders = predecessors(matches, prev)
                if len(feeders) == 2 and feeders[0].losers_bracket != feeders[1].losers_bracket:
                    enqueue(feeders[0] if not feeders[0].losers_bracket else feeders[1])
    return order


def find_upcoming_matches(
    matches: Dict[str, Match],
    division: str,
    begin: datetime,
    end: datetime,
    ready_only: bool,
) -> List[Match]:
    """
    Booked, undecided matches of the division inside [begin, end], shortest
    first, then earliest. With ready_only, every predecessor must be decided.
    """
    found = [
        m
        for m in matches.values()
        if m.division == division
        and m.field_id is not None
        and m.start >= begin
        and m.end <= end
        and not is_decided(m)
        and (not ready_only or is_ready(matches, m))
    ]
    found.sort(key=lambda m: (m.duration, m.start))
    return found


def resolve_referee_conflicts(engine: ScheduleEngine, division: str) -> Dict[str, Optional[str]]:
    """
    Replace referees who are booked elsewhere at the same time.

    A replacement must be free for the whole window, unbeaten, and must not
    have played in either predecessor of the match. Returns match_id ->
    new referee id (None where nobody qualified).
    """
    outcome: Dict[str, Optional[str]] = {}
    for team_id, clashing in engine.get_participant_conflicts([division]).items():
        for match in clashing:
            if match.referee_id != team_id:
                continue
            recent_players = set()
            for prev in predecessors(engine.matches, match):
                recent_players.update(tid for tid in (prev.team1_id, prev.team2_id) if tid)

            candidates = [
                t
                for t in engine.free_participants(division, match.start, match.end)
                if t.losses == 0 and t.id not in recent_players
            ]
            if candidates:
                match.referee_id = candidates[0].id
                outcome[match.id] = candidates[0].id
                logger.info(
                    "Match #%s (%s): referee %s replaced by %s",
                    match.match_number,
                    division,
                    team_id,
                    candidates[0].id,
                )
            else:
                outcome[match.id] = None
                logger.warning(
                    "Match #%s (%s): referee %s is double-booked and no replacement is free",
                    match.match_number,
                    division,
                    team_id,
                )
    return outcome


# ============================================================================
# Service
# ============================================================================


class MatchProgressionService:
    def __init__(
        self,
        tournament: Tournament,
        matches: Dict[str, Match],
        teams: Dict[str, Team],
        fields: Dict[str, PlayingField],
        current_time: Optional[datetime] = None,
        settings: ScheduleSettings = DEFAULT_SCHEDULE_SETTINGS,
    ):
        self.tournament = tournament
        self.matches = matches
        self.teams = teams
        self.fields = fields
        self.current_time = current_time
        self.settings = settings

    def _team(self, team_id: Optional[str]) -> Team:
        team = self.teams.get(team_id) if team_id else None
        if team is None:
            raise RecordNotFoundError(f"No team with ID '{team_id}'")
        return team

    def apply_result(self, match_id: str) -> MatchUpdateResult:
        match = self.matches.get(match_id)
        if match is None:
            raise RecordNotFoundError(f"No match with ID '{match_id}'")

        side = winning_side(match)
        if side is None:
            raise MatchNotDecidedError(
                f"Match {match.match_number} in division {match.division} has no winner yet: {match.set_results}"
            )
        if side == 1:
            winner, loser = self._team(match.team1_id), self._team(match.team2_id)
        else:
            winner, loser = self._team(match.team2_id), self._team(match.team1_id)
        if self._already_advanced(match, winner, loser):
            raise InvalidRequestError(
                f"Match {match.match_number} in division {match.division} has already been applied"
            )
        winner.wins += 1
        loser.losses += 1
        result = MatchUpdateResult(match_id=match.id, winner_id=winner.id, loser_id=loser.id)

        self._advance(match, winner, loser)

        root = root_match(self.matches, match.division)
        engine = ScheduleEngine(
            self.tournament,
            self.matches,
            self.teams,
            self.fields,
            divisions=[match.division],
            current_time=self.current_time,
            settings=self.settings,
        )
        walk = affected_walk(self.matches, root.id)

        result.released_match_ids = self._release_field(engine, match)
        result.rescheduled_match_ids = self._reschedule(engine, walk + result.released_match_ids)

        for mid, referee_id in resolve_referee_conflicts(engine, match.division).items():
            if referee_id is None:
                result.unresolved_conflicts.append(mid)
            else:
                result.referee_changes[mid] = referee_id

        self._assign_followup_referees(match, winner, loser, root, result)
        self._assign_idle_referees(match.division, result)

        logger.info(
            "Applied match #%s (%s): %s beat %s, %s released, %s rescheduled",
            match.match_number,
            match.division,
            winner.name,
            loser.name,
            len(result.released_match_ids),
            len(result.rescheduled_match_ids),
        )
        return result

    # ========================================================================
    # Advancement
    # ========================================================================

    def _already_advanced(self, match: Match, winner: Team, loser: Team) -> bool:
        """True when a previous update already moved these teams on."""
        winner_next = self.matches.get(match.winner_next_match_id) if match.winner_next_match_id else None
        loser_next = self.matches.get(match.loser_next_match_id) if match.loser_next_match_id else None
        if winner_next is not None and winner_next.has_player(winner.id):
            return True
        return loser_next is not None and loser_next.has_player(loser.id)

    def _advance(self, match: Match, winner: Team, loser: Team) -> None:
        winner_next = self.matches.get(match.winner_next_match_id) if match.winner_next_match_id else None
        loser_next = self.matches.get(match.loser_next_match_id) if match.loser_next_match_id else None

        if winner_next is not None and winner_next is loser_next:
            # Grand final: only played when the semifinal winner came through the loser bracket
            if winner.losses > 0:
                winner_next.team1_id = winner.id
                winner_next.team2_id = loser.id
                winner_next.referee_id = match.referee_id
                logger.info("Rematch %s vs %s in match #%s", winner.name, loser.name, winner_next.match_number)
            return

        if winner_next is not None:
            self._place(winner_next, match.id, winner.id)
        if loser_next is not None:
            self._place(loser_next, match.id, loser.id)

    def _place(self, target: Match, source_id: str, team_id: str) -> None:
        """Put team_id into the slot fed by source_id, else the first open slot."""
        if target.has_player(team_id):
            return
        if target.previous_left_match_id == source_id and target.team1_id is None:
            target.team1_id = team_id
        elif target.previous_right_match_id == source_id and target.team2_id is None:
            target.team2_id = team_id
        elif target.team1_id is None:
            target.team1_id = team_id
        elif target.team2_id is None:
            target.team2_id = team_id
        else:
            logger.warning("Match #%s already has both teams; %s not placed", target.match_number, team_id)
            return
        if target.referee_id == team_id:
            # A team cannot officiate its own match
            target.referee_id = None

    # ========================================================================
    # Re-planning
    # ========================================================================

    def _release_field(self, engine: ScheduleEngine, updated: Match) -> List[str]:
        """Free later or refereeless bookings on the field the updated match used."""
        field_record = self.fields.get(updated.field_id) if updated.field_id else None
        if field_record is None:
            return []

        released = []
        for mid in list(field_record.match_ids or []):
            other = self.matches.get(mid)
            if other is None or other.id == updated.id or other.division != updated.division:
                continue
            if is_decided(other):
                continue
            if other.start > updated.start or other.referee_id is None:
                engine.unschedule_event(other)
                released.append(other.id)
        return released

    def _reschedule(self, engine: ScheduleEngine, candidate_ids: List[str]) -> List[str]:
        pending = {mid: self.matches[mid] for mid in candidate_ids if self.matches[mid].field_id is None}
        rescheduled = []
        for match in sorted(pending.values(), key=lambda m: m.match_number):
            engine.schedule_event(match, self.settings.match_duration(match.set_count))
            rescheduled.append(match.id)
        return rescheduled

    # ========================================================================
    # Referee duty
    # ========================================================================

    def _is_busy(self, team_id: str, candidate: Match) -> bool:
        return any(
            m.id != candidate.id
            and m.field_id is not None
            and m.involves(team_id)
            and intervals_overlap(m.start, m.end, candidate.start, candidate.end)
            for m in self.matches.values()
        )

    def _offer_referee(self, candidates: List[Match], team: Team, result: MatchUpdateResult) -> Optional[Match]:
        for candidate in candidates:
            if candidate.referee_id is not None or candidate.has_player(team.id):
                continue
            if self._is_busy(team.id, candidate):
                continue
            candidate.referee_id = team.id
            result.referee_changes[candidate.id] = team.id
            logger.debug("Team %s referees match #%s", team.name, candidate.match_number)
            return candidate
        return None

    def _assign_followup_referees(
        self, match: Match, winner: Team, loser: Team, root: Match, result: MatchUpdateResult
    ) -> None:
        division = match.division
        if match.losers_bracket:
            next_match = self.matches.get(match.winner_next_match_id) if match.winner_next_match_id else None
            if next_match is None:
                raise BracketIntegrityError(f"Loser-bracket match {match.id} has no winner successor")
            ready = find_upcoming_matches(self.matches, division, match.end, next_match.start, ready_only=True)
            self._offer_referee(ready, winner, result)
            upcoming = find_upcoming_matches(self.matches, division, match.end, root.end, ready_only=False)
            self._offer_referee(upcoming, winner, result)
            return

        loser_next = self.matches.get(match.loser_next_match_id) if match.loser_next_match_id else None
        if loser_next is not None:
            ready = find_upcoming_matches(self.matches, division, match.end, loser_next.start, ready_only=True)
            self._offer_referee(ready, loser, result)

    def _assign_idle_referees(self, division: str, result: MatchUpdateResult) -> None:
        now = self.current_time or self.tournament.start
        division_matches = [m for m in self.matches.values() if m.division == division]
        for team in [t for t in self.teams.values() if t.division == division and t.losses == 0]:
            upcoming = [
                m
                for m in division_matches
                if m.has_player(team.id) and m.start > now and m.referee_id != team.id
            ]
            if not upcoming:
                continue
            next_start = min(m.start for m in upcoming)
            ready = find_upcoming_matches(self.matches, division, now, next_start, ready_only=True)
            self._offer_referee(ready, team, result)
