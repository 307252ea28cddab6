"""
Match API Routes
Read access to the built bracket, set-result entry, and the participant
conflict report.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlmodel import Session, select

from bracket_service.database import get_session
from bracket_service.exceptions import RecordNotFoundError
from bracket_service.models.match import Match
from bracket_service.models.tournament import Tournament
from bracket_service.services.bracket_store import load_records
from bracket_service.services.schedule_engine import ScheduleEngine

router = APIRouter()

VALID_SET_RESULTS = {0, 1, 2}


# ============================================================================
# Request/Response Models
# ============================================================================


class MatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tournament_id: str
    match_number: int
    division: str
    team1_id: Optional[str] = None
    team2_id: Optional[str] = None
    referee_id: Optional[str] = None
    referee_checked_in: bool
    field_id: Optional[str] = None
    start: datetime
    end: datetime
    losers_bracket: bool
    side: str
    set_results: List[int]
    team1_points: List[int]
    team2_points: List[int]
    previous_left_match_id: Optional[str] = None
    previous_right_match_id: Optional[str] = None
    winner_next_match_id: Optional[str] = None
    loser_next_match_id: Optional[str] = None


class SetResultsRequest(BaseModel):
    set_results: List[int]
    team1_points: Optional[List[int]] = None
    team2_points: Optional[List[int]] = None

    @field_validator("set_results")
    @classmethod
    def validate_set_results(cls, v):
        bad = [r for r in v if r not in VALID_SET_RESULTS]
        if bad:
            raise ValueError("set results must be 0 (unplayed), 1 (team1) or 2 (team2)")
        return v


class ConflictMatch(BaseModel):
    match_id: str
    match_number: int
    division: str
    role: str  # PLAYER | REFEREE
    start: datetime
    end: datetime
    field_id: Optional[str] = None


class ParticipantConflict(BaseModel):
    team_id: str
    team_name: str
    matches: List[ConflictMatch]


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/tournaments/{tournament_id}/matches", response_model=List[MatchResponse])
def get_matches(tournament_id: str, session: Session = Depends(get_session)):
    """Get all matches, by division then match number"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    query = (
        select(Match)
        .where(Match.tournament_id == tournament_id)
        .order_by(Match.division, Match.match_number)
    )
    return session.exec(query).all()


@router.put("/tournaments/{tournament_id}/matches/{match_id}/sets", response_model=MatchResponse)
def record_set_results(
    tournament_id: str,
    match_id: str,
    request: SetResultsRequest,
    session: Session = Depends(get_session),
):
    """
    Record set results (and optionally points) for a match.

    Progression is not triggered here; call the updateMatch action once the
    result is final.
    """
    match = session.get(Match, match_id)
    if not match or match.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Match not found")

    expected = match.set_count
    if len(request.set_results) != expected:
        raise HTTPException(status_code=422, detail=f"Expected {expected} set results, got {len(request.set_results)}")
    for label, points in (("team1_points", request.team1_points), ("team2_points", request.team2_points)):
        if points is not None and len(points) != expected:
            raise HTTPException(status_code=422, detail=f"Expected {expected} entries in {label}, got {len(points)}")

    match.set_results = list(request.set_results)
    if request.team1_points is not None:
        match.team1_points = list(request.team1_points)
    if request.team2_points is not None:
        match.team2_points = list(request.team2_points)
    session.add(match)
    session.commit()
    session.refresh(match)
    return match


@router.get("/tournaments/{tournament_id}/conflicts", response_model=List[ParticipantConflict])
def get_conflicts(tournament_id: str, session: Session = Depends(get_session)):
    """
    Teams booked into overlapping matches, as player or referee.

    Diagnostic only; nothing is changed.
    """
    try:
        records = load_records(session, tournament_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    divisions = list(records.tournament.divisions or [])
    for team in records.teams.values():
        if team.division not in divisions:
            divisions.append(team.division)

    engine = ScheduleEngine(records.tournament, records.matches, records.teams, records.fields, divisions=divisions)
    report = []
    for team_id, clashing in engine.get_participant_conflicts().items():
        team = records.teams.get(team_id)
        report.append(
            ParticipantConflict(
                team_id=team_id,
                team_name=team.name if team else team_id,
                matches=[
                    ConflictMatch(
                        match_id=m.id,
                        match_number=m.match_number,
                        division=m.division,
                        role="REFEREE" if m.referee_id == team_id and not m.has_player(team_id) else "PLAYER",
                        start=m.start,
                        end=m.end,
                        field_id=m.field_id,
                    )
                    for m in clashing
                ],
            )
        )
    report.sort(key=lambda c: c.team_name)
    return report
