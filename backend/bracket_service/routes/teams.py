"""
Team Management API Routes
Teams are entered per division; seeds decide bracket placement at build time.
"""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from bracket_service.database import get_session
from bracket_service.models.team import Team
from bracket_service.models.tournament import Tournament

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class TeamCreateRequest(BaseModel):
    name: str
    division: str
    seed: int = 0


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tournament_id: str
    name: str
    division: str
    seed: int
    wins: int
    losses: int
    created_at: datetime


# ============================================================================
# Team Endpoints
# ============================================================================


@router.get("/tournaments/{tournament_id}/teams", response_model=List[TeamResponse])
def get_teams(tournament_id: str, session: Session = Depends(get_session)):
    """
    Get all teams for a tournament.

    Ordered by division, then seed descending (bracket order), then name.
    """
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    query = (
        select(Team)
        .where(Team.tournament_id == tournament_id)
        .order_by(Team.division, Team.seed.desc(), Team.name)
    )
    return session.exec(query).all()


@router.post("/tournaments/{tournament_id}/teams", response_model=TeamResponse, status_code=201)
def create_team(tournament_id: str, request: TeamCreateRequest, session: Session = Depends(get_session)):
    """
    Enter a team into one of the tournament's divisions.

    Constraints:
    - division must be declared on the tournament
    - (tournament_id, division, name) must be unique
    """
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    division = request.division.strip()
    if division not in (tournament.divisions or []):
        raise HTTPException(status_code=422, detail=f"Unknown division '{division}' for this tournament")

    duplicate = session.exec(
        select(Team).where(
            Team.tournament_id == tournament_id,
            Team.division == division,
            Team.name == request.name,
        )
    ).first()
    if duplicate:
        raise HTTPException(status_code=422, detail=f"Team '{request.name}' already exists in division '{division}'")

    team = Team(tournament_id=tournament_id, name=request.name, division=division, seed=request.seed)
    session.add(team)
    session.commit()
    session.refresh(team)
    return team
