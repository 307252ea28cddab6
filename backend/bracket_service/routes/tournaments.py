from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlmodel import Session, select

from bracket_service.database import get_session
from bracket_service.models.tournament import Tournament
from bracket_service.utils.timestamps import to_naive_utc

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    double_elimination: bool = False
    winner_set_count: int = 1
    loser_set_count: int = 1
    winner_bracket_points_to_victory: List[int] = []
    loser_bracket_points_to_victory: List[int] = []
    start: datetime
    end: datetime
    divisions: List[str] = []

    @field_validator("start", "end")
    @classmethod
    def normalize_timestamp(cls, v):
        return to_naive_utc(v)

    @field_validator("winner_set_count", "loser_set_count")
    @classmethod
    def validate_set_count(cls, v):
        if v < 1:
            raise ValueError("set count must be at least 1")
        return v

    @field_validator("divisions")
    @classmethod
    def normalize_divisions(cls, v):
        cleaned = []
        for name in v:
            name = name.strip()
            if not name:
                raise ValueError("division names cannot be blank")
            if name not in cleaned:
                cleaned.append(name)
        return cleaned

    @model_validator(mode="after")
    def validate_time_range(self):
        if self.end < self.start:
            raise ValueError("end must be >= start")
        return self


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    double_elimination: bool
    winner_set_count: int
    loser_set_count: int
    winner_bracket_points_to_victory: List[int]
    loser_bracket_points_to_victory: List[int]
    start: datetime
    end: datetime
    divisions: List[str]
    created_at: datetime
    updated_at: datetime


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.start)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    """Create a new tournament"""
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: str, session: Session = Depends(get_session)):
    """Get a tournament by ID"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament
