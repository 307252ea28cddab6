"""
Playing Field API Routes
Fields serve one or more divisions; their booking lists are maintained by
the bracket engines and are read-only here.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlmodel import Session, select

from bracket_service.database import get_session
from bracket_service.models.playing_field import PlayingField
from bracket_service.models.tournament import Tournament

router = APIRouter()


class FieldCreateRequest(BaseModel):
    field_number: int
    name: Optional[str] = None
    divisions: List[str]

    @field_validator("divisions")
    @classmethod
    def validate_divisions(cls, v):
        cleaned = [d.strip() for d in v if d and d.strip()]
        if not cleaned:
            raise ValueError("a field must serve at least one division")
        return cleaned


class FieldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tournament_id: str
    field_number: int
    name: Optional[str] = None
    divisions: List[str]
    match_ids: List[str]
    in_use: bool


@router.get("/tournaments/{tournament_id}/fields", response_model=List[FieldResponse])
def get_fields(tournament_id: str, session: Session = Depends(get_session)):
    """Get all fields for a tournament, by field number"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    query = (
        select(PlayingField)
        .where(PlayingField.tournament_id == tournament_id)
        .order_by(PlayingField.field_number)
    )
    return session.exec(query).all()


@router.post("/tournaments/{tournament_id}/fields", response_model=FieldResponse, status_code=201)
def create_field(tournament_id: str, request: FieldCreateRequest, session: Session = Depends(get_session)):
    """Add a field; every division it serves must belong to the tournament"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    unknown = [d for d in request.divisions if d not in (tournament.divisions or [])]
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown divisions for this tournament: {unknown}")

    taken = session.exec(
        select(PlayingField).where(
            PlayingField.tournament_id == tournament_id,
            PlayingField.field_number == request.field_number,
        )
    ).first()
    if taken:
        raise HTTPException(status_code=422, detail=f"Field number {request.field_number} already exists")

    playing_field = PlayingField(
        tournament_id=tournament_id,
        field_number=request.field_number,
        name=request.name,
        divisions=request.divisions,
    )
    session.add(playing_field)
    session.commit()
    session.refresh(playing_field)
    return playing_field
