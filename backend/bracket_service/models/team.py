from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

from bracket_service.models.ids import new_record_id
from bracket_service.utils.timestamps import utc_now

if TYPE_CHECKING:
    from bracket_service.models.tournament import Tournament


class Team(SQLModel, table=True):
    id: str = Field(default_factory=new_record_id, primary_key=True)
    tournament_id: str = Field(foreign_key="tournament.id", index=True)
    name: str
    division: str = Field(index=True)
    seed: int = Field(default=0)  # Higher value ranks first when building the bracket
    wins: int = Field(default=0)
    losses: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    tournament: Optional["Tournament"] = Relationship(back_populates="teams")
