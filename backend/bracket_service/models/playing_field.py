from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

from bracket_service.models.ids import new_record_id

if TYPE_CHECKING:
    from bracket_service.models.tournament import Tournament


class PlayingField(SQLModel, table=True):
    id: str = Field(default_factory=new_record_id, primary_key=True)
    tournament_id: str = Field(foreign_key="tournament.id", index=True)
    field_number: int
    name: Optional[str] = Field(default=None)
    divisions: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    # Booking list, in the order matches were placed on this field
    match_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    in_use: bool = Field(default=False)

    # Relationships
    tournament: Optional["Tournament"] = Relationship(back_populates="playing_fields")

    def serves(self, division: str) -> bool:
        return division in (self.divisions or [])

    def book(self, match_id: str) -> None:
        # Reassign rather than append so the JSON column is marked dirty
        self.match_ids = [*(self.match_ids or []), match_id]

    def release(self, match_id: str) -> None:
        self.match_ids = [mid for mid in (self.match_ids or []) if mid != match_id]
