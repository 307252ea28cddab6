from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

from bracket_service.models.ids import new_record_id
from bracket_service.utils.timestamps import utc_now

if TYPE_CHECKING:
    from bracket_service.models.match import Match
    from bracket_service.models.playing_field import PlayingField
    from bracket_service.models.team import Team


class Tournament(SQLModel, table=True):
    id: str = Field(default_factory=new_record_id, primary_key=True)
    name: str
    double_elimination: bool = Field(default=False)
    winner_set_count: int = Field(default=1)
    loser_set_count: int = Field(default=1)
    # Per-set point targets; informational for score entry, not used by scheduling
    winner_bracket_points_to_victory: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    loser_bracket_points_to_victory: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    start: datetime
    end: datetime
    divisions: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    # Relationships
    teams: List["Team"] = Relationship(back_populates="tournament")
    playing_fields: List["PlayingField"] = Relationship(back_populates="tournament")
    matches: List["Match"] = Relationship(back_populates="tournament")

    def set_count(self, losers_bracket: bool) -> int:
        return self.loser_set_count if losers_bracket else self.winner_set_count
