from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

from bracket_service.config import REST_MINUTES_PER_SET
from bracket_service.models.ids import new_record_id

if TYPE_CHECKING:
    from bracket_service.models.tournament import Tournament


class Side(str, Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"

    def opposite(self) -> "Side":
        return Side.RIGHT if self is Side.LEFT else Side.LEFT


class Match(SQLModel, table=True):
    id: str = Field(default_factory=new_record_id, primary_key=True)
    tournament_id: str = Field(foreign_key="tournament.id", index=True)
    match_number: int = Field(default=0)  # Topological rank within the division, 1 = earliest
    division: str = Field(index=True)

    team1_id: Optional[str] = Field(default=None)
    team2_id: Optional[str] = Field(default=None)
    referee_id: Optional[str] = Field(default=None)
    referee_checked_in: bool = Field(default=False)

    field_id: Optional[str] = Field(default=None)
    start: datetime
    end: datetime

    losers_bracket: bool = Field(default=False)
    side: str = Field(default=Side.LEFT.value)  # "LEFT" | "RIGHT", fixed at construction

    # One entry per set: 0 = unplayed, 1 = team1 took the set, 2 = team2 took the set
    set_results: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    team1_points: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    team2_points: List[int] = Field(default_factory=list, sa_column=Column(JSON))

    # Graph links by id (weak references, never ownership)
    previous_left_match_id: Optional[str] = Field(default=None)
    previous_right_match_id: Optional[str] = Field(default=None)
    winner_next_match_id: Optional[str] = Field(default=None)
    loser_next_match_id: Optional[str] = Field(default=None)

    # Relationships
    tournament: Optional["Tournament"] = Relationship(back_populates="matches")

    @property
    def set_count(self) -> int:
        return len(self.set_results or [])

    @property
    def buffer(self) -> timedelta:
        """Rest required after this match before its participants play again."""
        return timedelta(minutes=REST_MINUTES_PER_SET * self.set_count)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def has_player(self, team_id: str) -> bool:
        return team_id in (self.team1_id, self.team2_id)

    def involves(self, team_id: str) -> bool:
        """True when the team plays or referees this match."""
        return self.has_player(team_id) or self.referee_id == team_id

    def dependency_ids(self) -> List[str]:
        return [mid for mid in (self.previous_left_match_id, self.previous_right_match_id) if mid]
