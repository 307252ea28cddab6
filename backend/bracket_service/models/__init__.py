from bracket_service.models.match import Match, Side
from bracket_service.models.playing_field import PlayingField
from bracket_service.models.team import Team
from bracket_service.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Team",
    "PlayingField",
    "Match",
    "Side",
]
