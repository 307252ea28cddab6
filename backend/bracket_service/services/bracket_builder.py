"""
Bracket Builder: turn a seeded field of teams into a scheduled match graph.

Per division:
  1. Seed & bye allocation (top seeds skip the play-in round)
  2. Recursive winner-bracket construction, splitting byes between halves
  3. Loser-bracket interleaving and the grand final (double elimination)
  4. Numbering in dependency order, scheduling each match as it is numbered
  5. Initial referee assignment from free teams of the division

A rebuild starts from an empty match map. Matches whose division and
number existed in the previous build take over the previous ids so that
clients holding those ids keep pointing at the same bracket position.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from bracket_service.config import DEFAULT_SCHEDULE_SETTINGS, ScheduleSettings
from bracket_service.exceptions import BracketIntegrityError
from bracket_service.models.match import Match, Side
from bracket_service.models.playing_field import PlayingField
from bracket_service.models.team import Team
from bracket_service.models.tournament import Tournament
from bracket_service.services.bracket_graph import (
    attach_predecessor,
    dependency_order,
    link_loser,
    link_winner,
    rename_match,
)
from bracket_service.services.schedule_engine import ScheduleEngine

logger = logging.getLogger(__name__)

MIN_DIVISION_TEAMS = 3


def bye_allocation(team_count: int) -> Tuple[int, int]:
    """
    Return (rounds, byes) for a field of team_count teams.

    With 2^p <= n < 2^(p+1), the n - 2^p surplus teams force an extra
    play-in round; that many top seeds skip it.
    """
    power = team_count.bit_length() - 1
    remainder = team_count - (1 << power)
    rounds = power + (1 if remainder > 0 else 0)

    cap = (1 << power) - 1
    if cap > 0 and remainder > cap:
        remainder -= remainder % cap
    return rounds, remainder


@dataclass
class DivisionDraw:
    """Team queues consumed while the winner bracket is built."""

    division: str
    seeds_with_byes: List[str]
    remaining: List[str]
    leaf_round: int

    def pop_seed(self) -> str:
        if not self.seeds_with_byes:
            raise BracketIntegrityError(f"Division {self.division}: no seeded team left for a bye slot")
        return self.seeds_with_byes.pop(0)

    def pop_remaining(self, index: int = 0) -> str:
        if not self.remaining or index < 0:
            raise BracketIntegrityError(f"Division {self.division}: not enough teams left to fill a match")
        return self.remaining.pop(min(index, len(self.remaining) - 1))


class BracketBuilder:
    """
    Builds every division of a tournament into `matches` (cleared first).

    `fields` booking lists and team win/loss counters are reset as part of
    the rebuild.
    """

    def __init__(
        self,
        tournament: Tournament,
        matches: Dict[str, Match],
        teams: Dict[str, Team],
        fields: Dict[str, PlayingField],
        settings: ScheduleSettings = DEFAULT_SCHEDULE_SETTINGS,
    ):
        self.tournament = tournament
        self.matches = matches
        self.teams = teams
        self.fields = fields
        self.settings = settings

        self.existing_by_number: Dict[Tuple[str, int], str] = {
            (m.division, m.match_number): m.id for m in matches.values()
        }
        matches.clear()
        for field in fields.values():
            field.match_ids = []
        for team in teams.values():
            team.wins = 0
            team.losses = 0

    def divisions(self) -> List[str]:
        """Tournament divisions in declared order, then any extra divisions teams are entered in."""
        ordered = list(self.tournament.divisions or [])
        for team in self.teams.values():
            if team.division not in ordered:
                ordered.append(team.division)
        return ordered

    def build(self) -> Dict[str, Match]:
        for division in self.divisions():
            self.build_division(division)
        logger.info(
            "Built tournament %s: %s matches across %s divisions",
            self.tournament.id,
            len(self.matches),
            len(self.divisions()),
        )
        return self.matches

    # ========================================================================
    # Division construction
    # ========================================================================

    def build_division(self, division: str) -> Optional[Match]:
        """Build, number, schedule and referee one division. Returns its root match."""
        entrants = [t for t in self.teams.values() if t.division == division]
        if len(entrants) < MIN_DIVISION_TEAMS:
            logger.info("Skipping division %s: %s teams entered", division, len(entrants))
            return None

        ordered = sorted(entrants, key=lambda t: t.seed, reverse=True)
        rounds, byes = bye_allocation(len(ordered))
        draw = DivisionDraw(
            division=division,
            seeds_with_byes=[t.id for t in ordered[:byes]],
            remaining=[t.id for t in ordered[byes:]],
            leaf_round=2 if byes > 0 else 1,
        )

        root = self._build_node(draw, rounds, byes, Side.LEFT, winner_next=None)
        if self.tournament.double_elimination:
            root = self._build_grand_final(division, root)

        self._number_and_schedule(division, root)
        self._assign_initial_referees(division, root)
        self._reuse_previous_ids(division)

        logger.info(
            "Division %s: %s teams, %s rounds, %s byes, %s matches",
            division,
            len(ordered),
            rounds,
            byes,
            sum(1 for m in self.matches.values() if m.division == division),
        )
        return root

    def _new_match(
        self,
        division: str,
        side: Side,
        losers_bracket: bool = False,
        winner_next: Optional[Match] = None,
    ) -> Match:
        set_count = self.tournament.set_count(losers_bracket)
        match = Match(
            tournament_id=self.tournament.id,
            division=division,
            losers_bracket=losers_bracket,
            side=side.value,
            set_results=[0] * set_count,
            team1_points=[0] * set_count,
            team2_points=[0] * set_count,
            start=self.tournament.start,
            end=self.tournament.start,
        )
        if winner_next is not None:
            match.winner_next_match_id = winner_next.id
        self.matches[match.id] = match
        return match

    def _build_node(
        self,
        draw: DivisionDraw,
        round_number: int,
        byes: int,
        side: Side,
        winner_next: Optional[Match],
    ) -> Match:
        if round_number <= draw.leaf_round:
            return self._build_leaf(draw, byes, side, winner_next)

        half = byes // 2
        if side == Side.LEFT:
            left_byes, right_byes = half, byes - half
        else:
            left_byes, right_byes = byes - half, half

        node = self._new_match(draw.division, side, winner_next=winner_next)
        left = self._build_node(draw, round_number - 1, left_byes, Side.LEFT, node)
        right = self._build_node(draw, round_number - 1, right_byes, Side.RIGHT, node)
        link_winner(left, node, Side.LEFT)
        link_winner(right, node, Side.RIGHT)

        if self.tournament.double_elimination:
            self._link_loser_match(node, side)
        return node

    def _build_leaf(self, draw: DivisionDraw, byes: int, side: Side, winner_next: Optional[Match]) -> Match:
        division = draw.division

        if byes > 2:
            raise BracketIntegrityError(f"Division {division}: a leaf cannot absorb {byes} byes")

        if byes == 1:
            # Bye seed waits in this node; the sibling play-in feeds the other slot
            node = self._new_match(division, side, winner_next=winner_next)
            seed_id = draw.pop_seed()
            if side == Side.LEFT:
                node.team1_id = seed_id
            else:
                node.team2_id = seed_id

            sibling = self._new_match(division, side.opposite(), winner_next=node)
            sibling.team1_id = draw.pop_remaining()
            sibling.team2_id = draw.pop_remaining()
            sibling.referee_id = seed_id
            link_winner(sibling, node, side.opposite())

            if self.tournament.double_elimination:
                self._link_loser_match(node, side)
            return node

        if byes == 2:
            node = self._new_match(division, side, winner_next=winner_next)
            first = self._new_match(division, side, winner_next=node)
            first.team1_id = draw.pop_seed()
            first.team2_id = draw.pop_remaining()
            second = self._new_match(division, side.opposite(), winner_next=node)
            second.team1_id = draw.pop_seed()
            second.team2_id = draw.pop_remaining()
            link_winner(first, node, side)
            link_winner(second, node, side.opposite())

            if self.tournament.double_elimination:
                self._link_loser_match(node, side)
            return node

        # No byes: two remaining teams meet directly
        waiting = len(draw.seeds_with_byes)
        opponent_index = 2 * waiting - 2 if waiting > 0 else len(draw.remaining) - 2
        node = self._new_match(division, side, winner_next=winner_next)
        node.team1_id = draw.pop_remaining()
        node.team2_id = draw.pop_remaining(opponent_index)
        return node

    # ========================================================================
    # Loser bracket
    # ========================================================================

    def _link_loser_match(self, node: Match, side: Side) -> None:
        """
        Create the loser-bracket matches fed by `node` and its predecessors.

        The receiving match takes node's loser; with two predecessors a
        connector first merges whatever their subtrees drop down.
        """
        previous_left = self.matches.get(node.previous_left_match_id) if node.previous_left_match_id else None
        previous_right = self.matches.get(node.previous_right_match_id) if node.previous_right_match_id else None
        feeders = [(Side.LEFT, previous_left), (Side.RIGHT, previous_right)]
        present = [prev for _, prev in feeders if prev is not None]

        if len(present) == 1:
            receiving = self._new_match(node.division, side, losers_bracket=True)
            link_loser(present[0], receiving, side.opposite())
            link_loser(node, receiving, side)
            return

        if len(present) != 2:
            raise BracketIntegrityError(f"Match {node.id} has no predecessors to feed the loser bracket")

        receiving = self._new_match(node.division, side, losers_bracket=True)
        connector = self._new_match(node.division, side.opposite(), losers_bracket=True, winner_next=receiving)
        link_loser(node, receiving, side)
        attach_predecessor(receiving, connector, side.opposite())

        for slot, prev in feeders:
            chain_top = self.matches.get(prev.loser_next_match_id) if prev.loser_next_match_id else None
            if chain_top is not None:
                link_winner(chain_top, connector, slot)
            else:
                link_loser(prev, connector, slot)

    def _build_grand_final(self, division: str, winners_root: Match) -> Match:
        """
        Semifinal between the winner-bracket champion and the loser-bracket
        champion, feeding a single final through both of its edges.
        """
        final = self._new_match(division, Side.RIGHT)
        semifinal = self._new_match(division, Side.RIGHT, winner_next=final)

        link_winner(winners_root, semifinal, Side.LEFT)
        loser_top = self.matches.get(winners_root.loser_next_match_id) if winners_root.loser_next_match_id else None
        if loser_top is not None:
            link_winner(loser_top, semifinal, Side.RIGHT)

        final.previous_left_match_id = semifinal.id
        final.previous_right_match_id = semifinal.id
        semifinal.loser_next_match_id = final.id
        return final

    # ========================================================================
    # Numbering, scheduling, referees
    # ========================================================================

    def _number_and_schedule(self, division: str, root: Match) -> None:
        order = dependency_order(self.matches, root.id)
        division_ids = {m.id for m in self.matches.values() if m.division == division}
        if set(order) != division_ids:
            raise BracketIntegrityError(f"Division {division}: some matches are not connected to the final")

        engine = ScheduleEngine(
            self.tournament,
            self.matches,
            self.teams,
            self.fields,
            divisions=[division],
            settings=self.settings,
        )
        for number, match_id in enumerate(reversed(order), start=1):
            match = self.matches[match_id]
            match.match_number = number
            engine.schedule_event(match, self.settings.match_duration(match.set_count))

    def _assign_initial_referees(self, division: str, root: Match) -> None:
        engine = ScheduleEngine(
            self.tournament,
            self.matches,
            self.teams,
            self.fields,
            divisions=[division],
            settings=self.settings,
        )
        for match_id in dependency_order(self.matches, root.id):
            match = self.matches[match_id]
            if match.team1_id is None or match.team2_id is None or match.referee_id is not None:
                continue
            free = engine.free_participants(division, match.start, match.end)
            if free:
                match.referee_id = free[0].id
            else:
                logger.warning("Division %s: no free referee for match #%s", division, match.match_number)

    def _reuse_previous_ids(self, division: str) -> None:
        for match in [m for m in self.matches.values() if m.division == division]:
            previous_id = self.existing_by_number.get((division, match.match_number))
            if previous_id and previous_id != match.id and previous_id not in self.matches:
                rename_match(self.matches, self.fields, match.id, previous_id)
