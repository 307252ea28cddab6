"""
Bracket Graph: id-keyed arena helpers shared by the builder, the schedule
engine and the progression service.

Matches never hold references to each other; every link is a match id
resolved through the `matches` dict. These helpers keep both ends of a link
consistent (predecessor slot on the successor, winner/loser pointer on the
predecessor) so traversals in either direction agree.
"""
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from bracket_service.exceptions import BracketIntegrityError
from bracket_service.models.match import Match, Side
from bracket_service.models.playing_field import PlayingField


def intervals_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Half-open intervals [start, end); intervals that only touch do not overlap."""
    return start1 < end2 and start2 < end1


# ============================================================================
# Link maintenance
# ============================================================================


def attach_predecessor(successor: Match, predecessor: Match, slot: Side) -> None:
    if slot == Side.LEFT:
        successor.previous_left_match_id = predecessor.id
    else:
        successor.previous_right_match_id = predecessor.id


def link_winner(predecessor: Match, successor: Match, slot: Side) -> None:
    """The winner of `predecessor` fills `slot` of `successor`."""
    predecessor.winner_next_match_id = successor.id
    attach_predecessor(successor, predecessor, slot)


def link_loser(predecessor: Match, successor: Match, slot: Side) -> None:
    """The loser of `predecessor` drops into `slot` of `successor`."""
    predecessor.loser_next_match_id = successor.id
    attach_predecessor(successor, predecessor, slot)


def rename_match(
    matches: Dict[str, Match],
    fields: Dict[str, PlayingField],
    old_id: str,
    new_id: str,
) -> None:
    """Give a match a new id and rewrite every reference to it."""
    match = matches.pop(old_id)
    match.id = new_id
    matches[new_id] = match
    for other in matches.values():
        if other.previous_left_match_id == old_id:
            other.previous_left_match_id = new_id
        if other.previous_right_match_id == old_id:
            other.previous_right_match_id = new_id
        if other.winner_next_match_id == old_id:
            other.winner_next_match_id = new_id
        if other.loser_next_match_id == old_id:
            other.loser_next_match_id = new_id
    for field in fields.values():
        if old_id in (field.match_ids or []):
            field.match_ids = [new_id if mid == old_id else mid for mid in field.match_ids]


# ============================================================================
# Lookups
# ============================================================================


def predecessors(matches: Dict[str, Match], match: Match) -> List[Match]:
    """Distinct predecessor matches, left first."""
    found: List[Match] = []
    for match_id in match.dependency_ids():
        prev = matches.get(match_id)
        if prev is not None and all(prev.id != f.id for f in found):
            found.append(prev)
    return found


def successors(matches: Dict[str, Match], match: Match) -> List[Match]:
    """Distinct successor matches, winner path first."""
    found: List[Match] = []
    for match_id in (match.winner_next_match_id, match.loser_next_match_id):
        nxt = matches.get(match_id) if match_id else None
        if nxt is not None and all(nxt.id != f.id for f in found):
            found.append(nxt)
    return found


def root_match(matches: Dict[str, Match], division: Optional[str] = None) -> Optional[Match]:
    """The match with the highest sequence number (the final), optionally per division."""
    candidates = [m for m in matches.values() if division is None or m.division == division]
    if not candidates:
        return None
    return max(candidates, key=lambda m: m.match_number)


# ============================================================================
# Results
# ============================================================================


def set_wins(match: Match) -> Tuple[int, int]:
    results = match.set_results or []
    return results.count(1), results.count(2)


def sets_needed(match: Match) -> int:
    """Majority of the configured set count."""
    return match.set_count // 2 + 1


def winning_side(match: Match) -> Optional[int]:
    """1 or 2 when that side holds a set majority, otherwise None."""
    team1_sets, team2_sets = set_wins(match)
    needed = sets_needed(match)
    if team1_sets >= needed:
        return 1
    if team2_sets >= needed:
        return 2
    return None


def is_decided(match: Match) -> bool:
    return winning_side(match) is not None


def is_ready(matches: Dict[str, Match], match: Match) -> bool:
    """Every predecessor has been decided (matches without predecessors are always ready)."""
    return all(is_decided(prev) for prev in predecessors(matches, match))


# ============================================================================
# Traversals
# ============================================================================


def dependency_order(matches: Dict[str, Match], root_id: str) -> List[str]:
    """
    Breadth-first walk over predecessor edges starting at the root.

    A match joins the walk only once all of its successors have been
    visited, so reversing the result yields a dependency-respecting order
    (every match precedes both its winner- and loser-successor).

    Raises BracketIntegrityError if some reachable match can never be
    released, which means the links contain a cycle or a dangling successor.
    """
    order: List[str] = []
    visited = set()
    queued = {root_id}
    discovered = {root_id}
    queue = deque([root_id])

    while queue:
        match_id = queue.popleft()
        order.append(match_id)
        visited.add(match_id)
        for prev in predecessors(matches, matches[match_id]):
            discovered.add(prev.id)
            if prev.id in queued:
                continue
            if all(nxt.id in visited for nxt in successors(matches, prev)):
                queued.add(prev.id)
                queue.append(prev.id)

    stuck = discovered - visited
    if stuck:
        raise BracketIntegrityError(f"Bracket links are inconsistent around matches: {sorted(stuck)}")
    return order
