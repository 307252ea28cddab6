"""Bracket builder: graph shape, numbering, initial schedule and referees, id reuse on rebuild."""
from collections import Counter

import pytest

from bracket_service.services.bracket_builder import BracketBuilder, bye_allocation
from bracket_service.services.bracket_graph import intervals_overlap, predecessors
from tests.factories import make_fields, make_teams, make_tournament


def _build(team_count, field_count=1, double=False, matches=None, teams=None, fields=None):
    tournament = make_tournament(double_elimination=double)
    teams = teams if teams is not None else make_teams(team_count)
    fields = fields if fields is not None else make_fields(field_count)
    matches = matches if matches is not None else {}
    BracketBuilder(tournament, matches, teams, fields).build()
    return matches, teams, fields


def _assert_no_field_double_booking(matches, fields):
    for playing_field in fields.values():
        booked = [matches[mid] for mid in playing_field.match_ids]
        for i, a in enumerate(booked):
            for b in booked[i + 1:]:
                assert not intervals_overlap(a.start, a.end, b.start, b.end), (a.match_number, b.match_number)


@pytest.mark.parametrize(
    "team_count,expected",
    [(3, (2, 1)), (4, (2, 0)), (5, (3, 1)), (7, (3, 3)), (8, (3, 0)), (12, (4, 4)), (16, (4, 0))],
)
def test_bye_allocation(team_count, expected):
    assert bye_allocation(team_count) == expected


@pytest.mark.parametrize("team_count", range(4, 17))
def test_single_elimination_has_one_match_per_eliminated_team(team_count):
    matches, _, _ = _build(team_count, field_count=2)
    assert len(matches) == team_count - 1


@pytest.mark.parametrize("team_count", range(4, 17))
def test_double_elimination_adds_loser_bracket(team_count):
    matches, _, _ = _build(team_count, field_count=2, double=True)
    assert len(matches) > team_count - 1
    assert any(m.losers_bracket for m in matches.values())


@pytest.mark.parametrize("team_count", [0, 1, 2])
def test_small_divisions_are_skipped(team_count):
    matches, _, _ = _build(team_count)
    assert matches == {}


def test_three_team_division_is_built():
    matches, _, _ = _build(3)
    assert len(matches) == 2

    matches, _, _ = _build(3, double=True)
    assert len(matches) == 5


@pytest.mark.parametrize("double", [False, True])
@pytest.mark.parametrize("team_count", [5, 8, 11])
def test_numbers_are_contiguous_and_follow_dependencies(team_count, double):
    matches, _, _ = _build(team_count, field_count=2, double=double)

    numbers = sorted(m.match_number for m in matches.values())
    assert numbers == list(range(1, len(matches) + 1))

    for match in matches.values():
        for next_id in (match.winner_next_match_id, match.loser_next_match_id):
            if next_id:
                assert matches[next_id].match_number > match.match_number


@pytest.mark.parametrize("double", [False, True])
def test_every_match_is_booked_without_field_overlap(double):
    matches, _, fields = _build(8, field_count=2, double=double)

    assert all(m.field_id is not None for m in matches.values())
    assert sum(len(f.match_ids) for f in fields.values()) == len(matches)
    _assert_no_field_double_booking(matches, fields)


def test_dependencies_finish_before_successors_start():
    matches, _, _ = _build(10, field_count=3, double=True)
    for match in matches.values():
        for prev in predecessors(matches, match):
            assert prev.end + prev.buffer <= match.start


def test_eight_teams_on_one_field_play_one_at_a_time():
    matches, _, fields = _build(8, field_count=1)

    ordered = sorted(matches.values(), key=lambda m: m.match_number)
    assert len(ordered) == 7
    assert fields["field1"].match_ids == [m.id for m in ordered]
    for earlier, later in zip(ordered, ordered[1:]):
        assert earlier.end <= later.start


def test_bookings_are_balanced_across_fields():
    matches, _, fields = _build(8, field_count=2)
    assert sorted(len(f.match_ids) for f in fields.values()) == [3, 4]

    matches, _, fields = _build(4, field_count=3)
    assert [len(f.match_ids) for f in fields.values()] == [1, 1, 1]


def test_top_seed_meets_bottom_seed_without_byes():
    matches, _, _ = _build(4)
    opening = [m for m in matches.values() if m.team1_id and m.team2_id]
    pairs = {frozenset((m.team1_id, m.team2_id)) for m in opening}
    assert pairs == {frozenset(("team1", "team4")), frozenset(("team2", "team3"))}


def test_bye_seed_waits_and_referees_the_play_in():
    matches, _, _ = _build(5)

    waiting = [m for m in matches.values() if m.has_player("team1")]
    assert len(waiting) == 1
    node = waiting[0]
    # Right-hand branch: the seed holds its own-side slot
    assert node.side == "RIGHT"
    assert node.team2_id == "team1" and node.team1_id is None

    play_in = matches[node.previous_left_match_id]
    assert play_in.winner_next_match_id == node.id
    assert play_in.referee_id == "team1"
    assert play_in.team1_id and play_in.team2_id


@pytest.mark.parametrize("double", [False, True])
def test_initial_referees_are_not_playing(double):
    matches, _, _ = _build(9, field_count=2, double=double)

    refereed = [m for m in matches.values() if m.team1_id and m.team2_id]
    assert refereed
    for match in refereed:
        assert match.referee_id is not None
        assert not match.has_player(match.referee_id)


def test_double_elimination_final_shape():
    matches, _, _ = _build(8, field_count=2, double=True)

    final = max(matches.values(), key=lambda m: m.match_number)
    semifinal = matches[final.previous_left_match_id]
    assert final.previous_right_match_id == semifinal.id
    assert semifinal.winner_next_match_id == final.id
    assert semifinal.loser_next_match_id == final.id
    assert semifinal.match_number == final.match_number - 1

    feeders = predecessors(matches, semifinal)
    assert sorted(m.losers_bracket for m in feeders) == [False, True]


def test_every_loser_bracket_match_leads_somewhere():
    matches, _, _ = _build(12, field_count=2, double=True)
    for match in matches.values():
        if match.losers_bracket:
            assert match.winner_next_match_id in matches
            assert all(p.losers_bracket or p.loser_next_match_id == match.id for p in predecessors(matches, match))


def test_rebuild_reuses_ids_by_match_number():
    matches, teams, fields = _build(8, field_count=2, double=True)
    before = {m.match_number: m.id for m in matches.values()}
    teams["team1"].wins = 3
    teams["team2"].losses = 1

    _build(8, matches=matches, teams=teams, fields=fields, double=True)

    assert {m.match_number: m.id for m in matches.values()} == before
    assert teams["team1"].wins == 0
    assert teams["team2"].losses == 0
    booked = [mid for f in fields.values() for mid in f.match_ids]
    assert sorted(booked) == sorted(matches)


def test_divisions_are_built_and_numbered_independently():
    teams = {**make_teams(4, division="Open"), **make_teams(5, division="Masters", prefix="m")}
    tournament = make_tournament(divisions=["Open", "Masters"])
    fields = make_fields(2, divisions=("Open", "Masters"))
    matches = {}

    BracketBuilder(tournament, matches, teams, fields).build()

    per_division = Counter(m.division for m in matches.values())
    assert per_division == {"Open": 3, "Masters": 4}
    for division, count in per_division.items():
        numbers = sorted(m.match_number for m in matches.values() if m.division == division)
        assert numbers == list(range(1, count + 1))
    _assert_no_field_double_booking(matches, fields)
