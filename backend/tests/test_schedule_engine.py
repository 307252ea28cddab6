"""Schedule engine: dependency floors, field choice, capacity, stepping and conflict reporting."""
from datetime import datetime, timedelta

import pytest

from bracket_service.config import ScheduleSettings
from bracket_service.exceptions import UnschedulableMatchError
from bracket_service.models import Match, Side
from bracket_service.services.bracket_graph import intervals_overlap, link_winner
from bracket_service.services.schedule_engine import ScheduleEngine
from tests.factories import TOURNAMENT_START, make_fields, make_teams, make_tournament


def _match(match_id, number, team1=None, team2=None, referee=None, set_count=1, division="Open"):
    return Match(
        id=match_id,
        tournament_id="t1",
        match_number=number,
        division=division,
        team1_id=team1,
        team2_id=team2,
        referee_id=referee,
        set_results=[0] * set_count,
        team1_points=[0] * set_count,
        team2_points=[0] * set_count,
        start=TOURNAMENT_START,
        end=TOURNAMENT_START,
    )


def _engine(matches, team_count=8, field_count=1, **kwargs):
    return ScheduleEngine(
        make_tournament(),
        matches,
        make_teams(team_count),
        make_fields(field_count),
        divisions=["Open"],
        **kwargs,
    )


def _book(engine, match, start, field_id="field1", minutes=20):
    match.start = start
    match.end = start + timedelta(minutes=minutes)
    match.field_id = field_id
    engine.fields[field_id].book(match.id)


def test_intervals_touching_do_not_overlap():
    t = TOURNAMENT_START
    assert intervals_overlap(t, t + timedelta(minutes=20), t + timedelta(minutes=10), t + timedelta(minutes=30))
    assert not intervals_overlap(t, t + timedelta(minutes=20), t + timedelta(minutes=20), t + timedelta(minutes=40))
    assert not intervals_overlap(t + timedelta(minutes=20), t + timedelta(minutes=40), t, t + timedelta(minutes=20))


def test_first_match_starts_at_tournament_start():
    m1 = _match("m1", 1, "team1", "team2")
    engine = _engine({"m1": m1})

    field = engine.schedule_event(m1)

    assert field.id == "field1"
    assert m1.start == TOURNAMENT_START
    assert m1.end == TOURNAMENT_START + timedelta(minutes=20)
    assert engine.fields["field1"].match_ids == ["m1"]


def test_duration_scales_with_set_count():
    m1 = _match("m1", 1, "team1", "team2", set_count=3)
    engine = _engine({"m1": m1})

    engine.schedule_event(m1)

    assert m1.duration == timedelta(minutes=60)
    assert m1.buffer == timedelta(minutes=15)


def test_current_time_is_a_floor():
    m1 = _match("m1", 1, "team1", "team2")
    now = TOURNAMENT_START + timedelta(hours=2)
    engine = _engine({"m1": m1}, current_time=now)

    engine.schedule_event(m1)

    assert m1.start == now


def test_dependency_end_plus_buffer_is_respected():
    m1 = _match("m1", 1, "team1", "team2")
    m2 = _match("m2", 2, "team3", "team4")
    final = _match("m3", 3)
    link_winner(m1, final, Side.LEFT)
    link_winner(m2, final, Side.RIGHT)
    engine = _engine({"m1": m1, "m2": m2, "m3": final}, field_count=2)

    engine.schedule_event(m1)
    engine.schedule_event(m2)
    engine.schedule_event(final)

    # Both semis run in parallel, then five minutes of rest per set
    assert m1.start == m2.start == TOURNAMENT_START
    assert final.start == TOURNAMENT_START + timedelta(minutes=25)


def test_least_booked_field_is_preferred():
    matches = {f"m{i}": _match(f"m{i}", i) for i in range(1, 4)}
    engine = _engine(matches, field_count=2)
    _book(engine, matches["m1"], TOURNAMENT_START - timedelta(hours=2), field_id="field1")

    engine.schedule_event(matches["m2"])

    assert matches["m2"].field_id == "field2"
    assert matches["m2"].start == TOURNAMENT_START


def test_busy_field_steps_forward_in_five_minute_increments():
    m1 = _match("m1", 1, "team1", "team2")
    m2 = _match("m2", 2, "team3", "team4")
    engine = _engine({"m1": m1, "m2": m2})
    _book(engine, m1, TOURNAMENT_START + timedelta(minutes=3), minutes=20)

    engine.schedule_event(m2)

    # 09:00 overlaps 09:03-09:23; 09:05 ... 09:20 overlap too; 09:25 is the first free step
    assert m2.start == TOURNAMENT_START + timedelta(minutes=25)
    assert not intervals_overlap(m1.start, m1.end, m2.start, m2.end)


def test_capacity_limits_parallel_matches():
    # Four teams can only fill two simultaneous matches, even with three fields
    matches = {f"m{i}": _match(f"m{i}", i) for i in range(1, 4)}
    engine = _engine(matches, team_count=4, field_count=3)

    for match in matches.values():
        engine.schedule_event(match)

    assert matches["m1"].start == TOURNAMENT_START
    assert matches["m2"].start == TOURNAMENT_START
    assert matches["m3"].start == TOURNAMENT_START + timedelta(minutes=20)


def test_free_participants_excludes_players_and_referees():
    m1 = _match("m1", 1, "team1", "team2", referee="team3")
    engine = _engine({"m1": m1}, team_count=5)
    _book(engine, m1, TOURNAMENT_START)

    free = engine.free_participants("Open", TOURNAMENT_START, TOURNAMENT_START + timedelta(minutes=20))
    assert [t.id for t in free] == ["team4", "team5"]

    later = engine.free_participants(
        "Open", TOURNAMENT_START + timedelta(minutes=20), TOURNAMENT_START + timedelta(minutes=40)
    )
    assert len(later) == 5


def test_participant_conflicts_report_overlapping_involvement():
    m1 = _match("m1", 1, "team1", "team2")
    m2 = _match("m2", 2, "team3", "team4", referee="team1")
    m3 = _match("m3", 3, "team5", "team6", referee="team2")
    engine = _engine({"m1": m1, "m2": m2, "m3": m3}, field_count=3)
    _book(engine, m1, TOURNAMENT_START, field_id="field1")
    _book(engine, m2, TOURNAMENT_START + timedelta(minutes=10), field_id="field2")
    _book(engine, m3, TOURNAMENT_START + timedelta(minutes=20), field_id="field3")

    conflicts = engine.get_participant_conflicts()

    assert set(conflicts) == {"team1"}
    assert [m.id for m in conflicts["team1"]] == ["m1", "m2"]


def test_unschedule_event_releases_the_field():
    m1 = _match("m1", 1, "team1", "team2")
    engine = _engine({"m1": m1})
    engine.schedule_event(m1)

    engine.unschedule_event(m1)

    assert m1.field_id is None
    assert engine.fields["field1"].match_ids == []


def test_search_gives_up_at_the_horizon():
    m1 = _match("m1", 1, "team1", "team2")
    engine = ScheduleEngine(
        make_tournament(),
        {"m1": m1},
        make_teams(4),
        make_fields(1, divisions=("Other",)),
        divisions=["Open"],
        settings=ScheduleSettings(horizon_days=0, step_minutes=60),
    )

    with pytest.raises(UnschedulableMatchError) as exc_info:
        engine.schedule_event(m1)

    assert exc_info.value.match_id == "m1"
    assert engine.horizon_end == make_tournament().end


def test_default_horizon_extends_past_tournament_end():
    engine = _engine({})
    assert engine.horizon_end == make_tournament().end + timedelta(days=7)

    late = datetime(2026, 6, 20, 12, 0)
    engine = _engine({}, current_time=late)
    assert engine.horizon_end == late + timedelta(days=7)
