"""
Schedule Engine: place matches on fields in time.

A match is placed at the earliest instant that satisfies:
  - DEPENDENCIES  every predecessor has ended and its rest buffer has passed
  - CAPACITY      the division still has two untaken participant slots
  - RESOURCE      one of the division's fields has no overlapping booking

Fields are tried least-booked first; when nothing fits the search steps
forward (SCHEDULE_STEP_MINUTES) until the horizon, past which the match is
reported as unschedulable.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from bracket_service.config import DEFAULT_SCHEDULE_SETTINGS, ScheduleSettings
from bracket_service.exceptions import UnschedulableMatchError
from bracket_service.models.match import Match
from bracket_service.models.playing_field import PlayingField
from bracket_service.models.team import Team
from bracket_service.models.tournament import Tournament
from bracket_service.services.bracket_graph import intervals_overlap, predecessors

logger = logging.getLogger(__name__)

# Every booked match occupies two player slots of its division
SLOTS_PER_MATCH = 2


class ScheduleEngine:
    """
    Time/field allocator over one tournament's record maps.

    `divisions` are the active divisions: only booked matches in these
    divisions count against participant capacity and appear in conflict
    reports. `current_time` (if given) is a floor for every placement.
    """

    def __init__(
        self,
        tournament: Tournament,
        matches: Dict[str, Match],
        teams: Dict[str, Team],
        fields: Dict[str, PlayingField],
        divisions: Iterable[str],
        current_time: Optional[datetime] = None,
        horizon_end: Optional[datetime] = None,
        settings: ScheduleSettings = DEFAULT_SCHEDULE_SETTINGS,
    ):
        self.tournament = tournament
        self.matches = matches
        self.teams = teams
        self.fields = fields
        self.divisions = list(divisions)
        self.current_time = current_time
        self.settings = settings

        self.start_time = tournament.start
        if current_time is not None and current_time > self.start_time:
            self.start_time = current_time

        if horizon_end is None:
            horizon_end = max(tournament.end, self.start_time) + settings.horizon
        self.horizon_end = horizon_end

    # ========================================================================
    # Queries
    # ========================================================================

    def booked_matches(self, divisions: Optional[Iterable[str]] = None) -> List[Match]:
        """Matches currently bound to a field, optionally limited to some divisions."""
        wanted = set(self.divisions if divisions is None else divisions)
        return [m for m in self.matches.values() if m.field_id is not None and m.division in wanted]

    def overlapping_matches(
        self,
        start: datetime,
        end: datetime,
        divisions: Optional[Iterable[str]] = None,
        exclude_id: Optional[str] = None,
    ) -> List[Match]:
        return [
            m
            for m in self.booked_matches(divisions)
            if m.id != exclude_id and intervals_overlap(m.start, m.end, start, end)
        ]

    def division_teams(self, division: str) -> List[Team]:
        return [t for t in self.teams.values() if t.division == division]

    def free_participants(self, division: str, start: datetime, end: datetime) -> List[Team]:
        """
        Teams of the division that neither play nor referee a booked match
        overlapping [start, end). Order follows the team map.
        """
        busy = set()
        for match in self.overlapping_matches(start, end, divisions=[division]):
            busy.update(tid for tid in (match.team1_id, match.team2_id, match.referee_id) if tid)
        return [t for t in self.division_teams(division) if t.id not in busy]

    def get_participant_conflicts(self, divisions: Optional[Iterable[str]] = None) -> Dict[str, List[Match]]:
        """
        Map team id -> booked matches the team plays or referees that overlap
        another of its booked matches. Teams without conflicts are omitted.
        """
        involved: Dict[str, List[Match]] = defaultdict(list)
        for match in self.booked_matches(divisions):
            for team_id in {match.team1_id, match.team2_id, match.referee_id}:
                if team_id:
                    involved[team_id].append(match)

        conflicts: Dict[str, List[Match]] = {}
        for team_id, team_matches in involved.items():
            clashing = [
                m
                for m in team_matches
                if any(
                    other.id != m.id and intervals_overlap(m.start, m.end, other.start, other.end)
                    for other in team_matches
                )
            ]
            if clashing:
                conflicts[team_id] = sorted(clashing, key=lambda m: (m.start, m.match_number))
        return conflicts

    # ========================================================================
    # Placement
    # ========================================================================

    def earliest_start(self, match: Match) -> datetime:
        earliest = self.start_time
        for prev in predecessors(self.matches, match):
            ready_at = prev.end + prev.buffer
            if ready_at > earliest:
                earliest = ready_at
        return earliest

    def _has_capacity(self, match: Match, start: datetime, end: datetime) -> bool:
        taken = SLOTS_PER_MATCH * len(self.overlapping_matches(start, end, exclude_id=match.id))
        return len(self.division_teams(match.division)) - taken >= SLOTS_PER_MATCH

    def _field_pool(self, division: str) -> List[PlayingField]:
        serving = [f for f in self.fields.values() if f.serves(division)]
        serving.sort(key=lambda f: f.field_number)
        # Stable: equal loads keep field-number order
        return sorted(serving, key=lambda f: len(f.match_ids or []))

    def _field_is_free(self, field: PlayingField, start: datetime, end: datetime, exclude_id: str) -> bool:
        for match_id in field.match_ids or []:
            if match_id == exclude_id:
                continue
            booked = self.matches.get(match_id)
            if booked is not None and intervals_overlap(booked.start, booked.end, start, end):
                return False
        return True

    def schedule_event(self, match: Match, duration: Optional[timedelta] = None) -> PlayingField:
        """
        Find a slot for the match, bind it, and return the chosen field.

        Raises UnschedulableMatchError when no slot ends before the horizon.
        """
        if duration is None:
            duration = self.settings.match_duration(match.set_count)
        if match.field_id is not None:
            self.unschedule_event(match)

        candidate = self.earliest_start(match)
        while True:
            candidate_end = candidate + duration
            if candidate_end > self.horizon_end:
                logger.warning(
                    "Match %s (#%s, %s) found no slot before %s",
                    match.id,
                    match.match_number,
                    match.division,
                    self.horizon_end,
                )
                raise UnschedulableMatchError(match.id, self.horizon_end)

            if self._has_capacity(match, candidate, candidate_end):
                for field in self._field_pool(match.division):
                    if self._field_is_free(field, candidate, candidate_end, match.id):
                        self._book(match, field, candidate, candidate_end)
                        return field

            candidate += self.settings.step

    def _book(self, match: Match, field: PlayingField, start: datetime, end: datetime) -> None:
        match.start = start
        match.end = end
        match.field_id = field.id
        field.book(match.id)
        logger.debug(
            "Booked match #%s (%s) on field %s from %s to %s",
            match.match_number,
            match.division,
            field.field_number,
            start,
            end,
        )

    def unschedule_event(self, match: Match) -> None:
        """Release the match's field booking; its time window is kept until it is placed again."""
        field = self.fields.get(match.field_id) if match.field_id else None
        if field is not None:
            field.release(match.id)
        match.field_id = None
        logger.debug("Released match #%s (%s)", match.match_number, match.division)
