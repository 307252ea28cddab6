"""
Runtime configuration.

Values come from the environment (optionally seeded from a .env file).
Scheduling constants are grouped in ScheduleSettings so engines can be
driven with non-default timings in tests.
"""
import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./brackets.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Match timing
SET_MINUTES = int(os.getenv("SET_MINUTES", "20"))
REST_MINUTES_PER_SET = int(os.getenv("REST_MINUTES_PER_SET", "5"))

# Allocation search
SCHEDULE_STEP_MINUTES = int(os.getenv("SCHEDULE_STEP_MINUTES", "5"))
SCHEDULE_HORIZON_DAYS = int(os.getenv("SCHEDULE_HORIZON_DAYS", "7"))


@dataclass(frozen=True)
class ScheduleSettings:
    set_minutes: int = SET_MINUTES
    rest_minutes_per_set: int = REST_MINUTES_PER_SET
    step_minutes: int = SCHEDULE_STEP_MINUTES
    horizon_days: int = SCHEDULE_HORIZON_DAYS

    @property
    def step(self) -> timedelta:
        return timedelta(minutes=self.step_minutes)

    @property
    def horizon(self) -> timedelta:
        return timedelta(days=self.horizon_days)

    def match_duration(self, set_count: int) -> timedelta:
        """Playing time for a match of set_count sets."""
        return timedelta(minutes=self.set_minutes * set_count)


DEFAULT_SCHEDULE_SETTINGS = ScheduleSettings()
