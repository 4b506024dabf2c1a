from __future__ import annotations

import math
import sys
from collections import Counter
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from pathlib import Path
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from twilight.astro import EphemerisError
from twilight.phases import Coordinate, DayEphemeris

PACIFIC = ZoneInfo("America/Los_Angeles")
PORTLAND = Coordinate(45.5875, -122.5889)


def at(day: date, clock: str, zone: tzinfo = PACIFIC) -> datetime:
    """UTC instant of a local wall-clock time."""

    return datetime.combine(day, time.fromisoformat(clock), tzinfo=zone).astimezone(UTC)


def symmetric_day(
    day: date,
    half_daylight: timedelta,
    zone: tzinfo = PACIFIC,
    noon: str = "13:30",
    civil: timedelta = timedelta(minutes=35),
    nautical: timedelta = timedelta(minutes=40),
    astro: timedelta = timedelta(minutes=40),
) -> DayEphemeris:
    """A day whose crossings mirror each other around local solar noon."""

    transit = at(day, noon, zone)
    rise = transit - half_daylight
    sett = transit + half_daylight
    return DayEphemeris(
        transit=transit,
        sunrise=rise,
        sunset=sett,
        civil_dawn=rise - civil,
        civil_dusk=sett + civil,
        nautical_dawn=rise - civil - nautical,
        nautical_dusk=sett + civil + nautical,
        astro_dawn=rise - civil - nautical - astro,
        astro_dusk=sett + civil + nautical + astro,
    )


def seasonal_half_daylight(day: date) -> timedelta:
    """Half the daylight of a mid-latitude day: 8h at the June solstice, 4h in December."""

    day_of_year = day.timetuple().tm_yday
    hours = 6.0 + 2.0 * math.cos(2.0 * math.pi * (day_of_year - 172) / 365.0)
    return timedelta(hours=hours)


class SyntheticProvider:
    """Deterministic stand-in for the ephemeris oracle.

    Days listed in ``overrides`` return the given ephemeris (or raise it if
    it is an exception); all others follow a smooth seasonal curve.
    """

    def __init__(
        self,
        zone: tzinfo = PACIFIC,
        overrides: Optional[Dict[date, object]] = None,
        default: Optional[Callable[[date], DayEphemeris]] = None,
    ):
        self.zone = zone
        self.overrides = dict(overrides or {})
        self.default = default
        self.calls: List[date] = []

    def __call__(
        self, day_start: datetime, day_end: datetime, coordinate: Coordinate
    ) -> DayEphemeris:
        day = day_start.astimezone(self.zone).date()
        self.calls.append(day)
        override = self.overrides.get(day)
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return override
        if self.default is not None:
            return self.default(day)
        return symmetric_day(day, seasonal_half_daylight(day), self.zone)

    def call_counts(self) -> Counter:
        return Counter(self.calls)


@pytest.fixture
def provider() -> SyntheticProvider:
    return SyntheticProvider()


@pytest.fixture
def failing_day() -> date:
    return date(2025, 3, 12)


@pytest.fixture
def flaky_provider(failing_day: date) -> SyntheticProvider:
    return SyntheticProvider(overrides={failing_day: EphemerisError("no convergence")})
