"""Request-scoped memoization of ephemeris oracle results."""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Dict, Protocol, Tuple

from .astro import EphemerisError
from .phases import Coordinate, DayEphemeris

__all__ = ["EphemerisCache", "SolarEphemerisProvider", "local_midnight"]

LOGGER = logging.getLogger(__name__)


class SolarEphemerisProvider(Protocol):
    """Anything that returns the solar crossings inside a local day."""

    def __call__(
        self, day_start: datetime, day_end: datetime, coordinate: Coordinate
    ) -> DayEphemeris:
        ...


def local_midnight(day: date, zone: tzinfo) -> datetime:
    """Start of *day* in *zone*, expressed in UTC."""

    return datetime.combine(day, time.min, tzinfo=zone).astimezone(UTC)


class EphemerisCache:
    """Memoizes oracle answers per (day, coordinate) in one time zone.

    Oracle failures are recorded as :meth:`DayEphemeris.unavailable` so a
    bad day degrades the feed instead of aborting it.
    """

    def __init__(self, provider: SolarEphemerisProvider, zone: tzinfo):
        self._provider = provider
        self._zone = zone
        self._entries: Dict[Tuple[date, Tuple[float, float, int]], DayEphemeris] = {}
        self.calls = 0

    @property
    def zone(self) -> tzinfo:
        return self._zone

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, day: date, coordinate: Coordinate) -> DayEphemeris:
        key = (day, coordinate.cache_key())
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        day_start = local_midnight(day, self._zone)
        day_end = local_midnight(day + timedelta(days=1), self._zone)
        self.calls += 1
        try:
            result = self._provider(day_start, day_end, coordinate)
        except (EphemerisError, ValueError, ArithmeticError) as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "ephemeris_unavailable",
                        "date": day.isoformat(),
                        "lat": coordinate.latitude,
                        "lon": coordinate.longitude,
                        "error": str(exc),
                    }
                )
            )
            result = DayEphemeris.unavailable()
        self._entries[key] = result
        return result
