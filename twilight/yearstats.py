"""Yearly daylight/night distributions and percentile ranking."""

from __future__ import annotations

import json
import logging
import time
from bisect import bisect_left
from collections import OrderedDict
from datetime import date, timedelta, tzinfo
from threading import Event, Lock
from typing import Callable, Dict, Hashable, Iterable, Optional, Tuple

from .cache import EphemerisCache
from .phases import Coordinate, PhaseKind
from .segments import SegmentBuilder

__all__ = ["YearStatisticsIndex", "YearStatisticsCache"]

LOGGER = logging.getLogger(__name__)

RANKED_KINDS = frozenset((PhaseKind.daylight, PhaseKind.night))


class YearStatisticsIndex:
    """Sorted durations of every daylight and night period of one year.

    The percentile of a duration is the share of the year's periods that
    are strictly shorter, so the shortest day ranks 0.
    """

    def __init__(self, year: int, daylight: Iterable[float], night: Iterable[float]):
        self.year = year
        self._distributions: Dict[PhaseKind, Tuple[float, ...]] = {
            PhaseKind.daylight: tuple(sorted(daylight)),
            PhaseKind.night: tuple(sorted(night)),
        }

    @classmethod
    def build(
        cls, year: int, coordinate: Coordinate, ephemeris: EphemerisCache
    ) -> "YearStatisticsIndex":
        """Walk every day of *year* once and collect its durations.

        Daylight counts only days with both a sunrise and a later sunset.
        Night counts every Night segment that begins during the year, which
        needs the ephemeris of 1 January of the following year.
        """

        builder = SegmentBuilder(ephemeris.zone)
        daylight = []
        night = []

        day = date(year, 1, 1)
        stop = date(year + 1, 1, 1)
        today = ephemeris.get(day, coordinate)
        while day < stop:
            following = day + timedelta(days=1)
            tomorrow = ephemeris.get(following, coordinate)
            seconds = today.daylight_seconds
            if seconds is not None:
                daylight.append(seconds)
            for segment in builder.build(day, today, tomorrow):
                if segment.kind is PhaseKind.night and not segment.carried_over:
                    night.append(segment.duration_seconds)
            day, today = following, tomorrow
        return cls(year, daylight, night)

    def count(self, kind: PhaseKind = PhaseKind.daylight) -> int:
        return len(self._distribution(kind))

    def _distribution(self, kind: PhaseKind) -> Tuple[float, ...]:
        try:
            return self._distributions[kind]
        except KeyError as exc:
            raise ValueError(f"No yearly distribution for phase: {kind.value}") from exc

    def percentile(
        self, duration_seconds: float, kind: PhaseKind = PhaseKind.daylight
    ) -> Optional[float]:
        """Rank *duration_seconds* in the year, or ``None`` if nothing to rank against."""

        values = self._distribution(kind)
        if not values:
            return None
        below = bisect_left(values, duration_seconds)
        return round(100.0 * below / len(values), 1)


def _zone_key(zone: tzinfo) -> str:
    return getattr(zone, "key", None) or str(zone)


class YearStatisticsCache:
    """Process-wide LRU of year indexes with expiry and single-flight builds.

    Only the first caller that misses a key builds it; concurrent callers
    for the same key wait for that build instead of repeating it.
    """

    def __init__(
        self,
        max_entries: int = 64,
        ttl_seconds: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, YearStatisticsIndex]]" = OrderedDict()
        self._pending: Dict[Hashable, Event] = {}
        self._lock = Lock()
        self.builds = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _lookup(self, key: Hashable) -> Optional[YearStatisticsIndex]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires, index = entry
        if expires <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return index

    def for_year(
        self, coordinate: Coordinate, year: int, ephemeris: EphemerisCache
    ) -> YearStatisticsIndex:
        key = (coordinate.cache_key(), _zone_key(ephemeris.zone), year)
        while True:
            with self._lock:
                index = self._lookup(key)
                if index is not None:
                    return index
                pending = self._pending.get(key)
                if pending is None:
                    pending = Event()
                    self._pending[key] = pending
                    break
            pending.wait()

        try:
            started = time.perf_counter()
            index = YearStatisticsIndex.build(year, coordinate, ephemeris)
        except BaseException:
            with self._lock:
                del self._pending[key]
            pending.set()
            raise

        with self._lock:
            self.builds += 1
            self._entries[key] = (self._clock() + self.ttl_seconds, index)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            del self._pending[key]
        pending.set()

        LOGGER.info(
            json.dumps(
                {
                    "event": "year_index_built",
                    "year": year,
                    "lat": coordinate.latitude,
                    "lon": coordinate.longitude,
                    "daylight_days": index.count(PhaseKind.daylight),
                    "nights": index.count(PhaseKind.night),
                    "duration_ms": round((time.perf_counter() - started) * 1000.0, 3),
                }
            )
        )
        return index
