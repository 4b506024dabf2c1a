"""Assembling calendar events from the day-by-day phase timeline."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from threading import Event
from typing import Dict, FrozenSet, Iterator, List, Optional
from zoneinfo import ZoneInfo

from .cache import EphemerisCache, SolarEphemerisProvider
from .config import Settings
from .phases import (
    EVENING_BOUNDARIES,
    MORNING_BOUNDARIES,
    Coordinate,
    DayEphemeris,
    PhaseKind,
    PhaseSegment,
)
from .segments import SegmentBuilder
from .yearstats import RANKED_KINDS, YearStatisticsCache, YearStatisticsIndex

__all__ = [
    "FeedAborted",
    "FeedAssembler",
    "FeedEvent",
    "FeedRequest",
    "InvalidSelection",
    "format_clock",
    "format_duration",
]

LOGGER = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
UID_DOMAIN = "sunrise-calendar"

_PHASE_NOTES = {
    PhaseKind.night: (
        "Night: the sun is more than 18° below the horizon and the sky is fully dark."
    ),
    PhaseKind.astro_dawn: (
        "Astronomical twilight: the sun is 12° to 18° below the horizon; "
        "the faintest stars fade from view."
    ),
    PhaseKind.nautical_dawn: (
        "Nautical twilight: the sun is 6° to 12° below the horizon; "
        "the horizon becomes visible at sea."
    ),
    PhaseKind.civil_dawn: (
        "Civil twilight: the sun is up to 6° below the horizon; "
        "there is enough light for most outdoor activities."
    ),
    PhaseKind.daylight: "Daylight: the sun is above the horizon.",
    PhaseKind.civil_dusk: (
        "Civil twilight: the sun is up to 6° below the horizon; "
        "the brightest stars and planets appear."
    ),
    PhaseKind.nautical_dusk: (
        "Nautical twilight: the sun is 6° to 12° below the horizon; "
        "the horizon fades out at sea."
    ),
    PhaseKind.astro_dusk: (
        "Astronomical twilight: the sun is 12° to 18° below the horizon; "
        "the last glow leaves the sky."
    ),
}

_RANKED_NOUNS = {PhaseKind.daylight: "days", PhaseKind.night: "nights"}


class InvalidSelection(ValueError):
    """Raised when a request selects no phase kinds."""


class FeedAborted(RuntimeError):
    """Raised when a request is cancelled or runs past its time budget."""


@dataclass(frozen=True)
class FeedRequest:
    """A sanitized feed request. Offsets are in minutes."""

    coordinate: Coordinate
    timezone: str
    start_date: date
    end_date: date
    kinds: FrozenSet[PhaseKind]
    rise_offset: int = 0
    set_offset: int = 0
    twelve_hour: bool = False
    description: str = ""

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class FeedEvent:
    uid: str
    kind: PhaseKind
    start: datetime
    end: datetime
    summary: str
    description: str
    day: date
    duration_seconds: float
    percent_of_day: float
    percentile: Optional[float] = None


def format_clock(moment: datetime, zone: tzinfo, twelve_hour: bool = False) -> str:
    local = moment.astimezone(zone)
    if twelve_hour:
        meridiem = "AM" if local.hour < 12 else "PM"
        return f"{local.hour % 12 or 12}:{local.minute:02d} {meridiem}"
    return f"{local:%H:%M}"


def format_duration(seconds: float) -> str:
    minutes = int(round(seconds / 60.0))
    return f"{minutes // 60}h {minutes % 60:02d}m"


class FeedAssembler:
    """Walks a date window and turns each day's phases into calendar events.

    One assembler serves every request of the process. Per-request state
    (the ephemeris memo) lives inside :meth:`iter_events`; the yearly
    statistics cache is shared.
    """

    def __init__(
        self,
        provider: SolarEphemerisProvider,
        settings: Settings,
        stats_cache: Optional[YearStatisticsCache] = None,
    ):
        self.provider = provider
        self.settings = settings
        if stats_cache is None:
            stats_cache = YearStatisticsCache(
                max_entries=settings.stats_cache_size,
                ttl_seconds=settings.stats_cache_ttl,
            )
        self.stats_cache = stats_cache

    def assemble(
        self, request: FeedRequest, cancel: Optional[Event] = None
    ) -> List[FeedEvent]:
        return list(self.iter_events(request, cancel))

    def iter_events(
        self, request: FeedRequest, cancel: Optional[Event] = None
    ) -> Iterator[FeedEvent]:
        """Validate *request* and return a lazy iterator over its events.

        Raises
        ------
        InvalidSelection
            If no phase kinds are selected. Raised here, before any oracle
            call is made.
        """

        if not request.kinds:
            raise InvalidSelection(
                "Please select at least one phase (night, twilight or daylight)"
            )
        last_day = self.last_day(request)
        if last_day != request.end_date:
            LOGGER.info(
                json.dumps(
                    {
                        "event": "window_clamped",
                        "start": request.start_date.isoformat(),
                        "requested_end": request.end_date.isoformat(),
                        "end": last_day.isoformat(),
                    }
                )
            )
        deadline = time.monotonic() + self.settings.feed_timeout
        return self._walk(request, last_day, cancel, deadline)

    def last_day(self, request: FeedRequest) -> date:
        """Final day walked: the requested end, clamped to the window size."""

        try:
            limit = request.start_date + timedelta(days=self.settings.window_days - 1)
        except OverflowError:
            return request.end_date
        return min(request.end_date, limit)

    def _walk(
        self,
        request: FeedRequest,
        last_day: date,
        cancel: Optional[Event],
        deadline: float,
    ) -> Iterator[FeedEvent]:
        started = time.perf_counter()
        zone = request.zone
        coordinate = request.coordinate
        ephemeris = EphemerisCache(self.provider, zone)
        builder = SegmentBuilder(zone)
        indexes: Dict[int, YearStatisticsIndex] = {}
        seen = set()
        emitted = 0

        day = request.start_date
        today = ephemeris.get(day, coordinate) if day <= last_day else None
        while day <= last_day:
            if cancel is not None and cancel.is_set():
                raise FeedAborted("Feed generation was cancelled")
            if time.monotonic() > deadline:
                raise FeedAborted("Feed generation exceeded its time budget")

            following = day + timedelta(days=1)
            tomorrow = ephemeris.get(following, coordinate)
            day_events = []
            for segment in builder.build(day, today, tomorrow):
                if segment.carried_over or segment.kind not in request.kinds:
                    continue
                index = None
                if segment.kind in RANKED_KINDS:
                    index = indexes.get(day.year)
                    if index is None:
                        index = self.stats_cache.for_year(coordinate, day.year, ephemeris)
                        indexes[day.year] = index
                event = self._event(request, zone, day, segment, today, index)
                if event.uid in seen:
                    continue
                seen.add(event.uid)
                day_events.append(event)
            day_events.sort(key=lambda event: event.start)
            emitted += len(day_events)
            yield from day_events
            day, today = following, tomorrow

        LOGGER.info(
            json.dumps(
                {
                    "event": "feed_assembled",
                    "lat": coordinate.latitude,
                    "lon": coordinate.longitude,
                    "start": request.start_date.isoformat(),
                    "end": last_day.isoformat(),
                    "events": emitted,
                    "oracle_calls": ephemeris.calls,
                    "duration_ms": round((time.perf_counter() - started) * 1000.0, 3),
                }
            )
        )

    @staticmethod
    def _offset(request: FeedRequest, boundary: Optional[str]) -> timedelta:
        if boundary in MORNING_BOUNDARIES:
            return timedelta(minutes=request.rise_offset)
        if boundary in EVENING_BOUNDARIES:
            return timedelta(minutes=request.set_offset)
        return timedelta(0)

    def _event(
        self,
        request: FeedRequest,
        zone: tzinfo,
        day: date,
        segment: PhaseSegment,
        today: DayEphemeris,
        index: Optional[YearStatisticsIndex],
    ) -> FeedEvent:
        start = segment.start + self._offset(request, segment.start_boundary)
        end = segment.end + self._offset(request, segment.end_boundary)
        if end < start:
            end = start

        duration = segment.duration_seconds
        percent = round(100.0 * duration / SECONDS_PER_DAY, 1)
        # Daylight ranks only sunrise-to-sunset days, like the yearly index.
        ranked = today.daylight_seconds if segment.kind is PhaseKind.daylight else duration
        percentile = None
        if index is not None and ranked is not None:
            percentile = index.percentile(ranked, segment.kind)

        lat = request.coordinate.latitude
        lon = request.coordinate.longitude
        local_day = segment.start.astimezone(zone)
        uid = f"{local_day:%Y%m%d}-{segment.kind.value}-{lat:.6f}-{lon:.6f}@{UID_DOMAIN}"

        twelve = request.twelve_hour
        summary = (
            f"{segment.kind.label}: {format_clock(segment.start, zone, twelve)}"
            f" - {format_clock(segment.end, zone, twelve)}"
        )

        lines = [f"Duration: {format_duration(duration)} ({percent}% of the day)."]
        if percentile is not None:
            lines.append(
                f"Longer than {percentile}% of {_RANKED_NOUNS[segment.kind]} in {day.year}."
            )
        lines.append(_PHASE_NOTES[segment.kind])
        if today.transit is not None:
            lines.append(f"Solar noon: {format_clock(today.transit, zone, twelve)}.")
        if request.description:
            lines.append(request.description)

        return FeedEvent(
            uid=uid,
            kind=segment.kind,
            start=start,
            end=end,
            summary=summary,
            description="\n".join(lines),
            day=day,
            duration_seconds=duration,
            percent_of_day=percent,
            percentile=percentile,
        )
