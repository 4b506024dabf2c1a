"""Twilight segmentation and percentile statistics for calendar feeds."""

from .access import AccessGate, InvalidAuthentication, verify
from .astro import EphemerisError, SpiceEphemerisProvider, compute_day_ephemeris, load_ephemeris
from .cache import EphemerisCache, SolarEphemerisProvider
from .config import Settings
from .feed import FeedAborted, FeedAssembler, FeedEvent, FeedRequest, InvalidSelection
from .ical import render_calendar
from .phases import Coordinate, DayEphemeris, PhaseKind, PhaseSegment
from .segments import SegmentBuilder
from .yearstats import YearStatisticsCache, YearStatisticsIndex

__all__ = [
    "AccessGate",
    "Coordinate",
    "DayEphemeris",
    "EphemerisCache",
    "EphemerisError",
    "FeedAborted",
    "FeedAssembler",
    "FeedEvent",
    "FeedRequest",
    "InvalidAuthentication",
    "InvalidSelection",
    "PhaseKind",
    "PhaseSegment",
    "SegmentBuilder",
    "Settings",
    "SolarEphemerisProvider",
    "SpiceEphemerisProvider",
    "YearStatisticsCache",
    "YearStatisticsIndex",
    "compute_day_ephemeris",
    "load_ephemeris",
    "render_calendar",
    "verify",
]
