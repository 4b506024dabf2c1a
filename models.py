"""Pydantic models for feed requests and responses."""

from __future__ import annotations

import math
import re
from datetime import MAXYEAR, MINYEAR, date, datetime, time, timedelta
from typing import FrozenSet, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import dateutil.parser
from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta
from pydantic import BaseModel, ConfigDict, Field, field_validator

from twilight.config import DEFAULT_LATITUDE, DEFAULT_LONGITUDE, DEFAULT_TIMEZONE
from twilight.feed import FeedEvent, FeedRequest
from twilight.phases import Coordinate, PhaseKind

MAX_OFFSET_MINUTES = 1440
MAX_DESCRIPTION_LENGTH = 500
DEFAULT_WINDOW = timedelta(days=364)

# A walked year also needs 1 January of the following year.
EARLIEST_DATE = date(MINYEAR + 1, 1, 1)
LATEST_DATE = date(MAXYEAR - 1, 12, 31)

_TAG_PATTERN = re.compile(r"<[^>]*>")
_RELATIVE_PATTERN = re.compile(r"^([+-]?\d+)\s*(day|week|month|year)s?$")
_WEEKDAY_PATTERN = re.compile(r"^(next|last)\s+(mon|tue|wed|thu|fri|sat|sun)[a-z]*$")
_WEEKDAYS = {
    "mon": MO,
    "tue": TU,
    "wed": WE,
    "thu": TH,
    "fri": FR,
    "sat": SA,
    "sun": SU,
}


def sanitize_float(value, default: float, minimum: float, maximum: float) -> float:
    """Return *value* as a float, or *default* when unparseable or out of range."""

    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or not minimum <= number <= maximum:
        return default
    return number


def sanitize_int(value, default: int, minimum: int, maximum: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    if not minimum <= number <= maximum:
        return default
    return number


def sanitize_timezone(value) -> str:
    if not isinstance(value, str) or not value:
        return DEFAULT_TIMEZONE
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        return DEFAULT_TIMEZONE
    return value


def sanitize_text(value, max_length: int = MAX_DESCRIPTION_LENGTH) -> str:
    if not isinstance(value, str):
        return ""
    clean = _TAG_PATTERN.sub("", value)
    clean = clean.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    return clean[:max_length]


def _resolve_date(text: str, today: date) -> Optional[date]:
    named = {"now": 0, "today": 0, "tomorrow": 1, "yesterday": -1}
    if text in named:
        return today + relativedelta(days=named[text])

    match = _RELATIVE_PATTERN.match(text)
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        return today + relativedelta(**{f"{unit}s": amount})

    match = _WEEKDAY_PATTERN.match(text)
    if match:
        direction, name = match.groups()
        weekday = _WEEKDAYS[name[:3]]
        if direction == "next":
            return today + relativedelta(days=+1, weekday=weekday(+1))
        return today + relativedelta(days=-1, weekday=weekday(-1))

    default = datetime.combine(today, time.min)
    return dateutil.parser.parse(text, default=default).date()


def parse_date(value: Optional[str], today: date) -> Optional[date]:
    """Parse the loose date forms accepted by the feed form.

    Relative forms (``today``, ``tomorrow``, ``yesterday``,
    ``+N day|week|month|year`` and ``next|last <weekday>``) resolve against
    *today*; anything else goes through :func:`dateutil.parser.parse`, so
    ``2025-06-21``, ``06/21/2025`` and ``June 21, 2025`` all work. Returns
    ``None`` for unparseable text and for dates outside
    ``EARLIEST_DATE``..``LATEST_DATE``.
    """

    text = (value or "").strip().lower()
    if not text:
        return None
    try:
        parsed = _resolve_date(text, today)
    except (OverflowError, ValueError):
        return None
    if parsed is None or not EARLIEST_DATE <= parsed <= LATEST_DATE:
        return None
    return parsed


class FeedQueryParams(BaseModel):
    """Query parameters of the feed endpoints.

    Invalid values never fail the request: each falls back to its default.
    """

    model_config = ConfigDict(extra="ignore")

    lat: float = Field(DEFAULT_LATITUDE, description="Latitude in degrees")
    lon: float = Field(DEFAULT_LONGITUDE, description="Longitude in degrees")
    elev: float = Field(0.0, description="Observer elevation in meters")
    zone: str = Field(DEFAULT_TIMEZONE, description="IANA time zone name")
    start: Optional[str] = Field(None, description="First day (default: today)")
    end: Optional[str] = Field(None, description="Last day (default: start + 364 days)")
    rise_off: int = Field(0, description="Minutes added to dawn-side boundaries")
    set_off: int = Field(0, description="Minutes added to dusk-side boundaries")
    night: bool = False
    astro_dawn: bool = False
    nautical_dawn: bool = False
    civil_dawn: bool = False
    daylight: bool = False
    civil_dusk: bool = False
    nautical_dusk: bool = False
    astro_dusk: bool = False
    twelve: bool = Field(False, description="Use 12-hour clock in summaries")
    description: str = Field("", description="Text appended to every event")
    token: Optional[str] = Field(None, description="Feed access token")

    @field_validator("lat", mode="before")
    @classmethod
    def _sanitize_lat(cls, value):
        return sanitize_float(value, DEFAULT_LATITUDE, -90.0, 90.0)

    @field_validator("lon", mode="before")
    @classmethod
    def _sanitize_lon(cls, value):
        return sanitize_float(value, DEFAULT_LONGITUDE, -180.0, 180.0)

    @field_validator("elev", mode="before")
    @classmethod
    def _sanitize_elev(cls, value):
        return sanitize_float(value, 0.0, -500.0, 9000.0)

    @field_validator("zone", mode="before")
    @classmethod
    def _sanitize_zone(cls, value):
        return sanitize_timezone(value)

    @field_validator("rise_off", "set_off", mode="before")
    @classmethod
    def _sanitize_offset(cls, value):
        return sanitize_int(value, 0, -MAX_OFFSET_MINUTES, MAX_OFFSET_MINUTES)

    @field_validator("description", mode="before")
    @classmethod
    def _sanitize_description(cls, value):
        return sanitize_text(value)

    def selected_kinds(self) -> FrozenSet[PhaseKind]:
        return frozenset(kind for kind in PhaseKind if getattr(self, kind.value))

    def to_feed_request(self, today: Optional[date] = None) -> FeedRequest:
        """Resolve dates against *today* in the requested zone."""

        if today is None:
            today = datetime.now(ZoneInfo(self.zone)).date()
        start = parse_date(self.start, today) or today
        end = parse_date(self.end, today) or min(start + DEFAULT_WINDOW, LATEST_DATE)
        return FeedRequest(
            coordinate=Coordinate(self.lat, self.lon, self.elev),
            timezone=self.zone,
            start_date=start,
            end_date=end,
            kinds=self.selected_kinds(),
            rise_offset=self.rise_off,
            set_offset=self.set_off,
            twelve_hour=self.twelve,
            description=self.description,
        )


class FeedEventModel(BaseModel):
    uid: str
    kind: PhaseKind
    day: date
    start: datetime
    end: datetime
    summary: str
    description: str
    duration_seconds: float
    percent_of_day: float
    percentile: Optional[float] = None

    @classmethod
    def from_event(cls, event: FeedEvent) -> "FeedEventModel":
        return cls(
            uid=event.uid,
            kind=event.kind,
            day=event.day,
            start=event.start,
            end=event.end,
            summary=event.summary,
            description=event.description,
            duration_seconds=event.duration_seconds,
            percent_of_day=event.percent_of_day,
            percentile=event.percentile,
        )


class FeedResponse(BaseModel):
    """JSON rendition of a feed."""

    ok: bool = True
    latitude: float
    longitude: float
    timezone: str
    start_date: date
    end_date: date
    count: int
    events: List[FeedEventModel]


class HealthResponse(BaseModel):
    """Health-check response."""

    ok: bool = True
    ephemeris_loaded: bool
    files: List[str]
    token_configured: bool


class ErrorResponse(BaseModel):
    """Error payload."""

    ok: bool = False
    code: str
    error: str
