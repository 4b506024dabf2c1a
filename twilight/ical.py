"""iCalendar (RFC 5545) text for assembled feed events."""

from __future__ import annotations

from datetime import UTC, datetime, time
from typing import Iterable, List

from .config import Settings
from .feed import FeedEvent, FeedRequest

__all__ = ["escape_text", "fold_line", "render_calendar", "render_event"]

CRLF = "\r\n"
PRODID = "-//Sunrise Sunset Calendar Generator//EN"
LINE_LIMIT = 75


def escape_text(text: str) -> str:
    r"""Escape a TEXT value (\, ;, , and newlines)."""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def fold_line(line: str, limit: int = LINE_LIMIT) -> str:
    """Fold *line* into chunks of at most *limit* octets.

    Continuation lines start with a single space, which counts toward
    their length. Multi-byte characters are never split.
    """

    if len(line.encode("utf-8")) <= limit:
        return line
    parts: List[str] = []
    current: List[str] = []
    size = 0
    width = limit
    for char in line:
        char_size = len(char.encode("utf-8"))
        if size + char_size > width:
            parts.append("".join(current))
            current, size, width = [], 0, limit - 1
        current.append(char)
        size += char_size
    parts.append("".join(current))
    return (CRLF + " ").join(parts)


def _format_utc(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def render_event(event: FeedEvent, dtstamp: datetime) -> List[str]:
    return [
        "BEGIN:VEVENT",
        f"UID:{event.uid}",
        f"DTSTAMP:{_format_utc(dtstamp)}",
        f"DTSTART:{_format_utc(event.start)}",
        f"DTEND:{_format_utc(event.end)}",
        f"SUMMARY:{escape_text(event.summary)}",
        f"DESCRIPTION:{escape_text(event.description)}",
        f"CATEGORIES:{escape_text(event.kind.label)}",
        "TRANSP:TRANSPARENT",
        "END:VEVENT",
    ]


def render_calendar(
    events: Iterable[FeedEvent], request: FeedRequest, settings: Settings
) -> str:
    """Return the full VCALENDAR document.

    DTSTAMP is pinned to the window start so that refreshing an unchanged
    request yields identical bytes.
    """

    dtstamp = datetime.combine(request.start_date, time.min, tzinfo=UTC)
    lat = request.coordinate.latitude
    lon = request.coordinate.longitude
    interval = settings.update_interval
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_text(f'Sunrise/Sunset Calendar for {lat}, {lon}')}",
        f"X-WR-TIMEZONE:{request.timezone}",
        f"REFRESH-INTERVAL;VALUE=DURATION:PT{interval}S",
        f"X-PUBLISHED-TTL:PT{interval}S",
    ]
    for event in events:
        lines.extend(render_event(event, dtstamp))
    lines.append("END:VCALENDAR")
    return CRLF.join(fold_line(line) for line in lines) + CRLF
