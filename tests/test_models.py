from __future__ import annotations

from datetime import date

import pytest

from models import FeedQueryParams, parse_date, sanitize_text
from twilight.config import DEFAULT_LATITUDE, DEFAULT_LONGITUDE, DEFAULT_TIMEZONE
from twilight.phases import PhaseKind

TODAY = date(2025, 1, 31)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("", None),
        (None, None),
        ("today", TODAY),
        ("Tomorrow", date(2025, 2, 1)),
        ("yesterday", date(2025, 1, 30)),
        ("2025-06-21", date(2025, 6, 21)),
        ("06/21/2025", date(2025, 6, 21)),
        ("+10 days", date(2025, 2, 10)),
        ("-1 week", date(2025, 1, 24)),
        ("+1 month", date(2025, 2, 28)),
        ("+1 year", date(2026, 1, 31)),
        ("June 21, 2025", date(2025, 6, 21)),
        ("21 June 2025", date(2025, 6, 21)),
        ("2025/06/21", date(2025, 6, 21)),
        ("next tuesday", date(2025, 2, 4)),
        ("next friday", date(2025, 2, 7)),
        ("last monday", date(2025, 1, 27)),
        ("whenever", None),
        ("9999-12-31", None),
        ("+99999 years", None),
        ("2025-02-30", None),
    ],
)
def test_parse_date(text, expected):
    assert parse_date(text, TODAY) == expected


def test_invalid_values_fall_back_to_defaults():
    params = FeedQueryParams.model_validate(
        {
            "lat": "north",
            "lon": "200",
            "elev": "nan",
            "zone": "Mars/Olympus_Mons",
            "rise_off": "2000",
            "set_off": "15.5",
        }
    )

    assert params.lat == DEFAULT_LATITUDE
    assert params.lon == DEFAULT_LONGITUDE
    assert params.elev == 0.0
    assert params.zone == DEFAULT_TIMEZONE
    assert params.rise_off == 0
    assert params.set_off == 0


def test_valid_values_are_kept():
    params = FeedQueryParams.model_validate(
        {
            "lat": "69.6492",
            "lon": "18.9553",
            "zone": "Europe/Oslo",
            "rise_off": "-15",
            "set_off": "+20",
            "daylight": "on",
            "night": "true",
        }
    )

    assert params.lat == 69.6492
    assert params.zone == "Europe/Oslo"
    assert params.rise_off == -15
    assert params.set_off == 20
    assert params.selected_kinds() == frozenset({PhaseKind.daylight, PhaseKind.night})


def test_description_is_stripped_and_capped():
    assert sanitize_text("<b>Hello</b>\r\nworld\nagain") == "Hello world again"
    assert len(sanitize_text("x" * 800)) == 500
    assert sanitize_text(None) == ""


def test_feed_request_defaults_to_a_year_from_today():
    request = FeedQueryParams.model_validate({"civil_dusk": "1"}).to_feed_request(TODAY)

    assert request.start_date == TODAY
    assert request.end_date == date(2026, 1, 30)
    assert request.kinds == frozenset({PhaseKind.civil_dusk})
    assert request.coordinate.latitude == DEFAULT_LATITUDE
    assert request.timezone == DEFAULT_TIMEZONE


def test_feed_request_resolves_explicit_window():
    params = FeedQueryParams.model_validate(
        {"start": "06/01/2025", "end": "+1 year", "twelve": "on", "description": "hi"}
    )

    request = params.to_feed_request(TODAY)

    assert request.start_date == date(2025, 6, 1)
    assert request.end_date == date(2026, 1, 31)
    assert request.twelve_hour
    assert request.description == "hi"
    assert request.kinds == frozenset()


def test_start_at_the_end_of_the_calendar_falls_back_to_today():
    params = FeedQueryParams.model_validate({"start": "9999-12-31", "daylight": "on"})

    request = params.to_feed_request(TODAY)

    assert request.start_date == TODAY
    assert request.end_date == date(2026, 1, 30)


def test_default_end_stays_inside_the_calendar():
    request = FeedQueryParams.model_validate({"start": "9998-12-01"}).to_feed_request(TODAY)

    assert request.start_date == date(9998, 12, 1)
    assert request.end_date == date(9998, 12, 31)
