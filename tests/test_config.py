from __future__ import annotations

from twilight.config import PLACEHOLDER_TOKEN, Settings


def test_defaults():
    settings = Settings.from_env({})

    assert settings.auth_token == PLACEHOLDER_TOKEN
    assert not settings.token_configured
    assert settings.window_days == 365
    assert settings.update_interval == 86400
    assert settings.stats_cache_ttl == 86400.0


def test_environment_overrides():
    settings = Settings.from_env(
        {
            "CALENDAR_AUTH_TOKEN": " s3cret ",
            "CALENDAR_WINDOW_DAYS": "30",
            "UPDATE_INTERVAL": "3600",
            "STATS_CACHE_SIZE": "8",
            "STATS_CACHE_TTL": "600",
            "FEED_TIMEOUT": "2.5",
        }
    )

    assert settings.auth_token == "s3cret"
    assert settings.token_configured
    assert settings.window_days == 30
    assert settings.update_interval == 3600
    assert settings.stats_cache_size == 8
    assert settings.stats_cache_ttl == 600.0
    assert settings.feed_timeout == 2.5


def test_invalid_numbers_fall_back_to_defaults():
    settings = Settings.from_env(
        {"CALENDAR_WINDOW_DAYS": "lots", "UPDATE_INTERVAL": "-5", "STATS_CACHE_TTL": "x"}
    )

    assert settings.window_days == 365
    assert settings.update_interval == 86400
    assert settings.stats_cache_ttl == 86400.0


def test_cache_ttl_never_exceeds_refresh_interval():
    settings = Settings.from_env({"UPDATE_INTERVAL": "3600", "STATS_CACHE_TTL": "99999"})

    assert settings.stats_cache_ttl == 3600.0
