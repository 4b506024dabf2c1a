"""Process-wide configuration for the calendar feed service."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

__all__ = [
    "Settings",
    "PLACEHOLDER_TOKEN",
    "DEFAULT_LATITUDE",
    "DEFAULT_LONGITUDE",
    "DEFAULT_TIMEZONE",
]

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_TOKEN = "CHANGE_ME_TO_A_RANDOM_STRING"

DEFAULT_LATITUDE = 45.58753958079636
DEFAULT_LONGITUDE = -122.58886098861694
DEFAULT_TIMEZONE = "America/Los_Angeles"

DEFAULT_WINDOW_DAYS = 365
DEFAULT_UPDATE_INTERVAL = 86400
DEFAULT_STATS_CACHE_SIZE = 64
DEFAULT_FEED_TIMEOUT = 30.0


def _read_number(
    environ: Mapping[str, str],
    name: str,
    default: float,
    minimum: float,
    cast=int,
):
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        LOGGER.warning(
            json.dumps({"event": "config_invalid", "name": name, "value": raw})
        )
        return default
    if value < minimum:
        LOGGER.warning(
            json.dumps({"event": "config_out_of_range", "name": name, "value": raw})
        )
        return default
    return value


@dataclass(frozen=True)
class Settings:
    """Immutable settings, built once at startup and passed explicitly.

    ``stats_cache_ttl`` never exceeds ``update_interval`` so that a cached
    yearly distribution is not older than the feed a client refreshes.
    """

    auth_token: str = PLACEHOLDER_TOKEN
    window_days: int = DEFAULT_WINDOW_DAYS
    update_interval: int = DEFAULT_UPDATE_INTERVAL
    stats_cache_size: int = DEFAULT_STATS_CACHE_SIZE
    stats_cache_ttl: Optional[float] = None
    feed_timeout: float = DEFAULT_FEED_TIMEOUT

    def __post_init__(self) -> None:
        ttl = self.stats_cache_ttl
        if ttl is None or ttl > self.update_interval:
            object.__setattr__(self, "stats_cache_ttl", float(self.update_interval))

    @property
    def token_configured(self) -> bool:
        return bool(self.auth_token) and self.auth_token != PLACEHOLDER_TOKEN

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Unparseable or out-of-range values fall back to the defaults.
        """

        env = os.environ if environ is None else environ
        ttl_raw = env.get("STATS_CACHE_TTL")
        ttl = (
            _read_number(env, "STATS_CACHE_TTL", -1.0, 0.0, cast=float)
            if ttl_raw
            else -1.0
        )
        return cls(
            auth_token=env.get("CALENDAR_AUTH_TOKEN", PLACEHOLDER_TOKEN).strip(),
            window_days=_read_number(env, "CALENDAR_WINDOW_DAYS", DEFAULT_WINDOW_DAYS, 1),
            update_interval=_read_number(
                env, "UPDATE_INTERVAL", DEFAULT_UPDATE_INTERVAL, 60
            ),
            stats_cache_size=_read_number(
                env, "STATS_CACHE_SIZE", DEFAULT_STATS_CACHE_SIZE, 1
            ),
            stats_cache_ttl=ttl if ttl >= 0 else None,
            feed_timeout=_read_number(
                env, "FEED_TIMEOUT", DEFAULT_FEED_TIMEOUT, 0.1, cast=float
            ),
        )
