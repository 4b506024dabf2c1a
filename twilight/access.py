"""Token check guarding feed generation."""

from __future__ import annotations

import hmac
import json
import logging
from typing import Optional

from .config import PLACEHOLDER_TOKEN, Settings

__all__ = ["AccessGate", "InvalidAuthentication", "verify"]

LOGGER = logging.getLogger(__name__)


class InvalidAuthentication(PermissionError):
    """Raised when a feed token is missing, wrong, or not configured."""


def verify(provided_token: Optional[str], configured_token: Optional[str]) -> bool:
    """Compare tokens in constant time.

    An empty or placeholder ``configured_token`` never verifies.
    """

    if not configured_token or configured_token == PLACEHOLDER_TOKEN:
        return False
    if provided_token is None:
        provided_token = ""
    return hmac.compare_digest(
        provided_token.encode("utf-8"), configured_token.encode("utf-8")
    )


class AccessGate:
    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def configured(self) -> bool:
        return self._settings.token_configured

    def check(self, provided_token: Optional[str]) -> None:
        if not self.configured:
            LOGGER.warning(json.dumps({"event": "auth_refused", "reason": "token_not_configured"}))
            raise InvalidAuthentication("Feed access token is not configured")
        if not verify(provided_token, self._settings.auth_token):
            LOGGER.warning(json.dumps({"event": "auth_refused", "reason": "token_mismatch"}))
            raise InvalidAuthentication("Invalid access token")
