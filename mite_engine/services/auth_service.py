"""Bearer token check for the scheduler-driven endpoints."""

from __future__ import annotations

import secrets
from typing import Optional

from mite_engine.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class CronTokenNotConfiguredError(AuthenticationError):
    """Raised when CRON_TOKEN is missing."""


class InvalidCronTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class AuthService:
    """Validates the shared secret sent by the external cron driver."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.cron_token)

    def _expected_token(self) -> str:
        if not self._settings.cron_token:
            raise CronTokenNotConfiguredError(
                "CRON_TOKEN is not configured. Set CRON_TOKEN in environment variables."
            )
        return self._settings.cron_token

    def validate_bearer_token(self, bearer_token: str) -> None:
        if not self.auth_enabled:
            return
        if not secrets.compare_digest(bearer_token, self._expected_token()):
            raise InvalidCronTokenError("Invalid cron token")
