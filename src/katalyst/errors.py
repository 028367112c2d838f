"""Exception hierarchy shared across Katalyst modules."""

from __future__ import annotations


class KatalystError(Exception):
    """Base class for all Katalyst errors."""


class ConfigError(KatalystError):
    """Raised when required configuration is missing or malformed."""


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthError(KatalystError):
    """Base class for Google OAuth failures."""


class TokenExchangeError(AuthError):
    """Raised when the authorization-code exchange with Google fails."""

    def __init__(self, message: str, error_code: str = "token_exchange_failed") -> None:
        super().__init__(message)
        self.error_code = error_code


class TokenRefreshError(AuthError):
    """Raised when an access token cannot be refreshed."""


class SignInError(AuthError):
    """Raised when a Google profile fails sign-in validation."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Calendar providers
# ---------------------------------------------------------------------------


class CalendarProviderError(KatalystError):
    """Base class for calendar provider failures."""


class CalendarRequestError(CalendarProviderError):
    """Raised when a calendar API request fails with an HTTP status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Calendar API request failed ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class ConnectorError(CalendarProviderError):
    """Raised when the third-party calendar connector fails."""
