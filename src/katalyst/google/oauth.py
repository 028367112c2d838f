"""Google OAuth: authorization URL, code exchange, sign-in checks and token refresh.

Token refresh never raises. Failures are reported on the returned
:class:`TokenSet` via ``error`` / ``error_description`` so the session layer
can surface a re-authentication prompt instead of failing the request.

Secret material (client secret, access and refresh tokens) is never logged.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urlencode

import httpx

from katalyst.config import Environment, GoogleConfig
from katalyst.core.logging import log_auth_error, log_auth_event
from katalyst.errors import SignInError, TokenExchangeError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Google OAuth constants
# ---------------------------------------------------------------------------

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

CALENDAR_READONLY_SCOPE = "https://www.googleapis.com/auth/calendar.readonly"
REQUIRED_SCOPES: tuple[str, ...] = ("openid", "email", "profile", CALENDAR_READONLY_SCOPE)
SCOPES = " ".join(REQUIRED_SCOPES)

# Tokens within this many seconds of expiry are refreshed early.
EXPIRY_SKEW_SECONDS = 60
_HTTP_TIMEOUT_SECONDS = 15.0
_MAX_ERROR_DESCRIPTION_LENGTH = 200

NO_REFRESH_TOKEN = "NO_REFRESH_TOKEN"
REFRESH_TOKEN_ERROR = "REFRESH_TOKEN_ERROR"

# ---------------------------------------------------------------------------
# In-memory CSRF state store
# ---------------------------------------------------------------------------

_STATE_TTL_SECONDS = 600  # 10 minutes

# Maps state token → (expiry timestamp (monotonic), callback URL)
# NOTE: This store is process-local. Run a single worker process, or CSRF
# state validation will fail across workers.
_state_store: dict[str, tuple[float, str]] = {}


def generate_state() -> str:
    """Generate a cryptographically random CSRF state token."""
    return secrets.token_urlsafe(32)


def store_state(state: str, callback_url: str) -> None:
    """Store a state token together with the post-sign-in callback URL."""
    _state_store[state] = (time.monotonic() + _STATE_TTL_SECONDS, callback_url)
    evict_expired_states()


def consume_state(state: str) -> str | None:
    """Validate a state token and consume it (one-time-use).

    Returns the stored callback URL, or None if the state is unknown or expired.
    """
    evict_expired_states()
    entry = _state_store.pop(state, None)
    if entry is None:
        return None
    expiry, callback_url = entry
    if time.monotonic() >= expiry:
        return None
    return callback_url


def evict_expired_states() -> None:
    """Remove all expired state tokens from the store."""
    now = time.monotonic()
    expired = [k for k, (exp, _) in _state_store.items() if now >= exp]
    for k in expired:
        del _state_store[k]


def clear_state_store() -> None:
    """Clear all state entries. Used in tests."""
    _state_store.clear()


# ---------------------------------------------------------------------------
# Token set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenSet:
    """A user's Google OAuth tokens plus the outcome of the last refresh."""

    access_token: str | None = None
    refresh_token: str | None = None
    # Epoch seconds.
    expires_at: int | None = None
    scope: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_fresh(self, now: float | None = None) -> bool:
        """True while the access token is more than 60 seconds from expiry."""
        if not self.access_token or not self.expires_at:
            return False
        current = time.time() if now is None else now
        return current < self.expires_at - EXPIRY_SKEW_SECONDS

    @classmethod
    def from_token_response(cls, data: Mapping[str, Any], now: float | None = None) -> TokenSet:
        """Build a TokenSet from a Google token-endpoint JSON body."""
        current = int(time.time() if now is None else now)
        expires_in = data.get("expires_in")
        expires_at = current + int(expires_in) if isinstance(expires_in, (int, float)) else None
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            scope=data.get("scope"),
        )


# ---------------------------------------------------------------------------
# Authorization flow
# ---------------------------------------------------------------------------


def build_authorization_url(client_id: str, redirect_uri: str, state: str) -> str:
    """Return the Google consent URL requesting offline calendar-readonly access."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": SCOPES,
        "access_type": "offline",
        "prompt": "consent",  # Force a refresh token on every consent
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def _post_form(
    url: str, data: dict[str, str], http_client: httpx.AsyncClient | None
) -> httpx.Response:
    if http_client is not None:
        return await http_client.post(url, data=data, timeout=_HTTP_TIMEOUT_SECONDS)
    async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS) as client:
        return await client.post(url, data=data)


async def exchange_code_for_tokens(
    *,
    code: str,
    google: GoogleConfig,
    http_client: httpx.AsyncClient | None = None,
) -> TokenSet:
    """Exchange an authorization code for OAuth tokens.

    Parameters
    ----------
    code:
        Authorization code returned by Google in the callback.
    google:
        Client id, secret and the redirect URI registered with Google.
    http_client:
        Shared client; a short-lived one is created when omitted.

    Raises
    ------
    TokenExchangeError
        If the exchange fails for any reason (HTTP error, invalid code, network error).
    """
    payload = {
        "code": code,
        "client_id": google.client_id,
        "client_secret": google.client_secret,
        "redirect_uri": google.redirect_uri,
        "grant_type": "authorization_code",
    }

    try:
        response = await _post_form(GOOGLE_TOKEN_URL, payload, http_client)
    except httpx.TransportError as exc:
        raise TokenExchangeError(f"Network error during token exchange: {exc}") from exc

    if response.status_code != 200:
        # Log status code but not the raw body (may contain sensitive details)
        raise TokenExchangeError(f"Token endpoint returned HTTP {response.status_code}")

    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        raise TokenExchangeError(f"Invalid JSON in token response: {exc}") from exc

    tokens = TokenSet.from_token_response(data)
    if not tokens.access_token:
        raise TokenExchangeError("Token response did not include an access token")
    return tokens


async def fetch_user_profile(
    access_token: str, http_client: httpx.AsyncClient | None = None
) -> dict[str, Any]:
    """Fetch the OpenID Connect userinfo document for *access_token*.

    Raises
    ------
    TokenExchangeError
        If the profile cannot be retrieved.
    """
    headers = {"Authorization": f"Bearer {access_token}"}
    try:
        if http_client is not None:
            response = await http_client.get(
                GOOGLE_USERINFO_URL, headers=headers, timeout=_HTTP_TIMEOUT_SECONDS
            )
        else:
            async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.get(GOOGLE_USERINFO_URL, headers=headers)
    except httpx.TransportError as exc:
        raise TokenExchangeError(
            f"Network error fetching user profile: {exc}", error_code="profile_failed"
        ) from exc
    if response.status_code != 200:
        raise TokenExchangeError(
            f"Userinfo endpoint returned HTTP {response.status_code}",
            error_code="profile_failed",
        )
    try:
        return response.json()
    except json.JSONDecodeError as exc:
        raise TokenExchangeError(
            f"Invalid JSON in userinfo response: {exc}", error_code="profile_failed"
        ) from exc


def missing_scopes(granted_scope: str | None) -> list[str]:
    """Return required scopes absent from a space-delimited granted scope string."""
    granted = set((granted_scope or "").split())
    return [scope for scope in REQUIRED_SCOPES if scope not in granted]


def validate_sign_in(
    profile: Mapping[str, Any],
    granted_scope: str | None,
    environment: Environment,
) -> bool:
    """Decide whether a Google account may sign in.

    A missing email always rejects. In production the email must be verified
    and every required scope granted; in development those failures are
    logged and the sign-in is allowed.

    Raises
    ------
    SignInError
        When the sign-in is rejected.
    """
    email = profile.get("email")
    try:
        if not email:
            raise SignInError("SIGNIN_EMAIL_REQUIRED", "Google profile has no email address")

        email_verified = bool(profile.get("email_verified", False))
        if not email_verified and environment is Environment.PRODUCTION:
            raise SignInError("SIGNIN_EMAIL_NOT_VERIFIED", "Google email address is not verified")

        absent = missing_scopes(granted_scope)
        if absent:
            raise SignInError(
                "SIGNIN_MISSING_SCOPES", f"Missing required scopes: {', '.join(absent)}"
            )
    except SignInError as exc:
        log_auth_error("signin", email, code=exc.code, error=str(exc))
        if environment is Environment.DEVELOPMENT and exc.code != "SIGNIN_EMAIL_REQUIRED":
            log_auth_event(
                "signin_warning",
                email,
                message="Allowing sign in despite error in development",
                error=exc.code,
            )
            return True
        raise

    log_auth_event(
        "signin_success",
        email,
        provider="google",
        verified=email_verified,
        scopes=granted_scope,
    )
    return True


# ---------------------------------------------------------------------------
# Token refresh
# ---------------------------------------------------------------------------


def _describe_refresh_failure(response: httpx.Response) -> str:
    """Build a short, secret-free description of a failed refresh response."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError):
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        description = payload.get("error_description")
        if isinstance(error, str) and error:
            text = f"{error}: {description}" if isinstance(description, str) else error
            return text[:_MAX_ERROR_DESCRIPTION_LENGTH]
    return f"Token endpoint returned HTTP {response.status_code}"


async def refresh_google_access_token(
    tokens: TokenSet,
    google: GoogleConfig,
    http_client: httpx.AsyncClient | None = None,
    now: float | None = None,
) -> TokenSet:
    """Refresh an access token with the stored refresh token.

    Returns a new TokenSet. On failure the original tokens are returned with
    ``error`` set to ``NO_REFRESH_TOKEN`` or ``REFRESH_TOKEN_ERROR``; this
    function does not raise.
    """
    if not tokens.refresh_token:
        return replace(tokens, error=NO_REFRESH_TOKEN, error_description=None)

    payload = {
        "client_id": google.client_id,
        "client_secret": google.client_secret,
        "grant_type": "refresh_token",
        "refresh_token": tokens.refresh_token,
    }

    try:
        response = await _post_form(GOOGLE_TOKEN_URL, payload, http_client)
    except httpx.TransportError as exc:
        logger.warning("Google token refresh failed: network error (%s)", type(exc).__name__)
        return replace(
            tokens,
            error=REFRESH_TOKEN_ERROR,
            error_description=f"Network error during token refresh: {type(exc).__name__}",
        )

    if response.status_code != 200:
        description = _describe_refresh_failure(response)
        logger.warning("Google token refresh failed: HTTP %s", response.status_code)
        return replace(tokens, error=REFRESH_TOKEN_ERROR, error_description=description)

    try:
        data = response.json()
    except json.JSONDecodeError:
        return replace(
            tokens,
            error=REFRESH_TOKEN_ERROR,
            error_description="Invalid JSON in token refresh response",
        )

    access_token = data.get("access_token") if isinstance(data, dict) else None
    if not access_token:
        return replace(
            tokens,
            error=REFRESH_TOKEN_ERROR,
            error_description="Token refresh response did not include an access token",
        )

    refreshed = TokenSet.from_token_response(data, now=now)
    return TokenSet(
        access_token=access_token,
        # Google usually omits the refresh token on refresh; keep the old one.
        refresh_token=refreshed.refresh_token or tokens.refresh_token,
        expires_at=refreshed.expires_at,
        scope=refreshed.scope or tokens.scope,
        error=None,
        error_description=None,
    )


async def ensure_fresh_tokens(
    tokens: TokenSet,
    google: GoogleConfig,
    http_client: httpx.AsyncClient | None = None,
    now: float | None = None,
) -> TokenSet:
    """Return *tokens* unchanged while fresh, otherwise attempt a refresh.

    Without a refresh token the stale tokens are returned as-is.
    """
    current = time.time() if now is None else now
    if tokens.expires_at and current < tokens.expires_at - EXPIRY_SKEW_SECONDS:
        return tokens
    if not tokens.refresh_token:
        return tokens
    return await refresh_google_access_token(tokens, google, http_client, now=current)


# ---------------------------------------------------------------------------
# Error sanitization
# ---------------------------------------------------------------------------

_KNOWN_PROVIDER_ERRORS: dict[str, str] = {
    "access_denied": "The user denied access. Sign-in cancelled.",
    "invalid_request": "The OAuth request was malformed. Please sign in again.",
    "unauthorized_client": "This application is not authorized to use Google OAuth. "
    "Check the OAuth client configuration.",
    "unsupported_response_type": "Unsupported response type. Please sign in again.",
    "invalid_scope": "One or more requested OAuth scopes are invalid or not permitted.",
    "server_error": "Google encountered an internal error. Please try again.",
    "temporarily_unavailable": "Google OAuth is temporarily unavailable. Please try again later.",
}


def sanitize_provider_error(error: str) -> str:
    """Convert a provider error code into a safe, actionable user message.

    Unknown error codes are replaced with a generic message to avoid
    leaking internal provider state.
    """
    return _KNOWN_PROVIDER_ERRORS.get(
        error,
        "Google sign-in failed. Please try again.",
    )
