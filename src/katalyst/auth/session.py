"""Session resolution: who is signed in and whether their Google token still works.

The session cookie (Starlette ``SessionMiddleware``) stores only the user
profile and its issue time. Tokens live in :class:`~katalyst.auth.tokens.TokenStore`
and are refreshed here when they are within 60 seconds of expiry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from starlette.requests import Request

from katalyst.auth.tokens import TokenStore
from katalyst.config import SESSION_MAX_AGE_SECONDS, GoogleConfig
from katalyst.core.logging import log_token_error, log_token_event
from katalyst.google.oauth import TokenSet, ensure_fresh_tokens

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user"
SESSION_ISSUED_AT_KEY = "issued_at"


@dataclass
class AuthSession:
    """The signed-in user plus their current access token."""

    user: dict[str, Any]
    expires: int
    access_token: str | None = None
    error: str | None = None
    error_description: str | None = None
    tokens: TokenSet | None = field(default=None, repr=False)

    @property
    def user_id(self) -> str:
        return str(self.user["email"])

    def public(self) -> dict[str, Any]:
        """Session payload safe to send to the browser (no tokens)."""
        payload: dict[str, Any] = {"user": self.user, "expires": self.expires}
        if self.error:
            payload["error"] = self.error
        return payload


def open_session(request: Request, profile: dict[str, Any], now: float | None = None) -> None:
    """Write the signed-in user into the session cookie."""
    request.session.clear()
    request.session[SESSION_USER_KEY] = {
        "email": profile.get("email"),
        "name": profile.get("name"),
        "image": profile.get("picture"),
    }
    request.session[SESSION_ISSUED_AT_KEY] = int(time.time() if now is None else now)


def close_session(request: Request) -> None:
    request.session.clear()


def session_user(request: Request, now: float | None = None) -> dict[str, Any] | None:
    """Return the session user if the cookie is present and not older than 24 hours."""
    user = request.session.get(SESSION_USER_KEY)
    if not isinstance(user, dict) or not user.get("email"):
        return None
    issued_at = request.session.get(SESSION_ISSUED_AT_KEY)
    current = time.time() if now is None else now
    if not isinstance(issued_at, int) or current - issued_at >= SESSION_MAX_AGE_SECONDS:
        return None
    return user


async def resolve_session(
    request: Request,
    token_store: TokenStore | None,
    google: GoogleConfig,
    http_client: httpx.AsyncClient | None = None,
) -> AuthSession | None:
    """Build the request's :class:`AuthSession`, refreshing stale tokens.

    Returns None when nobody is signed in. Without a token store, or when
    it cannot be read, the session carries no access token. A failed refresh
    does not raise: the session comes back with ``error`` set so the client
    can prompt the user to sign in again.
    """
    user = session_user(request)
    if user is None:
        return None
    user_id = str(user["email"])
    issued_at = int(request.session[SESSION_ISSUED_AT_KEY])
    auth = AuthSession(user=user, expires=issued_at + SESSION_MAX_AGE_SECONDS)

    if token_store is None:
        return auth
    try:
        tokens = await token_store.load(user_id)
    except Exception:
        logger.warning("Token store lookup failed; continuing without tokens", exc_info=True)
        return auth
    if tokens is None:
        return auth

    fresh = await ensure_fresh_tokens(tokens, google, http_client)
    if fresh is not tokens:
        if fresh.error:
            log_token_error("refresh_failed", user_id, error=fresh.error)
        else:
            log_token_event("token_refreshed", user_id, expires_at=fresh.expires_at)
            try:
                await token_store.save(user_id, fresh)
            except Exception:
                logger.warning("Failed to persist refreshed tokens", exc_info=True)

    auth.tokens = fresh
    auth.access_token = fresh.access_token
    auth.error = fresh.error
    auth.error_description = fresh.error_description
    return auth
