"""Google sign-in endpoints.

The browser-facing OAuth 2.0 authorization-code flow:

  1. GET /api/auth/signin/google
     - Generates a one-time CSRF state token and remembers the post-login
       ``callbackUrl`` alongside it.
     - Redirects to Google's consent screen (or returns the URL as JSON
       when ``redirect=false``).

  2. GET /api/auth/callback/google
     - Validates and consumes the state token.
     - Exchanges the code for tokens, fetches the profile and runs the
       sign-in checks.
     - Persists tokens server-side, writes the session cookie and redirects
       to the remembered callback URL.

  3. GET /api/auth/session and POST /api/auth/signout.

Failures after the state check redirect to ``<APP_URL>/auth/error?error=<code>``.
Tokens never leave the server; the cookie only holds the user profile.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode, urlsplit

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from katalyst.api.deps import (
    get_auth_session,
    get_calendar_service,
    get_http_client,
    get_settings,
    get_token_store,
)
from katalyst.api.models import ErrorDetail, ErrorResponse, SignInStartResponse
from katalyst.auth.session import AuthSession, close_session, open_session
from katalyst.auth.tokens import TokenStore
from katalyst.calendar.service import CalendarService
from katalyst.config import Settings
from katalyst.core.logging import log_auth_error, log_auth_event, log_security_event
from katalyst.errors import SignInError, TokenExchangeError
from katalyst.google.oauth import (
    build_authorization_url,
    consume_state,
    exchange_code_for_tokens,
    fetch_user_profile,
    generate_state,
    sanitize_provider_error,
    store_state,
    validate_sign_in,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def safe_callback_url(value: str | None, settings: Settings) -> str:
    """Return *value* if it stays on this app, else the dashboard URL.

    Relative paths (but not protocol-relative ``//host``) and absolute URLs
    on the ``APP_URL`` origin are accepted.
    """
    if not value:
        return settings.dashboard_url
    if value.startswith("/") and not value.startswith("//"):
        return value
    target = urlsplit(value)
    app = urlsplit(settings.app_url)
    if target.scheme in ("http", "https") and (target.scheme, target.netloc) == (
        app.scheme,
        app.netloc,
    ):
        return value
    log_security_event("rejected_callback_url", {"callback_url": value[:200]})
    return settings.dashboard_url


def _error_redirect(settings: Settings, code: str) -> RedirectResponse:
    query = urlencode({"error": code})
    return RedirectResponse(url=f"{settings.app_url}/auth/error?{query}", status_code=302)


# ---------------------------------------------------------------------------
# Sign-in flow
# ---------------------------------------------------------------------------


@router.get("/signin/google", response_model=None)
async def signin_google(
    callback_url: str | None = Query(default=None, alias="callbackUrl"),
    redirect: bool = Query(default=True),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Start the Google OAuth flow.

    Parameters
    ----------
    callback_url:
        Where to land after a successful sign-in. Off-site URLs are replaced
        with the dashboard.
    redirect:
        When true (default) respond with a 302 to Google; otherwise return
        the authorization URL and state as JSON.
    """
    state = generate_state()
    store_state(state, safe_callback_url(callback_url, settings))
    authorization_url = build_authorization_url(
        settings.google.client_id, settings.google.redirect_uri, state
    )
    log_auth_event("signin_started", provider="google")

    if redirect:
        return RedirectResponse(url=authorization_url, status_code=302)
    payload = SignInStartResponse(authorization_url=authorization_url, state=state)
    return JSONResponse(content=payload.model_dump())


@router.get("/callback/google", response_model=None)
async def callback_google(
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    settings: Settings = Depends(get_settings),
    token_store: TokenStore | None = Depends(get_token_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """Finish the Google OAuth flow and open a session."""
    if error:
        if state:
            consume_state(state)
        log_auth_error("signin", code="provider_error", error=sanitize_provider_error(error))
        return _error_redirect(settings, "provider_error")

    if not code or not state:
        missing = "code" if not code else "state"
        body = ErrorResponse(
            error=ErrorDetail(
                code=f"MISSING_{missing.upper()}",
                message=f"The '{missing}' parameter is missing from the callback.",
            )
        )
        return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))

    callback_url = consume_state(state)
    if callback_url is None:
        log_security_event("invalid_oauth_state", {"path": request.url.path})
        return _error_redirect(settings, "invalid_state")

    try:
        tokens = await exchange_code_for_tokens(
            code=code, google=settings.google, http_client=http_client
        )
        profile = await fetch_user_profile(tokens.access_token, http_client)
    except TokenExchangeError as exc:
        log_auth_error("signin", code=exc.error_code, error=str(exc))
        return _error_redirect(settings, exc.error_code)

    try:
        validate_sign_in(profile, tokens.scope, settings.environment)
    except SignInError as exc:
        return _error_redirect(settings, exc.code)

    user_id = str(profile["email"])
    if token_store is not None:
        await token_store.save(user_id, tokens, calendar_id=settings.google.calendar_id)
    else:
        logger.warning("Token store unavailable; calendar access will not persist")

    open_session(request, profile)
    log_auth_event("signin", user_id, provider="google")
    return RedirectResponse(url=callback_url, status_code=302)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/session")
async def get_session(
    auth: AuthSession | None = Depends(get_auth_session),
) -> dict[str, Any]:
    """Return the browser-safe session, or ``{}`` when signed out."""
    if auth is None:
        return {}
    return auth.public()


@router.post("/signout")
async def signout(
    request: Request,
    auth: AuthSession | None = Depends(get_auth_session),
    token_store: TokenStore | None = Depends(get_token_store),
    service: CalendarService = Depends(get_calendar_service),
) -> dict[str, bool]:
    """Clear the session and forget the user's tokens and cached meetings."""
    close_session(request)
    if auth is None:
        return {"success": True}

    user_id = auth.user_id
    if token_store is not None:
        try:
            await token_store.deactivate(user_id)
        except Exception:
            logger.warning("Failed to deactivate stored tokens on sign-out", exc_info=True)
    if service.cache is not None:
        try:
            await service.cache.clear(user_id)
        except Exception:
            logger.warning("Failed to clear meeting cache on sign-out", exc_info=True)
    log_auth_event("signout", user_id)
    return {"success": True}
