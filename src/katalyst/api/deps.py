"""Process-wide resources and FastAPI dependency functions.

Resources are created once by :func:`init_dependencies` (called from the app
lifespan) and handed to routes through the ``get_*`` functions below. Tests
replace them via ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging

import httpx
from fastapi import Depends, Request

from katalyst.api.middleware import UnauthorizedError
from katalyst.auth.session import AuthSession, resolve_session
from katalyst.auth.tokens import TokenStore
from katalyst.calendar.cache import MeetingCache
from katalyst.calendar.service import CalendarService
from katalyst.config import Settings
from katalyst.connector.client import ConnectorClient
from katalyst.db import Database

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT_SECONDS = 15.0

_settings: Settings | None = None
_database: Database | None = None
_http_client: httpx.AsyncClient | None = None
_token_store: TokenStore | None = None
_calendar_service: CalendarService | None = None


def set_settings(settings: Settings) -> None:
    global _settings
    _settings = settings


def get_settings() -> Settings:
    """Return the process settings, loading them from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def get_http_client() -> httpx.AsyncClient:
    if _http_client is None:
        raise RuntimeError("HTTP client is not initialized")
    return _http_client


def get_database() -> Database | None:
    """Return the database, or None when PostgreSQL was unavailable at startup."""
    return _database


def get_token_store() -> TokenStore | None:
    return _token_store


def get_calendar_service() -> CalendarService:
    if _calendar_service is None:
        raise RuntimeError("Calendar service is not initialized")
    return _calendar_service


async def init_dependencies(settings: Settings, database: Database | None = None) -> None:
    """Create the shared HTTP client, DB pool and calendar service.

    A database that cannot be reached is logged and skipped: the meeting
    cache and token store are then disabled, but the API still serves.
    """
    global _database, _http_client, _token_store, _calendar_service

    set_settings(settings)
    _http_client = httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS)

    cache: MeetingCache | None = None
    database = database or Database.from_env(settings.db_name)
    try:
        pool = await database.connect()
    except Exception:
        logger.warning(
            "Failed to connect to PostgreSQL; meeting cache and token store disabled",
            exc_info=True,
        )
        _database = None
        _token_store = None
    else:
        _database = database
        _token_store = TokenStore(pool)
        cache = MeetingCache(pool)

    connector: ConnectorClient | None = None
    if settings.connector.is_configured:
        connector = ConnectorClient(settings.connector, _http_client, settings.dashboard_url)

    _calendar_service = CalendarService(
        settings,
        _http_client,
        cache=cache,
        token_store=_token_store,
        connector=connector,
    )


async def shutdown_dependencies() -> None:
    """Close the HTTP client and DB pool."""
    global _database, _http_client, _token_store, _calendar_service
    if _http_client is not None:
        await _http_client.aclose()
    if _database is not None:
        await _database.close()
    _database = None
    _http_client = None
    _token_store = None
    _calendar_service = None


# ---------------------------------------------------------------------------
# Session dependencies
# ---------------------------------------------------------------------------


async def get_auth_session(
    request: Request,
    settings: Settings = Depends(get_settings),
    token_store: TokenStore | None = Depends(get_token_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> AuthSession | None:
    """Resolve the current session, refreshing the user's token when it is stale."""
    return await resolve_session(request, token_store, settings.google, http_client)


async def require_session(
    auth: AuthSession | None = Depends(get_auth_session),
) -> AuthSession:
    """Like :func:`get_auth_session` but rejects anonymous requests with 401."""
    if auth is None:
        raise UnauthorizedError()
    return auth
