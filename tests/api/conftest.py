"""Fixtures for API tests: an app with stubbed process-wide resources."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI

from katalyst.api.app import create_app
from katalyst.api.deps import (
    get_auth_session,
    get_calendar_service,
    get_http_client,
    get_token_store,
)
from katalyst.auth.session import AuthSession
from katalyst.calendar.service import CalendarService
from tests.conftest import make_settings

USER = {"email": "alice@example.com", "name": "Alice", "image": None}


def make_auth(**overrides) -> AuthSession:
    values = {"user": dict(USER), "expires": 2_000_000_000, "access_token": "ya29.access"}
    values.update(overrides)
    return AuthSession(**values)


@pytest.fixture
def calendar_service() -> MagicMock:
    service = MagicMock(spec=CalendarService)
    service.cache = None
    service.get_calendar_data = AsyncMock()
    service.initiate_calendar_connection = AsyncMock()
    service.check_calendar_connection = AsyncMock(return_value=False)
    return service


@pytest.fixture
def token_store() -> AsyncMock:
    store = AsyncMock()
    store.load.return_value = None
    return store


@pytest.fixture
def app(calendar_service, token_store) -> FastAPI:
    app = create_app(make_settings())
    app.dependency_overrides[get_calendar_service] = lambda: calendar_service
    app.dependency_overrides[get_token_store] = lambda: token_store
    app.dependency_overrides[get_http_client] = lambda: MagicMock(spec=httpx.AsyncClient)
    return app


@pytest.fixture
def signed_in(app):
    """Authenticate every request as ``USER``."""
    auth = make_auth()
    app.dependency_overrides[get_auth_session] = lambda: auth
    return auth


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
