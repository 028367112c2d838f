"""Tests for CalendarService: cache use, provider fallback order and connection setup."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from katalyst.calendar.providers import (
    ApiKeyProvider,
    CalendarProvider,
    ConnectorProvider,
    GoogleProvider,
)
from katalyst.calendar.service import SIGN_IN_PATH, CalendarService
from katalyst.connector.client import ConnectedAccount, ConnectionRequest
from katalyst.errors import CalendarProviderError, ConnectorError
from katalyst.google.oauth import TokenSet
from katalyst.models import CalendarSource
from tests.conftest import make_meeting, make_settings

pytestmark = pytest.mark.unit


class FakeProvider(CalendarProvider):
    def __init__(self, source, result=None, error=None):
        self.source = source
        self._result = result
        self._error = error
        self.calls = 0

    async def fetch_events(self):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._result


def _lists():
    now = datetime.now(UTC)
    upcoming = [make_meeting(f"u{i}", start=now + timedelta(hours=i + 1)) for i in range(7)]
    past = [make_meeting("p1", start=now - timedelta(days=1))]
    return upcoming, past


def _service(**kwargs) -> CalendarService:
    settings = kwargs.pop("settings", make_settings())
    return CalendarService(settings, MagicMock(spec=httpx.AsyncClient), **kwargs)


# ---------------------------------------------------------------------------
# get_calendar_data
# ---------------------------------------------------------------------------


class TestGetCalendarData:
    async def test_first_successful_provider_wins(self):
        failing = FakeProvider(CalendarSource.CONNECTOR, error=CalendarProviderError("down"))
        google = FakeProvider(CalendarSource.GOOGLE, result=_lists())
        api_key = FakeProvider(CalendarSource.API_KEY, result=([], []))
        service = _service()

        with patch.object(
            service, "build_providers", AsyncMock(return_value=[failing, google, api_key])
        ):
            data = await service.get_calendar_data("alice@example.com", access_token="t")

        assert data.source is CalendarSource.GOOGLE
        assert data.has_connection is True
        assert [m.id for m in data.upcoming_meetings] == ["u0", "u1", "u2", "u3", "u4"]
        assert [m.id for m in data.past_meetings] == ["p1"]
        assert failing.calls == 1
        assert api_key.calls == 0

    async def test_http_errors_also_fall_through(self):
        failing = FakeProvider(CalendarSource.GOOGLE, error=httpx.ReadTimeout("slow"))
        api_key = FakeProvider(CalendarSource.API_KEY, result=_lists())
        service = _service()
        with patch.object(service, "build_providers", AsyncMock(return_value=[failing, api_key])):
            data = await service.get_calendar_data("alice@example.com")
        assert data.source is CalendarSource.API_KEY

    async def test_all_providers_failing_returns_empty(self):
        providers = [
            FakeProvider(CalendarSource.CONNECTOR, error=ConnectorError("x")),
            FakeProvider(CalendarSource.GOOGLE, error=CalendarProviderError("y")),
        ]
        service = _service()
        with patch.object(service, "build_providers", AsyncMock(return_value=providers)):
            data = await service.get_calendar_data("alice@example.com")
        assert data.upcoming_meetings == []
        assert data.past_meetings == []
        assert data.has_connection is False
        assert data.source is CalendarSource.NONE

    async def test_no_providers_returns_empty(self):
        data = await _service().get_calendar_data("alice@example.com")
        assert data.has_connection is False

    async def test_unexpected_error_returns_empty(self):
        service = _service()
        with patch.object(service, "build_providers", AsyncMock(side_effect=RuntimeError("boom"))):
            data = await service.get_calendar_data("alice@example.com")
        assert data.has_connection is False

    async def test_fresh_cache_served_without_providers(self):
        cache = AsyncMock()
        upcoming, past = _lists()
        cache.get_fresh.return_value = upcoming + past
        service = _service(cache=cache)
        build = AsyncMock()
        with patch.object(service, "build_providers", build):
            data = await service.get_calendar_data("alice@example.com")
        assert data.source is CalendarSource.CACHE
        assert data.has_connection is True
        assert len(data.upcoming_meetings) == 5
        assert [m.id for m in data.past_meetings] == ["p1"]
        build.assert_not_awaited()

    async def test_force_refresh_skips_cache_and_rewrites_it(self):
        cache = AsyncMock()
        google = FakeProvider(CalendarSource.GOOGLE, result=_lists())
        service = _service(cache=cache)
        with patch.object(service, "build_providers", AsyncMock(return_value=[google])):
            data = await service.get_calendar_data("alice@example.com", force_refresh=True)
        cache.get_fresh.assert_not_awaited()
        cache.store.assert_awaited_once()
        user_id, stored = cache.store.await_args.args
        assert user_id == "alice@example.com"
        assert len(stored) == len(data.upcoming_meetings) + len(data.past_meetings)

    async def test_cache_errors_are_ignored(self):
        cache = AsyncMock()
        cache.get_fresh.side_effect = OSError("db down")
        cache.store.side_effect = OSError("db down")
        google = FakeProvider(CalendarSource.GOOGLE, result=_lists())
        service = _service(cache=cache)
        with patch.object(service, "build_providers", AsyncMock(return_value=[google])):
            data = await service.get_calendar_data("alice@example.com")
        assert data.source is CalendarSource.GOOGLE


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


class TestBuildProviders:
    async def test_order_connector_google_api_key(self):
        settings = make_settings()
        settings = dataclasses.replace(
            settings,
            google=dataclasses.replace(
                settings.google, api_key="api-key", enable_api_key_fallback=True
            ),
        )
        connector = AsyncMock()
        connector.get_connected_account.return_value = ConnectedAccount("cal-1", "ACTIVE")
        service = _service(settings=settings, connector=connector)

        providers = await service.build_providers("alice@example.com", "access-token")

        assert [type(p) for p in providers] == [ConnectorProvider, GoogleProvider, ApiKeyProvider]

    async def test_inactive_connector_account_skipped(self):
        connector = AsyncMock()
        connector.get_connected_account.return_value = ConnectedAccount("cal-1", "EXPIRED")
        service = _service(connector=connector)
        providers = await service.build_providers("alice@example.com", "access-token")
        assert [type(p) for p in providers] == [GoogleProvider]

    async def test_connector_lookup_error_skipped(self):
        connector = AsyncMock()
        connector.get_connected_account.side_effect = ConnectorError("down")
        service = _service(connector=connector)
        assert await service.build_providers("alice@example.com", None) == []

    async def test_api_key_needs_flag(self):
        settings = make_settings()
        settings = dataclasses.replace(
            settings, google=dataclasses.replace(settings.google, api_key="api-key")
        )
        assert await _service(settings=settings).build_providers("a@example.com", None) == []


class TestConnectorProvider:
    async def test_either_half_failing_fails_provider(self):
        client = AsyncMock()
        client.get_upcoming_events.return_value = []
        client.get_past_events.side_effect = ConnectorError("boom")
        provider = ConnectorProvider(client, ConnectedAccount("cal-1", "ACTIVE"))
        with pytest.raises(CalendarProviderError):
            await provider.fetch_events()


# ---------------------------------------------------------------------------
# Token refresh on 401
# ---------------------------------------------------------------------------


class TestRefreshCallback:
    async def test_saves_refreshed_token(self):
        token_store = AsyncMock()
        token_store.load.return_value = TokenSet(access_token="old", refresh_token="r")
        service = _service(token_store=token_store)
        refreshed = TokenSet(access_token="new", refresh_token="r", expires_at=123)
        with patch(
            "katalyst.calendar.service.refresh_google_access_token",
            AsyncMock(return_value=refreshed),
        ):
            callback = service._refresh_callback("alice@example.com")
            assert await callback() == "new"
        token_store.save.assert_awaited_once_with("alice@example.com", refreshed)

    async def test_failed_refresh_returns_none(self):
        token_store = AsyncMock()
        token_store.load.return_value = TokenSet(access_token="old")
        service = _service(token_store=token_store)
        callback = service._refresh_callback("alice@example.com")
        assert await callback() is None
        token_store.save.assert_not_awaited()

    def test_no_callback_without_token_store(self):
        assert _service()._refresh_callback("alice@example.com") is None


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class TestInitiateConnection:
    async def test_connector_redirect(self):
        connector = AsyncMock()
        connector.initiate_connection.return_value = ConnectionRequest(
            redirect_url="https://connector.test/oauth"
        )
        service = _service(connector=connector)
        result = await service.initiate_calendar_connection(
            "alice@example.com", "http://test/dashboard"
        )
        assert result.connection_url == "https://connector.test/oauth"
        assert result.redirect_url == "http://test/dashboard"

    async def test_falls_back_to_sign_in(self):
        connector = AsyncMock()
        connector.initiate_connection.side_effect = ConnectorError("down")
        service = _service(connector=connector)
        result = await service.initiate_calendar_connection("alice@example.com", None)
        assert result.redirect_url == "http://test/dashboard"
        assert result.connection_url == (
            f"{SIGN_IN_PATH}?callbackUrl=http%3A%2F%2Ftest%2Fdashboard"
        )

    async def test_check_connection_without_token(self):
        assert await _service().check_calendar_connection("alice@example.com", None) is False
