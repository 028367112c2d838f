"""Shared fixtures for the Katalyst test suite."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from katalyst.config import ConnectorConfig, Environment, GoogleConfig, Settings
from katalyst.google.oauth import clear_state_store
from katalyst.models import Attendee, Meeting, Organizer
from katalyst.timeutils import to_iso

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    """Build a complete development Settings object for tests."""
    google = overrides.pop(
        "google",
        GoogleConfig(
            client_id="test-client-id.apps.googleusercontent.com",
            client_secret="test-client-secret",
            redirect_uri="http://test/api/auth/callback/google",
        ),
    )
    values: dict[str, Any] = {
        "environment": Environment.TEST,
        "app_url": "http://test",
        "session_secret": "test-session-secret",
        "cors_origins": ["http://localhost:3000"],
        "google": google,
        "connector": ConnectorConfig(),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture(autouse=True)
def clear_oauth_states() -> Iterator[None]:
    clear_state_store()
    yield
    clear_state_store()


# ---------------------------------------------------------------------------
# Meetings and Google events
# ---------------------------------------------------------------------------


def make_meeting(
    meeting_id: str = "evt-1",
    *,
    start: datetime | None = None,
    minutes: int = 30,
    title: str = "Weekly Sync",
    attendees: list[Attendee] | None = None,
) -> Meeting:
    start = start or datetime.now(UTC) + timedelta(hours=1)
    end = start + timedelta(minutes=minutes)
    return Meeting(
        id=meeting_id,
        title=title,
        start_time=to_iso(start),
        end_time=to_iso(end),
        duration=minutes,
        attendees=attendees or [Attendee(email="bob@example.com", name="Bob")],
        organizer=Organizer(email="alice@example.com", name="Alice"),
    )


def make_event(
    event_id: str,
    start: datetime,
    minutes: int = 30,
    **extra: Any,
) -> dict[str, Any]:
    """Build a Google Calendar event resource."""
    event: dict[str, Any] = {
        "id": event_id,
        "summary": f"Event {event_id}",
        "start": {"dateTime": to_iso(start)},
        "end": {"dateTime": to_iso(start + timedelta(minutes=minutes))},
        "organizer": {"email": "alice@example.com", "displayName": "Alice"},
        "attendees": [
            {"email": "bob@example.com", "displayName": "Bob", "responseStatus": "accepted"}
        ],
    }
    event.update(extra)
    return event


# ---------------------------------------------------------------------------
# asyncpg pool mocks
# ---------------------------------------------------------------------------


def make_mock_pool(conn: AsyncMock | None = None) -> tuple[MagicMock, AsyncMock]:
    """Return ``(pool, conn)`` where ``pool.acquire()`` and ``conn.transaction()`` work."""
    conn = conn or AsyncMock()

    @asynccontextmanager
    async def _transaction():
        yield

    conn.transaction = MagicMock(side_effect=lambda: _transaction())

    @asynccontextmanager
    async def _acquire():
        yield conn

    pool = MagicMock()
    pool.acquire = MagicMock(side_effect=lambda: _acquire())
    pool.fetchrow = AsyncMock()
    pool.execute = AsyncMock()
    return pool, conn
