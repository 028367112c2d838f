"""Read-only access to a public Google calendar with an API key.

Used as the last provider before giving up, and only when
``ENABLE_API_KEY_FALLBACK`` is set. An API key cannot see private calendars,
so this reads the single configured ``GOOGLE_CALENDAR_ID``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from katalyst.errors import CalendarProviderError
from katalyst.google.calendar import (
    DEFAULT_MAX_RESULTS,
    PAST_FETCH_LIMIT,
    PAST_WINDOW,
    GoogleRequester,
    events_to_meetings,
    filter_past,
    filter_upcoming,
)
from katalyst.models import Meeting
from katalyst.timeutils import google_rfc3339, utc_now

logger = logging.getLogger(__name__)


class PublicCalendarClient:
    """Lists events from one public calendar using an API key."""

    def __init__(self, api_key: str, calendar_id: str, http_client: httpx.AsyncClient) -> None:
        if not api_key:
            raise ValueError("API key is required for public calendar access")
        if not calendar_id:
            raise ValueError("Calendar id is required for public calendar access")
        self.calendar_id = calendar_id
        self._requester = GoogleRequester(http_client, api_key=api_key)

    async def _list_events(self, params: dict[str, Any]) -> list[Any]:
        payload = await self._requester.get_json(
            f"/calendars/{quote(self.calendar_id, safe='')}/events",
            {**params, "singleEvents": "true", "orderBy": "startTime"},
        )
        items = payload.get("items")
        return items if isinstance(items, list) else []

    async def get_upcoming_events(self, max_results: int = DEFAULT_MAX_RESULTS) -> list[Meeting]:
        now = utc_now()
        events = await self._list_events(
            {"timeMin": google_rfc3339(now), "maxResults": max_results * 2}
        )
        return filter_upcoming(events_to_meetings(events, now), now, max_results)

    async def get_past_events(self, max_results: int = DEFAULT_MAX_RESULTS) -> list[Meeting]:
        now = utc_now()
        events = await self._list_events(
            {
                "timeMin": google_rfc3339(now - PAST_WINDOW),
                "timeMax": google_rfc3339(now),
                "maxResults": PAST_FETCH_LIMIT,
            }
        )
        return filter_past(events_to_meetings(events, now), now, max_results)

    async def get_events(self) -> tuple[list[Meeting], list[Meeting]]:
        """Fetch both windows concurrently; raises only if the calendar is unreadable."""
        upcoming, past = await asyncio.gather(
            self.get_upcoming_events(), self.get_past_events(), return_exceptions=True
        )
        if isinstance(upcoming, Exception) and isinstance(past, Exception):
            raise CalendarProviderError(
                f"Public calendar {self.calendar_id} is not readable"
            ) from upcoming
        for failure in (upcoming, past):
            if isinstance(failure, BaseException):
                if not isinstance(failure, Exception):
                    raise failure
                logger.warning("Public calendar fetch failed: %s", failure)
        return (
            upcoming if isinstance(upcoming, list) else [],
            past if isinstance(past, list) else [],
        )
