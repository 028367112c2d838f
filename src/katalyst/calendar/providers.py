"""Calendar providers tried in order by the calendar service."""

from __future__ import annotations

import abc
import asyncio
import logging

from katalyst.connector.client import ConnectedAccount, ConnectorClient
from katalyst.errors import CalendarProviderError
from katalyst.google.api_key import PublicCalendarClient
from katalyst.google.calendar import GoogleCalendarClient
from katalyst.models import CalendarSource, Meeting

logger = logging.getLogger(__name__)

EventLists = tuple[list[Meeting], list[Meeting]]


class CalendarProvider(abc.ABC):
    """A source of upcoming and past meetings for one user."""

    source: CalendarSource

    @abc.abstractmethod
    async def fetch_events(self) -> EventLists:
        """Return ``(upcoming, past)``. Raises CalendarProviderError on failure."""


class ConnectorProvider(CalendarProvider):
    source = CalendarSource.CONNECTOR

    def __init__(self, client: ConnectorClient, account: ConnectedAccount) -> None:
        self._client = client
        self._account = account

    async def fetch_events(self) -> EventLists:
        upcoming, past = await asyncio.gather(
            self._client.get_upcoming_events(self._account.id),
            self._client.get_past_events(self._account.id),
            return_exceptions=True,
        )
        if isinstance(upcoming, BaseException) or isinstance(past, BaseException):
            failure = upcoming if isinstance(upcoming, BaseException) else past
            if not isinstance(failure, Exception):
                raise failure
            raise CalendarProviderError(f"Connector event fetch failed: {failure}") from failure
        return upcoming, past


class GoogleProvider(CalendarProvider):
    source = CalendarSource.GOOGLE

    def __init__(self, client: GoogleCalendarClient) -> None:
        self._client = client

    async def fetch_events(self) -> EventLists:
        return await self._client.get_events()


class ApiKeyProvider(CalendarProvider):
    source = CalendarSource.API_KEY

    def __init__(self, client: PublicCalendarClient) -> None:
        self._client = client

    async def fetch_events(self) -> EventLists:
        return await self._client.get_events()
