"""Calendar retrieval with caching and provider fallback.

``get_calendar_data`` serves fresh cached meetings when it can, otherwise it
walks the enabled providers in order (connector, direct Google, public
calendar API key) and returns the first success. Every failure degrades:
callers always get a :class:`CalendarData`, empty with
``has_connection=False`` when no provider worked.
"""

from __future__ import annotations

import logging
import time
from urllib.parse import quote

import httpx

from katalyst.auth.tokens import TokenStore
from katalyst.calendar.cache import MeetingCache
from katalyst.calendar.providers import (
    ApiKeyProvider,
    CalendarProvider,
    ConnectorProvider,
    EventLists,
    GoogleProvider,
)
from katalyst.config import Settings
from katalyst.connector.client import ConnectorClient
from katalyst.core.logging import log_token_error, log_token_event
from katalyst.errors import KatalystError
from katalyst.google.api_key import PublicCalendarClient
from katalyst.google.calendar import GoogleCalendarClient, RefreshCallback
from katalyst.google.oauth import refresh_google_access_token
from katalyst.meetings import sanitize_meetings, select_past, select_upcoming
from katalyst.models import CalendarData, CalendarSource, ConnectResponse, Meeting
from katalyst.timeutils import to_iso, utc_now

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/api/auth/signin/google"


class CalendarService:
    """Per-process calendar facade; dependencies are optional and skipped when absent."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        cache: MeetingCache | None = None,
        token_store: TokenStore | None = None,
        connector: ConnectorClient | None = None,
    ) -> None:
        self.settings = settings
        self.http_client = http_client
        self.cache = cache
        self.token_store = token_store
        self.connector = connector

    # ------------------------------------------------------------------
    # Cache (best effort)
    # ------------------------------------------------------------------

    async def _read_cache(self, user_id: str) -> list[Meeting] | None:
        if self.cache is None:
            return None
        try:
            return await self.cache.get_fresh(user_id)
        except Exception:
            logger.warning("Meeting cache read failed; fetching live data", exc_info=True)
            return None

    async def _write_cache(self, user_id: str, data: CalendarData) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.store(user_id, [*data.upcoming_meetings, *data.past_meetings])
        except Exception:
            logger.warning("Meeting cache write failed; continuing without cache", exc_info=True)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def _refresh_callback(self, user_id: str) -> RefreshCallback | None:
        """Build the 401 handler that force-refreshes the user's stored token."""
        token_store = self.token_store
        if token_store is None:
            return None

        async def refresh() -> str | None:
            tokens = await token_store.load(user_id)
            if tokens is None:
                return None
            refreshed = await refresh_google_access_token(
                tokens, self.settings.google, self.http_client
            )
            if refreshed.error:
                log_token_error("refresh_failed", user_id, error=refreshed.error)
                return None
            await token_store.save(user_id, refreshed)
            log_token_event("token_refreshed", user_id, trigger="unauthorized")
            return refreshed.access_token

        return refresh

    async def _connector_provider(self, user_id: str) -> CalendarProvider | None:
        if self.connector is None:
            return None
        try:
            account = await self.connector.get_connected_account(user_id)
        except KatalystError as exc:
            logger.warning("Connector account lookup failed: %s", exc)
            return None
        if account is None or not account.is_active:
            logger.info("No active connector account for user")
            return None
        return ConnectorProvider(self.connector, account)

    async def build_providers(
        self, user_id: str, access_token: str | None
    ) -> list[CalendarProvider]:
        """Return the providers usable for this request, in fallback order."""
        providers: list[CalendarProvider] = []
        connector = await self._connector_provider(user_id)
        if connector is not None:
            providers.append(connector)
        if access_token:
            providers.append(
                GoogleProvider(
                    GoogleCalendarClient(
                        access_token,
                        user_id,
                        self.http_client,
                        refresh_access_token=self._refresh_callback(user_id),
                    )
                )
            )
        google = self.settings.google
        if google.enable_api_key_fallback and google.api_key:
            providers.append(
                ApiKeyProvider(
                    PublicCalendarClient(google.api_key, google.calendar_id, self.http_client)
                )
            )
        return providers

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @staticmethod
    def assemble(
        upcoming: list[Meeting], past: list[Meeting], source: CalendarSource
    ) -> CalendarData:
        """Sanitise provider output and cut it down to the dashboard lists."""
        now = utc_now()
        return CalendarData(
            upcoming_meetings=select_upcoming(sanitize_meetings(upcoming), now),
            past_meetings=select_past(sanitize_meetings(past), now),
            last_updated=to_iso(now),
            has_connection=True,
            source=source,
        )

    async def _fetch_live(self, user_id: str, access_token: str | None) -> CalendarData:
        providers = await self.build_providers(user_id, access_token)
        if not providers:
            logger.warning("No calendar provider available for user")
            return CalendarData.empty()

        for provider in providers:
            try:
                events: EventLists = await provider.fetch_events()
            except (KatalystError, httpx.HTTPError) as exc:
                logger.warning("Calendar provider %s failed: %s", provider.source, exc)
                continue
            upcoming, past = events
            data = self.assemble(upcoming, past, provider.source)
            logger.info(
                "Calendar data fetched via %s (upcoming=%d, past=%d)",
                provider.source,
                len(data.upcoming_meetings),
                len(data.past_meetings),
            )
            await self._write_cache(user_id, data)
            return data

        logger.warning("All calendar providers failed for user")
        return CalendarData.empty()

    async def get_calendar_data(
        self,
        user_id: str,
        force_refresh: bool = False,
        access_token: str | None = None,
    ) -> CalendarData:
        """Return the user's dashboard meetings; never raises.

        Parameters
        ----------
        user_id:
            The signed-in user's email.
        force_refresh:
            Skip the cache and go straight to the providers.
        access_token:
            The user's Google access token, enabling the direct Google provider.
        """
        started = time.monotonic()
        try:
            if not force_refresh:
                cached = await self._read_cache(user_id)
                if cached is not None:
                    logger.debug("Serving %d cached meeting(s)", len(cached))
                    return self.assemble(cached, cached, CalendarSource.CACHE)
            data = await self._fetch_live(user_id, access_token)
        except Exception:
            logger.exception("Unexpected error fetching calendar data")
            return CalendarData.empty()
        logger.info(
            "Calendar data ready (source=%s, duration_ms=%.0f)",
            data.source,
            (time.monotonic() - started) * 1000,
        )
        return data

    async def check_calendar_connection(self, user_id: str, access_token: str | None) -> bool:
        """True when the user's Google token can read their primary calendar."""
        if not access_token:
            return False
        client = GoogleCalendarClient(
            access_token,
            user_id,
            self.http_client,
            refresh_access_token=self._refresh_callback(user_id),
        )
        return await client.check_connection()

    async def initiate_calendar_connection(
        self, user_id: str, redirect_url: str | None
    ) -> ConnectResponse:
        """Return where to send the user to link their calendar.

        The connector's own OAuth link is used when configured; otherwise the
        user is sent through Google sign-in, which grants calendar access.
        """
        redirect = redirect_url or self.settings.dashboard_url
        if self.connector is not None:
            try:
                request = await self.connector.initiate_connection(user_id, redirect)
            except KatalystError as exc:
                logger.warning("Connector connection initiation failed: %s", exc)
            else:
                if request.redirect_url:
                    return ConnectResponse(
                        redirect_url=redirect, connection_url=request.redirect_url
                    )
        sign_in_url = f"{SIGN_IN_PATH}?callbackUrl={quote(redirect, safe='')}"
        return ConnectResponse(redirect_url=redirect, connection_url=sign_in_url)
