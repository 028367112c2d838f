"""Direct Google Calendar v3 access over httpx.

``GoogleCalendarClient`` reads a user's primary calendar with their OAuth
access token. Requests go through :class:`GoogleRequester`, which retries
rate-limit and server errors with exponential backoff plus jitter (at most 3
attempts) and, on 401, asks the caller for a fresh access token once.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

import httpx

from katalyst.errors import CalendarProviderError, CalendarRequestError
from katalyst.models import UNTITLED_MEETING, Attendee, Meeting, Organizer, ResponseStatus
from katalyst.timeutils import google_rfc3339, parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

MAX_ATTEMPTS = 3
RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
BASE_BACKOFF_SECONDS = 0.5
MAX_JITTER_SECONDS = 0.25
# Retry-After values above this are clamped.
MAX_RETRY_AFTER_SECONDS = 10.0

DEFAULT_MAX_RESULTS = 5
# Past events come back oldest first, so the whole window is fetched before
# taking the most recent ones.
PAST_FETCH_LIMIT = 250
PAST_WINDOW = timedelta(days=30)
_EVENT_FIELDS = (
    "items(id,summary,description,start,end,attendees,organizer,creator,"
    "location,hangoutLink,conferenceData,status)"
)

_MEETING_URL_PATTERN = re.compile(r"https://[^\s]*(?:zoom|meet|teams|webex)[^\s]*", re.IGNORECASE)

RefreshCallback = Callable[[], Awaitable[str | None]]


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def backoff_delay(attempt: int, retry_after: str | None = None) -> float:
    """Seconds to wait before retry number *attempt* (0-based).

    A numeric ``Retry-After`` header wins over the exponential schedule.
    """
    if retry_after is not None:
        try:
            return min(max(float(retry_after), 0.0), MAX_RETRY_AFTER_SECONDS)
        except ValueError:
            pass
    return BASE_BACKOFF_SECONDS * (2**attempt) + random.uniform(0, MAX_JITTER_SECONDS)


# ---------------------------------------------------------------------------
# Request layer
# ---------------------------------------------------------------------------


class GoogleRequester:
    """Sends Google API requests with retry, backoff and one-shot 401 refresh."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        access_token: str | None = None,
        api_key: str | None = None,
        refresh_access_token: RefreshCallback | None = None,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ) -> None:
        if not access_token and not api_key:
            raise ValueError("Either an access token or an API key is required")
        self._http_client = http_client
        self._access_token = access_token
        self._api_key = api_key
        self._refresh_access_token = refresh_access_token
        self._refresh_lock = asyncio.Lock()
        self._failed_refresh_token: str | None = None
        self._base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if self._access_token:
            return {"Authorization": f"Bearer {self._access_token}"}
        return {}

    def _params(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        merged = dict(params or {})
        if self._api_key and not self._access_token:
            merged["key"] = self._api_key
        return merged

    async def _request_once(
        self, method: str, url: str, params: Mapping[str, Any] | None
    ) -> httpx.Response:
        return await self._http_client.request(
            method, url, params=self._params(params), headers=self._headers()
        )

    async def _refresh_after_401(self, rejected_token: str | None) -> bool:
        """Refresh the access token once for all requests rejected with *rejected_token*.

        Concurrent requests share the lock, so only the first caller hits the
        token endpoint and the rest retry with the token it obtained.
        """
        async with self._refresh_lock:
            if self._access_token != rejected_token:
                return True
            if self._failed_refresh_token == rejected_token:
                return False
            new_token = await self._refresh_access_token()
            if not new_token:
                self._failed_refresh_token = rejected_token
                return False
            self._access_token = new_token
            return True

    async def request(
        self, method: str, path: str, params: Mapping[str, Any] | None = None
    ) -> httpx.Response:
        """Send a request, retrying transient failures.

        Returns the final response, whatever its status. Raises
        :class:`CalendarProviderError` only when every attempt failed at the
        transport level.
        """
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self._base_url}{normalized_path}"
        refreshed = False
        attempt = 0

        while True:
            sent_token = self._access_token
            try:
                response = await self._request_once(method, url, params)
            except httpx.TransportError as exc:
                if attempt + 1 >= MAX_ATTEMPTS:
                    raise CalendarProviderError(
                        f"Google Calendar request failed after {MAX_ATTEMPTS} attempts: "
                        f"{type(exc).__name__}"
                    ) from exc
                delay = backoff_delay(attempt)
                logger.warning(
                    "Calendar API transport error (%s), retrying in %.1fs (attempt %d/%d)",
                    type(exc).__name__,
                    delay,
                    attempt + 1,
                    MAX_ATTEMPTS,
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue

            if (
                response.status_code == 401
                and not refreshed
                and self._refresh_access_token is not None
            ):
                refreshed = True
                if await self._refresh_after_401(sent_token):
                    logger.info("Calendar API returned 401; retrying with refreshed token")
                    continue
                return response

            if response.status_code in RETRY_STATUS_CODES and attempt + 1 < MAX_ATTEMPTS:
                retry_after = (
                    response.headers.get("Retry-After") if response.status_code == 429 else None
                )
                delay = backoff_delay(attempt, retry_after)
                logger.warning(
                    "Calendar API returned %d, retrying in %.1fs (attempt %d/%d)",
                    response.status_code,
                    delay,
                    attempt + 1,
                    MAX_ATTEMPTS,
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue

            return response

    async def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """GET *path* and return its JSON object, raising on non-2xx."""
        response = await self.request("GET", path, params)
        if not response.is_success:
            raise CalendarRequestError(response.status_code, _safe_google_error_message(response))
        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarProviderError("Google Calendar API returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise CalendarProviderError("Google Calendar API returned a non-object payload")
        return payload


# ---------------------------------------------------------------------------
# Event transform
# ---------------------------------------------------------------------------


def _event_time(value: Any) -> str | None:
    if isinstance(value, Mapping):
        raw = value.get("dateTime") or value.get("date")
        if isinstance(raw, str) and raw:
            return raw
    return None


def _extract_meeting_url(event: Mapping[str, Any]) -> str | None:
    hangout = event.get("hangoutLink")
    if isinstance(hangout, str) and hangout:
        return hangout

    conference = event.get("conferenceData")
    if isinstance(conference, Mapping):
        for entry_point in conference.get("entryPoints") or []:
            if (
                isinstance(entry_point, Mapping)
                and entry_point.get("entryPointType") == "video"
                and isinstance(entry_point.get("uri"), str)
            ):
                return entry_point["uri"]

    description = event.get("description")
    if isinstance(description, str):
        match = _MEETING_URL_PATTERN.search(description)
        if match:
            return match.group(0)
    return None


def _extract_attendees(raw: Any) -> list[Attendee]:
    attendees: list[Attendee] = []
    if not isinstance(raw, list):
        return attendees
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        email = entry.get("email") if isinstance(entry.get("email"), str) else ""
        attendees.append(
            Attendee(
                email=email,
                name=entry.get("displayName") or email,
                response_status=ResponseStatus.parse(entry.get("responseStatus")),
            )
        )
    return attendees


def _extract_organizer(event: Mapping[str, Any]) -> Organizer:
    organizer = event.get("organizer") if isinstance(event.get("organizer"), Mapping) else {}
    creator = event.get("creator") if isinstance(event.get("creator"), Mapping) else {}
    email = organizer.get("email") or creator.get("email") or ""
    name = organizer.get("displayName") or creator.get("displayName") or organizer.get("email")
    return Organizer(email=email, name=name or "")


def generate_meeting_id() -> str:
    return f"meeting-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def event_to_meeting(event: Mapping[str, Any], now: datetime | None = None) -> Meeting:
    """Normalise a Google Calendar event resource into a :class:`Meeting`.

    Missing start defaults to now and missing end to one hour after the start.
    Raises ``ValueError`` when the event carries unparseable timestamps.
    """
    now = now or utc_now()
    start_time = _event_time(event.get("start")) or to_iso(now)
    end_time = _event_time(event.get("end")) or to_iso(
        parse_iso(start_time) + timedelta(hours=1)
    )
    duration = round((parse_iso(end_time) - parse_iso(start_time)).total_seconds() / 60)

    event_id = event.get("id")
    title = event.get("summary")
    description = event.get("description")
    location = event.get("location")
    return Meeting(
        id=event_id if isinstance(event_id, str) and event_id else generate_meeting_id(),
        title=title if isinstance(title, str) and title else UNTITLED_MEETING,
        description=description if isinstance(description, str) and description else None,
        start_time=start_time,
        end_time=end_time,
        duration=duration,
        attendees=_extract_attendees(event.get("attendees")),
        organizer=_extract_organizer(event),
        location=location if isinstance(location, str) and location else None,
        meeting_url=_extract_meeting_url(event),
    )


def events_to_meetings(events: list[Any], now: datetime | None = None) -> list[Meeting]:
    """Transform a list of event resources, skipping ones that cannot be parsed."""
    meetings: list[Meeting] = []
    for event in events:
        if not isinstance(event, Mapping):
            continue
        if event.get("status") == "cancelled":
            continue
        try:
            meetings.append(event_to_meeting(event, now=now))
        except ValueError as exc:
            logger.warning("Skipping calendar event %s: %s", event.get("id"), exc)
    return meetings


def filter_upcoming(meetings: list[Meeting], now: datetime, limit: int) -> list[Meeting]:
    return [m for m in meetings if m.start > now][:limit]


def filter_past(meetings: list[Meeting], now: datetime, limit: int) -> list[Meeting]:
    past = [m for m in meetings if m.end <= now]
    past.reverse()
    return past[:limit]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GoogleCalendarClient:
    """Reads upcoming and past meetings from the user's primary Google calendar."""

    def __init__(
        self,
        access_token: str,
        user_email: str,
        http_client: httpx.AsyncClient,
        refresh_access_token: RefreshCallback | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("Access token is required for Google Calendar API")
        if not user_email:
            raise ValueError("User email is required for Google Calendar API")
        self.user_email = user_email
        self._requester = GoogleRequester(
            http_client,
            access_token=access_token,
            refresh_access_token=refresh_access_token,
        )
        self._primary_calendar_id: str | None = None
        self._primary_lock = asyncio.Lock()

    async def get_primary_calendar_id(self) -> str:
        """Return the id of the calendar flagged ``primary`` in the user's list."""
        async with self._primary_lock:
            if self._primary_calendar_id is not None:
                return self._primary_calendar_id
            payload = await self._requester.get_json(
                "/users/me/calendarList",
                {
                    "maxResults": 100,
                    "showDeleted": "false",
                    "fields": "items(id,summary,primary,accessRole)",
                },
            )
            for item in payload.get("items") or []:
                if isinstance(item, Mapping) and item.get("primary") is True and item.get("id"):
                    self._primary_calendar_id = str(item["id"])
                    logger.debug("Using primary calendar for %s", self.user_email)
                    return self._primary_calendar_id
            raise CalendarProviderError("No primary calendar found")

    async def _list_events(self, params: dict[str, Any]) -> list[Any]:
        calendar_id = quote(await self.get_primary_calendar_id(), safe="")
        payload = await self._requester.get_json(
            f"/calendars/{calendar_id}/events",
            {
                **params,
                "singleEvents": "true",
                "orderBy": "startTime",
                "fields": _EVENT_FIELDS,
            },
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
        """Fetch upcoming and past meetings concurrently.

        Each half fails independently to an empty list. Raises
        :class:`CalendarProviderError` only when both halves fail.
        """
        upcoming, past = await asyncio.gather(
            self.get_upcoming_events(), self.get_past_events(), return_exceptions=True
        )
        failures = [r for r in (upcoming, past) if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, Exception):
                raise failure
            logger.warning("Google Calendar fetch failed for %s: %s", self.user_email, failure)
        if len(failures) == 2:
            raise CalendarProviderError("Google Calendar fetch failed") from failures[0]
        return (
            upcoming if isinstance(upcoming, list) else [],
            past if isinstance(past, list) else [],
        )

    async def check_connection(self) -> bool:
        """True when the primary calendar answers with a 2xx status."""
        try:
            response = await self._requester.request("GET", "/calendars/primary")
        except CalendarProviderError as exc:
            logger.warning("Calendar connection check failed: %s", exc)
            return False
        return response.is_success
