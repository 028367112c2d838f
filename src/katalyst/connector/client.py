"""REST client for the third-party calendar connector (Composio).

The connector links a user's Google Calendar on its own side and can list
events on their behalf. Its response shapes vary between API versions, so
account and event lookups search the payload for the first plausible list.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from katalyst.config import ConnectorConfig
from katalyst.errors import ConnectorError
from katalyst.google.calendar import (
    DEFAULT_MAX_RESULTS,
    PAST_FETCH_LIMIT,
    PAST_WINDOW,
    events_to_meetings,
    filter_past,
    filter_upcoming,
)
from katalyst.models import Meeting
from katalyst.timeutils import google_rfc3339, utc_now

logger = logging.getLogger(__name__)

APP_NAME = "googlecalendar"
LIST_EVENTS_ACTION = "GOOGLECALENDAR_LIST_EVENTS"
ACTIVE = "ACTIVE"

_ACCOUNT_LIST_KEYS = ("items", "data", "results", "connectedAccounts", "accounts")
_APP_NAME_KEYS = ("appName", "app", "integrationName", "app_slug")
_ACCOUNT_ID_KEYS = ("id", "connectedAccountId", "account_id", "uuid")
_STATUS_KEYS = ("status", "connectionStatus", "state")
_ACTIVE_STATUSES = frozenset({"active", "connected", "authorized", "verified"})
_EVENT_LIST_KEYS = ("items", "events", "data", "response_data")
_REDIRECT_URL_KEYS = ("redirectUrl", "redirect_url", "redirectUri", "url")
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_HTTP_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class ConnectedAccount:
    id: str
    status: str
    app_name: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE


@dataclass(frozen=True)
class ConnectionRequest:
    redirect_url: str | None
    connected_account_id: str | None = None
    status: str | None = None


# ---------------------------------------------------------------------------
# Shape guessing
# ---------------------------------------------------------------------------


def normalize(value: Any) -> str:
    """Lowercase and strip everything but ``[a-z0-9]``."""
    text = value if isinstance(value, str) else ("" if value is None else str(value))
    return _NON_ALNUM.sub("", text.lower())


def _first_key(item: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def _bfs_first_list(root: Any) -> list[Any] | None:
    """Breadth-first search for the first list nested anywhere in *root*."""
    queue: deque[Any] = deque([root])
    visited: set[int] = set()
    while queue:
        current = queue.popleft()
        if id(current) in visited:
            continue
        visited.add(id(current))
        if isinstance(current, list):
            return current
        if isinstance(current, Mapping):
            queue.extend(current.values())
    return None


def extract_accounts(resp: Any) -> list[Any]:
    """Pull the account array out of a connected-accounts response of any shape."""
    if isinstance(resp, list):
        return resp
    if not isinstance(resp, Mapping):
        return []
    for key in _ACCOUNT_LIST_KEYS:
        candidate = resp.get(key)
        if isinstance(candidate, list):
            return candidate
    return _bfs_first_list(resp) or []


def pick_account(items: list[Any]) -> ConnectedAccount | None:
    """Return the first Google Calendar account in *items*, with a normalised status."""
    for item in items:
        if not isinstance(item, Mapping):
            continue
        app_name = _first_key(item, _APP_NAME_KEYS)
        if APP_NAME not in normalize(app_name):
            continue
        account_id = _first_key(item, _ACCOUNT_ID_KEYS)
        if not account_id:
            continue
        status = normalize(_first_key(item, _STATUS_KEYS)) or "active"
        return ConnectedAccount(
            id=str(account_id),
            status=ACTIVE if status in _ACTIVE_STATUSES else status.upper(),
            app_name=app_name if isinstance(app_name, str) else None,
        )
    return None


def _looks_like_event_list(value: Any) -> bool:
    return isinstance(value, list) and all(
        isinstance(item, Mapping) and ("start" in item or "summary" in item) for item in value
    )


def extract_events(resp: Any) -> list[Any]:
    """Find the Google event array inside an action-execution result."""
    queue: deque[Any] = deque([resp])
    visited: set[int] = set()
    while queue:
        current = queue.popleft()
        if id(current) in visited:
            continue
        visited.add(id(current))
        if isinstance(current, Mapping):
            for key in _EVENT_LIST_KEYS:
                candidate = current.get(key)
                if isinstance(candidate, list) and _looks_like_event_list(candidate):
                    return candidate
            queue.extend(v for v in current.values() if isinstance(v, (Mapping, list)))
        elif isinstance(current, list) and current and _looks_like_event_list(current):
            return current
    return []


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ConnectorClient:
    """Thin async wrapper over the connector's REST API."""

    def __init__(
        self,
        config: ConnectorConfig,
        http_client: httpx.AsyncClient,
        default_redirect_url: str,
    ) -> None:
        if not config.api_key:
            raise ValueError("Connector API key is required")
        self._config = config
        self._http_client = http_client
        self._default_redirect_url = default_redirect_url
        self._base_url = config.base_url.rstrip("/")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._http_client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json_body,
                headers={"x-api-key": self._config.api_key or ""},
                timeout=_HTTP_TIMEOUT_SECONDS,
            )
        except httpx.TransportError as exc:
            raise ConnectorError(f"Connector request failed: {type(exc).__name__}") from exc
        if not response.is_success:
            raise ConnectorError(f"Connector returned HTTP {response.status_code} for {path}")
        try:
            return response.json()
        except ValueError as exc:
            raise ConnectorError(f"Connector returned invalid JSON for {path}") from exc

    async def _list_accounts(self, params: dict[str, Any]) -> ConnectedAccount | None:
        resp = await self._request("GET", "/v1/connectedAccounts", params=params)
        return pick_account(extract_accounts(resp))

    async def get_connected_account(self, user_id: str) -> ConnectedAccount | None:
        """Find the user's Google Calendar account, trying progressively broader lookups.

        Raises
        ------
        ConnectorError
            If the first (exact user) lookup fails. Later fallbacks swallow
            their own errors. The final lookup by app name alone is not scoped
            to the user and only runs when ``allow_unscoped_lookup`` is set.
        """
        try:
            found = await self._list_accounts(
                {"user_uuid": user_id, "appNames": APP_NAME, "status": ACTIVE}
            )
        except ConnectorError as exc:
            logger.error("Connector account lookup failed: %s", exc)
            raise ConnectorError("Failed to get connected account") from exc
        if found:
            return found

        fallbacks: list[dict[str, Any]] = []
        if "@" in user_id:
            local_part = user_id.split("@", 1)[0]
            fallbacks.append({"user_uuid": local_part, "appNames": APP_NAME, "status": ACTIVE})
        fallbacks.append({"entityId": user_id, "appNames": APP_NAME})
        unscoped = {"appNames": APP_NAME}
        if self._config.allow_unscoped_lookup:
            fallbacks.append(unscoped)

        for params in fallbacks:
            try:
                found = await self._list_accounts(params)
            except ConnectorError as exc:
                logger.debug("Connector fallback lookup failed (%s): %s", sorted(params), exc)
                continue
            if found:
                if params is unscoped:
                    logger.warning(
                        "Connector account %s matched without a user filter; "
                        "it may belong to another user",
                        found.id,
                    )
                return found
        return None

    async def initiate_connection(
        self, user_id: str, redirect_url: str | None = None
    ) -> ConnectionRequest:
        """Start an OAuth link on the connector side and return where to send the user."""
        body: dict[str, Any] = {
            "entityId": user_id,
            "appName": APP_NAME,
            "authMode": "OAUTH2",
            "redirectUri": redirect_url or self._default_redirect_url,
        }
        if self._config.auth_config_id:
            body["authConfig"] = {"id": self._config.auth_config_id}
        try:
            resp = await self._request("POST", "/v1/connectedAccounts", json_body=body)
        except ConnectorError as exc:
            logger.error("Connector connection initiation failed: %s", exc)
            raise ConnectorError("Failed to initiate calendar connection") from exc
        if not isinstance(resp, Mapping):
            raise ConnectorError("Connector returned an unexpected connection payload")
        redirect = _first_key(resp, _REDIRECT_URL_KEYS)
        account_id = _first_key(resp, ("connectedAccountId", "id"))
        status = _first_key(resp, _STATUS_KEYS)
        return ConnectionRequest(
            redirect_url=redirect if isinstance(redirect, str) else None,
            connected_account_id=str(account_id) if account_id else None,
            status=str(status) if status else None,
        )

    async def execute_action(
        self, connected_account_id: str, action: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Run a connector action against the linked account."""
        body = {
            "connectedAccountId": connected_account_id,
            "appName": APP_NAME,
            "input": params or {},
        }
        try:
            resp = await self._request("POST", f"/v2/actions/{action}/execute", json_body=body)
        except ConnectorError as exc:
            raise ConnectorError(f"Failed to execute calendar action: {action}") from exc
        if isinstance(resp, Mapping) and resp.get("successful") is False:
            raise ConnectorError(f"Calendar action {action} reported failure")
        return resp

    async def get_upcoming_events(
        self, connected_account_id: str, max_results: int = DEFAULT_MAX_RESULTS
    ) -> list[Meeting]:
        now = utc_now()
        resp = await self.execute_action(
            connected_account_id,
            LIST_EVENTS_ACTION,
            {
                "calendarId": "primary",
                "timeMin": google_rfc3339(now),
                "maxResults": max_results * 2,
                "singleEvents": True,
                "orderBy": "startTime",
            },
        )
        return filter_upcoming(events_to_meetings(extract_events(resp), now), now, max_results)

    async def get_past_events(
        self, connected_account_id: str, max_results: int = DEFAULT_MAX_RESULTS
    ) -> list[Meeting]:
        now = utc_now()
        start = now - PAST_WINDOW
        resp = await self.execute_action(
            connected_account_id,
            LIST_EVENTS_ACTION,
            {
                "calendarId": "primary",
                "timeMin": google_rfc3339(start),
                "timeMax": google_rfc3339(now),
                "maxResults": PAST_FETCH_LIMIT,
                "singleEvents": True,
                "orderBy": "startTime",
            },
        )
        return filter_past(events_to_meetings(extract_events(resp), now), now, max_results)
