"""Calendar endpoints mounted at ``/api/calendar``.

GET returns the dashboard's :class:`~katalyst.models.CalendarData`; the
calendar service never raises, so a signed-in user always gets a 200.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response

from katalyst.api.deps import get_calendar_service, get_settings, require_session
from katalyst.auth.session import AuthSession
from katalyst.calendar.service import CalendarService
from katalyst.config import Settings
from katalyst.core.logging import set_user_context
from katalyst.meetings import is_valid_url
from katalyst.models import CalendarSource, ConnectionStatus, ConnectRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar"])

CACHE_CONTROL_REFRESH = "no-cache, no-store, must-revalidate"
CACHE_CONTROL_DEFAULT = "public, max-age=300"


@router.get("")
async def get_calendar(
    response: Response,
    refresh: bool = Query(default=False),
    auth: AuthSession = Depends(require_session),
    service: CalendarService = Depends(get_calendar_service),
) -> dict[str, Any]:
    """Return up to five upcoming and five past meetings.

    ``?refresh=true`` bypasses the meeting cache.
    """
    set_user_context(auth.user_id)
    data = await service.get_calendar_data(
        auth.user_id, force_refresh=refresh, access_token=auth.access_token
    )
    response.headers["Cache-Control"] = (
        CACHE_CONTROL_REFRESH if refresh else CACHE_CONTROL_DEFAULT
    )
    return data.to_wire()


@router.post("/connect")
async def connect_calendar(
    payload: ConnectRequest | None = Body(default=None),
    auth: AuthSession = Depends(require_session),
    service: CalendarService = Depends(get_calendar_service),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Return the URL that starts linking the user's calendar."""
    set_user_context(auth.user_id)
    redirect_url = payload.redirect_url if payload is not None else None
    if not is_valid_url(redirect_url):
        redirect_url = settings.dashboard_url
    result = await service.initiate_calendar_connection(auth.user_id, redirect_url)
    return result.to_wire()


@router.get("/status")
async def calendar_status(
    auth: AuthSession = Depends(require_session),
    service: CalendarService = Depends(get_calendar_service),
) -> dict[str, Any]:
    """Report whether the user's Google token can read their calendar."""
    connected = await service.check_calendar_connection(auth.user_id, auth.access_token)
    status = ConnectionStatus(
        connected=connected,
        source=CalendarSource.GOOGLE if connected else CalendarSource.NONE,
    )
    return status.to_wire()
