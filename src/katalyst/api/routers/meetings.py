"""Meeting summary endpoint mounted at ``/api/meetings``."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from katalyst.api.deps import get_calendar_service, require_session
from katalyst.auth.session import AuthSession
from katalyst.calendar.service import CalendarService
from katalyst.models import Meeting
from katalyst.summaries import generate_mock_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/meetings", tags=["meetings"])


async def _cached_meeting(
    service: CalendarService, user_id: str, meeting_id: str
) -> Meeting | None:
    if service.cache is None:
        return None
    try:
        return await service.cache.get_meeting(user_id, meeting_id)
    except Exception:
        logger.warning("Meeting cache lookup failed; summarising without details", exc_info=True)
        return None


@router.get("/{meeting_id}/summary")
async def get_meeting_summary(
    meeting_id: str,
    auth: AuthSession = Depends(require_session),
    service: CalendarService = Depends(get_calendar_service),
) -> dict[str, Any]:
    """Return the (mock) AI summary of a meeting.

    When the meeting is in the cache the summary also carries a markdown
    ``details`` section built from its title, attendees and duration.
    """
    meeting = await _cached_meeting(service, auth.user_id, meeting_id)
    return generate_mock_summary(meeting_id, meeting).to_wire()
