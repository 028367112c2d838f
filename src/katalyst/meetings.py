"""Meeting validation, sanitisation and upcoming/past selection."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from katalyst.models import UNTITLED_MEETING, Meeting
from katalyst.timeutils import parse_iso, utc_now

logger = logging.getLogger(__name__)

MAX_MEETINGS_PER_LIST = 5
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
LOCATION_MAX_LENGTH = 200

DEFAULT_DURATION_MINUTES = 60
MIN_DURATION_MINUTES = 15


def _get(obj: Mapping[str, Any], *keys: str) -> Any:
    """Return the first present key, accepting both camelCase and snake_case names."""
    for key in keys:
        if key in obj:
            return obj[key]
    return None


def validate_meeting_data(obj: Any) -> bool:
    """Return True when *obj* has the minimum shape of a meeting record."""
    if isinstance(obj, Meeting):
        return True
    if not isinstance(obj, Mapping):
        return False
    organizer = obj.get("organizer")
    return (
        isinstance(obj.get("id"), str)
        and isinstance(obj.get("title"), str)
        and isinstance(_get(obj, "startTime", "start_time"), str)
        and isinstance(_get(obj, "endTime", "end_time"), str)
        and isinstance(obj.get("attendees"), list)
        and isinstance(organizer, Mapping)
        and isinstance(organizer.get("email"), str)
    )


def _truncate(value: Any, limit: int) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    return value[:limit]


def sanitize_meetings(meetings: Iterable[Meeting | Mapping[str, Any]]) -> list[Meeting]:
    """Drop malformed records and clamp free-text fields.

    Titles are cut to 200 characters (empty titles become "Untitled Meeting"),
    descriptions to 1000 and locations to 200. Records that fail validation,
    including timestamps that are not ISO-8601, are dropped with a warning.
    """
    sanitized: list[Meeting] = []
    for item in meetings:
        if not validate_meeting_data(item):
            logger.warning("Dropping malformed meeting record")
            continue
        raw = item.model_dump(by_alias=True) if isinstance(item, Meeting) else dict(item)
        raw["title"] = _truncate(raw.get("title"), TITLE_MAX_LENGTH) or UNTITLED_MEETING
        raw["description"] = _truncate(raw.get("description"), DESCRIPTION_MAX_LENGTH)
        raw["location"] = _truncate(raw.get("location"), LOCATION_MAX_LENGTH)
        try:
            sanitized.append(Meeting.model_validate(raw))
        except ValidationError as exc:
            logger.warning(
                "Dropping invalid meeting %s: %d validation error(s)",
                raw.get("id"),
                exc.error_count(),
            )
    return sanitized


def calculate_duration(start_time: str, end_time: str) -> int:
    """Minutes between two ISO timestamps, never less than 15.

    Unparseable input yields the one-hour default.
    """
    try:
        start = parse_iso(start_time)
        end = parse_iso(end_time)
    except (TypeError, ValueError):
        return DEFAULT_DURATION_MINUTES
    minutes = round((end - start).total_seconds() / 60)
    return max(minutes, MIN_DURATION_MINUTES)


def format_duration(minutes: int) -> str:
    """Render a duration as ``45m``, ``1h`` or ``1h 30m``."""
    if minutes < 60:
        return f"{minutes}m"
    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours}h"
    return f"{hours}h {remaining}m"


def select_upcoming(
    meetings: Iterable[Meeting],
    now: datetime | None = None,
    limit: int = MAX_MEETINGS_PER_LIST,
) -> list[Meeting]:
    """Meetings starting after *now*, soonest first."""
    now = now or utc_now()
    upcoming = [m for m in meetings if m.start > now]
    upcoming.sort(key=lambda m: m.start)
    return upcoming[:limit]


def select_past(
    meetings: Iterable[Meeting],
    now: datetime | None = None,
    limit: int = MAX_MEETINGS_PER_LIST,
) -> list[Meeting]:
    """Meetings that ended before *now*, most recent start first."""
    now = now or utc_now()
    past = [m for m in meetings if m.end < now]
    past.sort(key=lambda m: m.start, reverse=True)
    return past[:limit]


def is_valid_url(value: Any) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(value, str) or not value.strip():
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
