"""PostgreSQL-backed meeting cache.

Meetings fetched from a provider are written to ``meetings`` and
``meeting_attendees`` per user. A read is served from the cache only when the
newest row was written less than ``max_age`` ago. The cache is best-effort:
callers log and ignore its errors.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

import asyncpg

from katalyst.models import Attendee, Meeting, Organizer, ResponseStatus
from katalyst.timeutils import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

CACHE_MAX_AGE = timedelta(minutes=5)
CACHE_LOOKBACK = timedelta(days=30)
CACHE_ROW_LIMIT = 100

_SELECT_MEETINGS = """
    SELECT id, title, description, start_time, end_time, duration_minutes,
           location, meeting_url, organizer_email, organizer_name, updated_at
    FROM meetings
    WHERE user_id = $1 AND start_time >= $2
    ORDER BY start_time ASC
    LIMIT $3
"""

_SELECT_ATTENDEES = """
    SELECT meeting_id, email, name, response_status
    FROM meeting_attendees
    WHERE user_id = $1 AND meeting_id = ANY($2::text[])
    ORDER BY id ASC
"""

_INSERT_MEETING = """
    INSERT INTO meetings (
        id, user_id, title, description, start_time, end_time, duration_minutes,
        location, meeting_url, organizer_email, organizer_name, updated_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
    ON CONFLICT (user_id, id) DO UPDATE SET
        title = EXCLUDED.title,
        description = EXCLUDED.description,
        start_time = EXCLUDED.start_time,
        end_time = EXCLUDED.end_time,
        duration_minutes = EXCLUDED.duration_minutes,
        location = EXCLUDED.location,
        meeting_url = EXCLUDED.meeting_url,
        organizer_email = EXCLUDED.organizer_email,
        organizer_name = EXCLUDED.organizer_name,
        updated_at = EXCLUDED.updated_at
"""

_INSERT_ATTENDEE = """
    INSERT INTO meeting_attendees (user_id, meeting_id, email, name, response_status)
    VALUES ($1, $2, $3, $4, $5)
"""


def _row_to_meeting(row: Mapping[str, Any], attendees: list[Attendee]) -> Meeting:
    return Meeting(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        start_time=to_iso(row["start_time"]),
        end_time=to_iso(row["end_time"]),
        duration=row["duration_minutes"],
        attendees=attendees,
        organizer=Organizer(email=row["organizer_email"], name=row["organizer_name"]),
        location=row["location"],
        meeting_url=row["meeting_url"],
    )


def _row_to_attendee(row: Mapping[str, Any]) -> Attendee:
    return Attendee(
        email=row["email"],
        name=row["name"],
        response_status=ResponseStatus.parse(row["response_status"]),
    )


class MeetingCache:
    """Per-user meeting store keyed by user id (the account email)."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def _load(
        self, conn: Any, user_id: str, meeting_rows: Sequence[Mapping[str, Any]]
    ) -> list[Meeting]:
        ids = [row["id"] for row in meeting_rows]
        attendee_rows = await conn.fetch(_SELECT_ATTENDEES, user_id, ids)
        by_meeting: dict[str, list[Attendee]] = {}
        for row in attendee_rows:
            by_meeting.setdefault(row["meeting_id"], []).append(_row_to_attendee(row))
        return [_row_to_meeting(row, by_meeting.get(row["id"], [])) for row in meeting_rows]

    async def get_fresh(
        self,
        user_id: str,
        max_age: timedelta = CACHE_MAX_AGE,
        now: datetime | None = None,
    ) -> list[Meeting] | None:
        """Return cached meetings from the last 30 days onward if the cache is fresh.

        Returns None when nothing is cached or the newest write is older
        than *max_age*.
        """
        now = now or utc_now()
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                _SELECT_MEETINGS, user_id, now - CACHE_LOOKBACK, CACHE_ROW_LIMIT
            )
            if not rows:
                return None
            newest = max(row["updated_at"] for row in rows)
            if now - newest >= max_age:
                logger.debug("Meeting cache stale for user (age=%s)", now - newest)
                return None
            return await self._load(conn, user_id, rows)

    async def store(self, user_id: str, meetings: Sequence[Meeting]) -> None:
        """Replace the user's cached meetings in a single transaction."""
        written_at = utc_now()
        # (user_id, id) is the primary key; providers may repeat an event id.
        unique = list({m.id: m for m in meetings}.values())
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM meetings WHERE user_id = $1", user_id)
                if not unique:
                    return
                await conn.executemany(
                    _INSERT_MEETING,
                    [
                        (
                            m.id,
                            user_id,
                            m.title,
                            m.description,
                            parse_iso(m.start_time),
                            parse_iso(m.end_time),
                            m.duration,
                            m.location,
                            m.meeting_url,
                            m.organizer.email,
                            m.organizer.name,
                            written_at,
                        )
                        for m in unique
                    ],
                )
                attendee_rows = [
                    (user_id, m.id, a.email, a.name, a.response_status.value)
                    for m in unique
                    for a in m.attendees
                ]
                if attendee_rows:
                    await conn.executemany(_INSERT_ATTENDEE, attendee_rows)
        logger.debug("Cached %d meeting(s) for user", len(unique))

    async def get_meeting(self, user_id: str, meeting_id: str) -> Meeting | None:
        """Return one cached meeting regardless of cache age."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, title, description, start_time, end_time, duration_minutes,
                       location, meeting_url, organizer_email, organizer_name, updated_at
                FROM meetings
                WHERE user_id = $1 AND id = $2
                """,
                user_id,
                meeting_id,
            )
            if row is None:
                return None
            meetings = await self._load(conn, user_id, [row])
        return meetings[0]

    async def clear(self, user_id: str) -> None:
        """Delete every cached meeting for *user_id*."""
        async with self._pool.acquire() as conn:
            await conn.execute("DELETE FROM meetings WHERE user_id = $1", user_id)
