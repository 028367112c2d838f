"""Meeting and calendar data models.

Field names are snake_case in Python and camelCase on the wire; every model
accepts either form on input and serializes with aliases by default when
returned from a FastAPI route.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from katalyst.timeutils import parse_iso, to_iso, utc_now

UNTITLED_MEETING = "Untitled Meeting"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Dump using camelCase aliases, as sent over the API."""
        return self.model_dump(by_alias=True, mode="json")


class ResponseStatus(StrEnum):
    """Attendee RSVP state as reported by Google Calendar."""

    NEEDS_ACTION = "needsAction"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"

    @classmethod
    def parse(cls, value: object) -> ResponseStatus:
        """Map a raw provider value to a status, defaulting to ``needsAction``."""
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return cls.NEEDS_ACTION


class Attendee(_WireModel):
    email: str
    name: str | None = None
    response_status: ResponseStatus = ResponseStatus.NEEDS_ACTION


class Organizer(_WireModel):
    email: str
    name: str | None = None


class Meeting(_WireModel):
    """A single calendar event normalised from any provider."""

    id: str = Field(min_length=1)
    title: str
    description: str | None = None
    start_time: str
    end_time: str
    duration: int
    attendees: list[Attendee] = Field(default_factory=list)
    organizer: Organizer
    location: str | None = None
    meeting_url: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _must_be_iso(cls, value: str) -> str:
        parse_iso(value)
        return value

    @property
    def start(self) -> datetime:
        return parse_iso(self.start_time)

    @property
    def end(self) -> datetime:
        return parse_iso(self.end_time)


class CalendarSource(StrEnum):
    """Which layer produced a CalendarData payload."""

    CACHE = "cache"
    CONNECTOR = "connector"
    GOOGLE = "google"
    API_KEY = "api_key"
    NONE = "none"


class CalendarData(_WireModel):
    """Dashboard payload: at most five upcoming and five past meetings."""

    upcoming_meetings: list[Meeting] = Field(default_factory=list, max_length=5)
    past_meetings: list[Meeting] = Field(default_factory=list, max_length=5)
    last_updated: str = Field(default_factory=lambda: to_iso(utc_now()))
    has_connection: bool = False
    source: CalendarSource = CalendarSource.NONE

    @classmethod
    def empty(cls, has_connection: bool = False) -> CalendarData:
        return cls(has_connection=has_connection, source=CalendarSource.NONE)


class MeetingSummary(_WireModel):
    """Mock AI summary for a meeting."""

    id: str
    meeting_id: str
    summary: str
    key_points: list[str]
    action_items: list[str]
    created_at: str
    details: str | None = None


# ---------------------------------------------------------------------------
# API request / response bodies
# ---------------------------------------------------------------------------


class ConnectRequest(_WireModel):
    redirect_url: str | None = None


class ConnectResponse(_WireModel):
    redirect_url: str
    connection_url: str


class ConnectionStatus(_WireModel):
    connected: bool
    source: CalendarSource = CalendarSource.NONE
