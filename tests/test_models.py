"""Tests for wire models and timestamp helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from katalyst.models import CalendarData, CalendarSource, Meeting, ResponseStatus
from katalyst.timeutils import parse_iso, to_iso
from tests.conftest import make_meeting

pytestmark = pytest.mark.unit


class TestTimeutils:
    def test_parse_zulu(self):
        assert parse_iso("2026-03-10T13:00:00Z") == datetime(2026, 3, 10, 13, tzinfo=UTC)

    def test_parse_offset_converts_to_utc(self):
        parsed = parse_iso("2026-03-10T15:00:00+02:00")
        assert parsed == datetime(2026, 3, 10, 13, tzinfo=UTC)
        assert parsed.tzinfo is UTC

    def test_parse_all_day_date(self):
        assert parse_iso("2026-03-10") == datetime(2026, 3, 10, tzinfo=UTC)

    def test_parse_naive_is_utc(self):
        assert parse_iso("2026-03-10T13:00:00") == datetime(2026, 3, 10, 13, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["", "tomorrow", "2026-13-40"])
    def test_parse_invalid_raises(self, value):
        with pytest.raises(ValueError):
            parse_iso(value)

    def test_to_iso_millisecond_zulu(self):
        value = datetime(2026, 3, 10, 13, 0, 5, 123456, tzinfo=timezone(timedelta(hours=1)))
        assert to_iso(value) == "2026-03-10T12:00:05.123Z"


class TestResponseStatus:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("accepted", ResponseStatus.ACCEPTED),
            ("NEEDSACTION", ResponseStatus.NEEDS_ACTION),
            ("tentative", ResponseStatus.TENTATIVE),
            ("unknown", ResponseStatus.NEEDS_ACTION),
            (None, ResponseStatus.NEEDS_ACTION),
        ],
    )
    def test_parse(self, raw, expected):
        assert ResponseStatus.parse(raw) is expected


class TestMeeting:
    def test_wire_format_is_camel_case(self):
        wire = make_meeting("m1").to_wire()
        assert {"startTime", "endTime", "meetingUrl"} <= wire.keys()
        assert wire["attendees"][0]["responseStatus"] == "needsAction"

    def test_accepts_camel_case_input(self):
        meeting = Meeting.model_validate(make_meeting("m1").to_wire())
        assert meeting.id == "m1"

    def test_rejects_empty_id(self):
        wire = make_meeting("m1").to_wire()
        wire["id"] = ""
        with pytest.raises(ValidationError):
            Meeting.model_validate(wire)

    def test_rejects_non_iso_start(self):
        wire = make_meeting("m1").to_wire()
        wire["startTime"] = "soon"
        with pytest.raises(ValidationError):
            Meeting.model_validate(wire)


class TestCalendarData:
    def test_empty(self):
        data = CalendarData.empty()
        wire = data.to_wire()
        assert wire["upcomingMeetings"] == []
        assert wire["pastMeetings"] == []
        assert wire["hasConnection"] is False
        assert wire["source"] == "none"
        assert wire["lastUpdated"].endswith("Z")

    def test_at_most_five_meetings_per_list(self):
        meetings = [make_meeting(f"m{i}") for i in range(6)]
        with pytest.raises(ValidationError):
            CalendarData(upcoming_meetings=meetings, source=CalendarSource.GOOGLE)
