"""Tests for meeting sanitisation, durations and upcoming/past selection."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from katalyst.meetings import (
    calculate_duration,
    format_duration,
    is_valid_url,
    sanitize_meetings,
    select_past,
    select_upcoming,
    validate_meeting_data,
)
from katalyst.models import UNTITLED_MEETING
from tests.conftest import make_meeting

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _raw(**overrides):
    raw = {
        "id": "m1",
        "title": "Planning",
        "startTime": "2026-03-10T13:00:00.000Z",
        "endTime": "2026-03-10T14:00:00.000Z",
        "duration": 60,
        "attendees": [],
        "organizer": {"email": "alice@example.com"},
    }
    raw.update(overrides)
    return raw


class TestValidateMeetingData:
    def test_accepts_complete_record(self):
        assert validate_meeting_data(_raw())

    def test_accepts_snake_case_keys(self):
        raw = _raw()
        raw["start_time"] = raw.pop("startTime")
        raw["end_time"] = raw.pop("endTime")
        assert validate_meeting_data(raw)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"id": None},
            {"title": 5},
            {"attendees": "bob"},
            {"organizer": {"name": "no email"}},
        ],
    )
    def test_rejects_incomplete_record(self, overrides):
        assert not validate_meeting_data(_raw(**overrides))

    def test_rejects_non_mapping(self):
        assert not validate_meeting_data("meeting")


class TestSanitizeMeetings:
    def test_truncates_text_fields(self):
        raw = _raw(title="t" * 300, description="d" * 1500, location="l" * 250)
        [meeting] = sanitize_meetings([raw])
        assert len(meeting.title) == 200
        assert len(meeting.description) == 1000
        assert len(meeting.location) == 200

    def test_empty_title_becomes_untitled(self):
        [meeting] = sanitize_meetings([_raw(title="")])
        assert meeting.title == UNTITLED_MEETING

    def test_drops_malformed_and_invalid_records(self):
        meetings = sanitize_meetings(
            [_raw(id="ok"), _raw(id=None), _raw(id="bad-time", startTime="next tuesday")]
        )
        assert [m.id for m in meetings] == ["ok"]

    def test_accepts_meeting_models(self):
        meeting = make_meeting("m2", title="x" * 250)
        [sanitized] = sanitize_meetings([meeting])
        assert sanitized.id == "m2"
        assert len(sanitized.title) == 200


class TestDuration:
    def test_minutes_between_timestamps(self):
        assert calculate_duration("2026-03-10T13:00:00Z", "2026-03-10T14:30:00Z") == 90

    def test_minimum_is_fifteen_minutes(self):
        assert calculate_duration("2026-03-10T13:00:00Z", "2026-03-10T13:05:00Z") == 15

    def test_invalid_input_defaults_to_one_hour(self):
        assert calculate_duration("garbage", "2026-03-10T13:05:00Z") == 60

    @pytest.mark.parametrize(
        ("minutes", "expected"),
        [(45, "45m"), (60, "1h"), (90, "1h 30m"), (125, "2h 5m")],
    )
    def test_format_duration(self, minutes, expected):
        assert format_duration(minutes) == expected


class TestSelection:
    def _meetings(self):
        return [
            make_meeting("past-old", start=NOW - timedelta(days=3)),
            make_meeting("future-late", start=NOW + timedelta(days=2)),
            make_meeting("past-recent", start=NOW - timedelta(hours=3)),
            make_meeting("in-progress", start=NOW - timedelta(minutes=10)),
            make_meeting("future-soon", start=NOW + timedelta(hours=1)),
        ]

    def test_upcoming_sorted_soonest_first(self):
        upcoming = select_upcoming(self._meetings(), NOW)
        assert [m.id for m in upcoming] == ["future-soon", "future-late"]

    def test_past_sorted_most_recent_first(self):
        past = select_past(self._meetings(), NOW)
        assert [m.id for m in past] == ["past-recent", "past-old"]

    def test_in_progress_meeting_is_neither(self):
        meetings = self._meetings()
        ids = {m.id for m in select_upcoming(meetings, NOW)} | {
            m.id for m in select_past(meetings, NOW)
        }
        assert "in-progress" not in ids

    def test_lists_capped_at_five(self):
        meetings = [make_meeting(f"f{i}", start=NOW + timedelta(hours=i + 1)) for i in range(8)]
        assert len(select_upcoming(meetings, NOW)) == 5


class TestIsValidUrl:
    @pytest.mark.parametrize("url", ["https://example.com/x", "http://localhost:3000"])
    def test_valid(self, url):
        assert is_valid_url(url)

    @pytest.mark.parametrize("url", [None, "", "/dashboard", "javascript:alert(1)", "ftp://x"])
    def test_invalid(self, url):
        assert not is_valid_url(url)
