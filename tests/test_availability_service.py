"""
Tests for the AvailabilityService orchestration layer.
"""

import asyncio
from datetime import date

import pendulum
import pytest

from counselbook.domain.exceptions import BadRequest, NotConnected, NotFound
from counselbook.domain.models import TimeRange

TZ = "Asia/Kolkata"
DAY = date(2024, 11, 25)


def at(clock_time: str):
    return pendulum.parse(f"2024-11-25 {clock_time}", tz=TZ)


def test_compute_slots_around_busy_hour(availability, calendar, connected):
    """Half-hour slots skip a busy lunch hour."""
    calendar.busy = [TimeRange(start=at("12:00"), end=at("13:00"))]

    slots = asyncio.run(availability.compute_slots(1, DAY, 30))

    assert len(slots) == 14
    assert slots[0].start == at("09:00")
    assert slots[5].label() == "11:30-12:00"
    assert slots[6].label() == "13:00-13:30"
    assert slots[-1].end == at("17:00")


def test_busy_query_uses_window_token_and_email_calendar(availability, calendar, connected):
    asyncio.run(availability.compute_slots(1, DAY, 60))

    assert calendar.busy_calls == [
        {
            "token": "stored-token",
            "calendar_id": "asha@example.com",
            "start": "2024-11-25T09:00:00+05:30",
            "end": "2024-11-25T17:00:00+05:30",
            "timezone": TZ,
        }
    ]


def test_default_duration_from_config(availability, connected):
    slots = asyncio.run(availability.compute_slots(1, DAY))

    assert len(slots) == 8
    assert all(slot.time_range.duration_minutes() == 60 for slot in slots)


def test_lead_time_applies_today(availability, connected, clock):
    # 11:50 in Kolkata, so the first bookable hour starts at 12:05 or later.
    clock.now = pendulum.datetime(2024, 11, 25, 6, 20, tz="UTC")

    slots = asyncio.run(availability.compute_slots(1, DAY, 60))

    assert slots[0].start == at("13:00")


def test_past_day_is_empty(availability, connected, clock):
    clock.now = pendulum.datetime(2024, 11, 27, 4, 0, tz="UTC")

    assert asyncio.run(availability.compute_slots(1, DAY, 30)) == []


def test_misconfigured_window_skips_provider(availability, calendar, store, counselor_repo, connected):
    counselor = store.read(1)
    counselor.work_start_time = "18:00"
    counselor.work_end_time = "09:00"
    counselor_repo.save(counselor)

    assert asyncio.run(availability.compute_slots(1, DAY, 30)) == []
    assert calendar.busy_calls == []


def test_custom_calendar_id_and_hours(availability, calendar, store, counselor_repo, connected):
    counselor = store.read(1)
    counselor.calendar_id = "office@example.com"
    counselor.work_start_time = "10:00"
    counselor.work_end_time = "12:00"
    counselor_repo.save(counselor)

    slots = asyncio.run(availability.compute_slots(1, DAY, 30))

    assert [s.label() for s in slots] == ["10:00-10:30", "10:30-11:00", "11:00-11:30", "11:30-12:00"]
    assert calendar.busy_calls[0]["calendar_id"] == "office@example.com"


def test_invalid_duration(availability, calendar, connected):
    with pytest.raises(BadRequest):
        asyncio.run(availability.compute_slots(1, DAY, 0))
    assert calendar.busy_calls == []


def test_not_connected_counselor(availability):
    with pytest.raises(NotConnected):
        asyncio.run(availability.compute_slots(1, DAY, 30))


def test_unknown_counselor(availability):
    with pytest.raises(NotFound):
        asyncio.run(availability.compute_slots(42, DAY, 30))
