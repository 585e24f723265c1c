"""
Tests for edge request models and response envelopes.
"""

from datetime import date

import pendulum
import pytest
from pydantic import ValidationError

from counselbook.domain.exceptions import NotConnected, UpstreamError
from counselbook.domain.models import TimeSlot
from counselbook.schemas import (
    BookSessionRequest,
    OAuthCallbackRequest,
    SlotQuery,
    error_envelope,
    slots_envelope,
)


def test_slot_query_defaults_and_parsing():
    query = SlotQuery(counselor_id="3", date="2024-11-25")

    assert query.counselor_id == 3
    assert query.date == date(2024, 11, 25)
    assert query.duration == 60


@pytest.mark.parametrize(
    "payload",
    [
        {"counselor_id": 0, "date": "2024-11-25"},
        {"counselor_id": 1, "date": "25/11/2024"},
        {"counselor_id": 1, "date": "2024-11-25", "duration": 0},
    ],
)
def test_slot_query_rejects_malformed_input(payload):
    with pytest.raises(ValidationError):
        SlotQuery(**payload)


def test_callback_requires_non_blank_values():
    with pytest.raises(ValidationError):
        OAuthCallbackRequest(code="  ", state="abc")


def test_book_request_converts_slot():
    request = BookSessionRequest(
        counselor_id=1,
        student_id=" STU42 ",
        slot={"start": "2024-11-25T14:00:00+05:30", "end": "2024-11-25T14:30:00+05:30"},
    )

    slot = request.slot.to_time_slot()

    assert request.student_id == "STU42"
    assert request.notes == ""
    assert slot.start == pendulum.datetime(2024, 11, 25, 8, 30, tz="UTC")
    assert slot.time_range.duration_minutes() == 30


@pytest.mark.parametrize(
    "slot",
    [
        {"start": "2024-11-25T14:00:00", "end": "2024-11-25T14:30:00"},
        {"start": "2024-11-25T14:30:00+05:30", "end": "2024-11-25T14:00:00+05:30"},
    ],
)
def test_book_request_rejects_naive_or_reversed_slots(slot):
    with pytest.raises(ValidationError):
        BookSessionRequest(counselor_id=1, student_id="STU42", slot=slot)


def test_slots_envelope():
    slot = TimeSlot.between(
        pendulum.parse("2024-11-25 09:00", tz="Asia/Kolkata"),
        pendulum.parse("2024-11-25 10:00", tz="Asia/Kolkata"),
    )

    body = slots_envelope([slot])

    assert body == {
        "connected": True,
        "slots": [
            {
                "start": "2024-11-25T09:00:00+05:30",
                "end": "2024-11-25T10:00:00+05:30",
                "label": "09:00-10:00",
            }
        ],
    }


def test_error_envelopes():
    assert error_envelope(NotConnected("Counselor 1 has not connected a calendar"), connected=False) == {
        "success": False,
        "error": {"code": "NOT_CONNECTED", "message": "Counselor 1 has not connected a calendar"},
        "connected": False,
    }

    relay_body = error_envelope(UpstreamError(500, {"detail": "boom"}))
    assert relay_body["error"]["upstream_status"] == 500
    assert relay_body["error"]["upstream_body"] == {"detail": "boom"}
