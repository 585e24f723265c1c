"""
Typed request models and response envelopes for the edge layer.

Requests are validated here before anything reaches the services; responses
are plain dictionaries ready to be serialized as JSON.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import pendulum
from pydantic import AwareDatetime, BaseModel, Field, field_validator, model_validator

from .domain.exceptions import CounselBookError
from .domain.models import SessionRecord, TimeSlot


class AuthorizeUrlRequest(BaseModel):
    counselor_id: int = Field(gt=0)


class OAuthCallbackRequest(BaseModel):
    code: str = Field(min_length=1)
    state: str = Field(min_length=1)

    @field_validator("code", "state")
    @classmethod
    def strip_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class SlotQuery(BaseModel):
    counselor_id: int = Field(gt=0)
    date: date
    duration: int = Field(default=60, gt=0, le=24 * 60)


class SlotPayload(BaseModel):
    """A slot as sent back by a client; both ends must carry a UTC offset."""
    start: AwareDatetime
    end: AwareDatetime

    @model_validator(mode="after")
    def validate_order(self) -> "SlotPayload":
        if self.end <= self.start:
            raise ValueError("slot end must be after slot start")
        return self

    def to_time_slot(self) -> TimeSlot:
        return TimeSlot.between(pendulum.instance(self.start), pendulum.instance(self.end))


class BookSessionRequest(BaseModel):
    counselor_id: int = Field(gt=0)
    student_id: str = Field(min_length=1)
    slot: SlotPayload
    notes: str = ""

    @field_validator("student_id")
    @classmethod
    def validate_student_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("student_id must not be blank")
        return value


def url_envelope(url: str) -> Dict[str, Any]:
    return {"url": url}


def success_envelope(**extra: Any) -> Dict[str, Any]:
    return {"success": True, **extra}


def slots_envelope(slots: List[TimeSlot], connected: bool = True) -> Dict[str, Any]:
    return {"connected": connected, "slots": [slot.to_dict() for slot in slots]}


def session_envelope(record: SessionRecord) -> Dict[str, Any]:
    return success_envelope(session=record.to_dict())


def sessions_envelope(records: List[SessionRecord]) -> Dict[str, Any]:
    return success_envelope(sessions=[record.to_dict() for record in records])


def error_envelope(error: CounselBookError, connected: Optional[bool] = None) -> Dict[str, Any]:
    """
    Uniform failure body. Relay errors carry ``upstream_status``/``upstream_body``
    through ``to_dict``.
    """
    body: Dict[str, Any] = {"success": False, "error": error.to_dict()}
    if connected is not None:
        body["connected"] = connected
    return body
