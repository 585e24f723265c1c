"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import (
    ConnectionState,
    Counselor,
    Credential,
    CredentialUpdate,
    EventDraft,
    SessionRecord,
    SessionStatus,
    StudentIdentity,
    TimeRange,
    TimeSlot,
    WorkingHours,
)
from .slot_calculator import SlotCalculator

__all__ = [
    "ConnectionState",
    "Counselor",
    "Credential",
    "CredentialUpdate",
    "EventDraft",
    "SessionRecord",
    "SessionStatus",
    "StudentIdentity",
    "TimeRange",
    "TimeSlot",
    "WorkingHours",
    "SlotCalculator",
]
