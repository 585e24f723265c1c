"""
Domain models for counselors, credentials, time ranges and booked sessions.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import date as Date
from datetime import time
from typing import Any, Dict, List, Optional

import pendulum
from pendulum import DateTime


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another (touching edges do not overlap)."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "TimeRange") -> bool:
        """Check if ``other`` lies completely inside this range."""
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        start = max(self.start, other.start)
        end = min(self.end, other.end)

        return TimeRange(start=start, end=end)

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


def parse_wall_clock(value: Optional[str]) -> Optional[time]:
    """Parse an ``HH:MM`` (or ``HH:MM:SS``) string. Returns None when malformed."""
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        return None
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        return None
    return time(hour=hour, minute=minute, second=second)


@dataclass
class WorkingHours:
    """
    A counselor's daily working window in their local timezone.
    """
    start_time: Optional[time]
    end_time: Optional[time]
    timezone: str = "Asia/Kolkata"

    @classmethod
    def from_strings(cls, start: Optional[str], end: Optional[str], timezone: str) -> "WorkingHours":
        return cls(
            start_time=parse_wall_clock(start),
            end_time=parse_wall_clock(end),
            timezone=timezone,
        )

    def get_working_hours_for_day(self, day: Date) -> TimeRange | None:
        """
        Get the absolute working window for a calendar date.

        Returns None when the configuration is unusable (unparseable times or
        a window that does not open before it closes).
        """
        if self.start_time is None or self.end_time is None:
            return None

        try:
            tz = pendulum.timezone(self.timezone)
        except (KeyError, ValueError):
            # Unknown zone names surface as ZoneInfoNotFoundError (a KeyError)
            # or pendulum's InvalidTimezone (a ValueError).
            return None

        start = pendulum.datetime(
            day.year, day.month, day.day,
            self.start_time.hour, self.start_time.minute, self.start_time.second,
            tz=tz,
        )
        end = pendulum.datetime(
            day.year, day.month, day.day,
            self.end_time.hour, self.end_time.minute, self.end_time.second,
            tz=tz,
        )

        if start >= end:
            return None

        return TimeRange(start=start, end=end)


@dataclass(frozen=True)
class TimeSlot:
    """
    A bookable, fixed-duration slot. Ephemeral: re-derived on every request.
    """
    time_range: TimeRange

    @classmethod
    def between(cls, start: DateTime, end: DateTime) -> "TimeSlot":
        return cls(time_range=TimeRange(start=start, end=end))

    @property
    def start(self) -> DateTime:
        return self.time_range.start

    @property
    def end(self) -> DateTime:
        return self.time_range.end

    def label(self) -> str:
        return f"{self.start.format('HH:mm')}-{self.end.format('HH:mm')}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "start": self.start.to_iso8601_string(),
            "end": self.end.to_iso8601_string(),
            "label": self.label(),
        }

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, YYYY-MM-DD | HH:MM - HH:MM (N min)
        """
        return (
            f"{self.start.format('dddd, YYYY-MM-DD')} | {self.label()} "
            f"({self.time_range.duration_minutes()} min)"
        )


class ConnectionState(str, enum.Enum):
    """Calendar connection lifecycle of a counselor."""

    DISCONNECTED = "disconnected"
    PENDING_CALLBACK = "pending_callback"
    CONNECTED = "connected"
    REFRESHING = "refreshing"


@dataclass
class Counselor:
    """
    Counselor record as owned by the persistence layer.

    ``token_expiry`` and ``oauth_state_issued_at`` are epoch milliseconds.
    """
    counselor_id: int
    name: str
    email: str
    connected: bool = False
    calendar_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[int] = None
    oauth_state: Optional[str] = None
    oauth_state_issued_at: Optional[int] = None
    timezone: Optional[str] = None
    work_start_time: Optional[str] = None
    work_end_time: Optional[str] = None

    @property
    def effective_calendar_id(self) -> str:
        """The calendar to query; falls back to the counselor's email."""
        return self.calendar_id or self.email

    @property
    def connection_state(self) -> ConnectionState:
        if self.connected and self.refresh_token:
            return ConnectionState.CONNECTED
        if self.oauth_state:
            return ConnectionState.PENDING_CALLBACK
        return ConnectionState.DISCONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Counselor":
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        return cls(**known)


@dataclass(frozen=True)
class Credential:
    """Short-lived access token plus its absolute expiry."""
    access_token: str
    expires_at: DateTime

    def is_valid(self, now: DateTime, skew_seconds: int = 60) -> bool:
        return now < self.expires_at.subtract(seconds=skew_seconds)


@dataclass(frozen=True)
class CredentialUpdate:
    """
    A credential write. ``refresh_token=None`` keeps the stored refresh token.
    """
    access_token: Optional[str]
    token_expiry: Optional[int]
    connected: bool
    refresh_token: Optional[str] = None


class SessionStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"
    COMPLETED = "completed"

    @classmethod
    def normalize(cls, value: str) -> "SessionStatus":
        """Map loose status spellings ("cancelled", "confirm", ...) to a status."""
        aliases = {
            "cancel": cls.CANCELED,
            "cancelled": cls.CANCELED,
            "canceled": cls.CANCELED,
            "confirm": cls.CONFIRMED,
            "confirmed": cls.CONFIRMED,
            "pending": cls.PENDING,
            "complete": cls.COMPLETED,
            "completed": cls.COMPLETED,
        }
        key = (value or "").strip().lower()
        if key not in aliases:
            raise ValueError(f"Unknown session status: {value!r}")
        return aliases[key]


@dataclass
class SessionRecord:
    """
    A booked session. Only ever created once the remote event exists.
    """
    student_id: str
    counselor_id: int
    session_datetime: DateTime
    session_end: DateTime
    remote_event_id: str
    notes: str = ""
    status: SessionStatus = SessionStatus.CONFIRMED
    session_id: Optional[int] = None
    created_at: Optional[DateTime] = None

    def __post_init__(self):
        if not self.remote_event_id:
            raise ValueError("A session record requires a remote event id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "student_id": self.student_id,
            "counselor_id": self.counselor_id,
            "session_datetime": self.session_datetime.to_iso8601_string(),
            "session_end": self.session_end.to_iso8601_string(),
            "remote_event_id": self.remote_event_id,
            "notes": self.notes,
            "status": self.status.value,
            "created_at": self.created_at.to_iso8601_string() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        created_at = data.get("created_at")
        return cls(
            session_id=data.get("session_id"),
            student_id=data["student_id"],
            counselor_id=data["counselor_id"],
            session_datetime=pendulum.parse(data["session_datetime"]),
            session_end=pendulum.parse(data["session_end"]),
            remote_event_id=data["remote_event_id"],
            notes=data.get("notes") or "",
            status=SessionStatus(data.get("status", SessionStatus.CONFIRMED.value)),
            created_at=pendulum.parse(created_at) if created_at else None,
        )


@dataclass(frozen=True)
class StudentIdentity:
    """A student as reported by the external identity service."""
    code: str
    name: Optional[str] = None
    email: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def display_name(self) -> str:
        return self.name or self.email or self.code


@dataclass(frozen=True)
class EventDraft:
    """Calendar event to be created for a booking."""
    summary: str
    description: str
    time_range: TimeRange
    timezone: str
    attendees: List[str] = field(default_factory=list)
    private_properties: Dict[str, str] = field(default_factory=dict)
