"""
Domain-specific exception hierarchy for the counselor booking core.

Every error carries a stable ``code`` so the edge layer can map failures to
a uniform envelope without inspecting provider-specific error shapes.
"""

from __future__ import annotations

from typing import Any, Dict


class CounselBookError(Exception):
    """Base class for all application-level errors."""

    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class BadRequest(CounselBookError):
    """Raised when caller input is missing or malformed."""

    code = "BAD_REQUEST"


class NotFound(CounselBookError):
    """Raised when a counselor, student or session does not exist."""

    code = "NOT_FOUND"


class PersistenceError(CounselBookError):
    """Raised when the storage layer cannot read or write a record."""

    code = "PERSISTENCE_ERROR"


# --- OAuth / credential lifecycle -------------------------------------------


class AuthenticationError(CounselBookError):
    """Raised when authentication or token handling fails."""

    code = "AUTHENTICATION_ERROR"


class InvalidState(AuthenticationError):
    """Raised on OAuth flow misuse (unknown, expired or replayed nonce)."""

    code = "INVALID_STATE"


class AuthorizationFailed(AuthenticationError):
    """Raised when the authorization code cannot be exchanged for tokens."""

    code = "AUTHORIZATION_FAILED"


class NotConnected(AuthenticationError):
    """Raised when a counselor has no usable refresh token."""

    code = "NOT_CONNECTED"


class RefreshFailed(AuthenticationError):
    """Raised when the provider rejects a stored refresh token."""

    code = "REFRESH_FAILED"


# --- Calendar provider ------------------------------------------------------


class CalendarAPIError(CounselBookError):
    """Raised when calendar data cannot be fetched, created or deleted."""

    code = "CALENDAR_ERROR"


class CalendarUnavailable(CalendarAPIError):
    """Transient calendar provider failure; safe to retry the whole request."""

    code = "CALENDAR_UNAVAILABLE"
    retryable = True


# --- Booking ----------------------------------------------------------------


class BookingError(CounselBookError):
    """Base class for booking precondition and transaction failures."""

    code = "BOOKING_ERROR"


class SlotUnavailable(BookingError):
    """Raised when the requested slot is no longer free."""

    code = "SLOT_UNAVAILABLE"


class UnknownStudent(BookingError):
    """Raised when the student lookup reports the student does not exist."""

    code = "UNKNOWN_STUDENT"


class RemoteBookingFailed(BookingError):
    """Raised when the remote calendar event could not be created."""

    code = "REMOTE_BOOKING_FAILED"


class BookingPersistFailed(BookingError):
    """Raised when the session record could not be stored (remote event was rolled back)."""

    code = "BOOKING_PERSIST_FAILED"


class BookingInconsistent(BookingError):
    """
    Raised when the session record could not be stored AND the remote event
    could not be removed. Requires manual reconciliation.
    """

    code = "BOOKING_INCONSISTENT"

    def __init__(self, message: str, *, counselor_id: int, remote_event_id: str):
        super().__init__(message)
        self.counselor_id = counselor_id
        self.remote_event_id = remote_event_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["remote_event_id"] = self.remote_event_id
        return data


# --- Student lookup relay ---------------------------------------------------


class StudentLookupError(CounselBookError):
    """Base class for student lookup relay failures."""

    code = "LOOKUP_ERROR"


class UpstreamError(StudentLookupError):
    """The identity service answered with a non-success status."""

    code = "UPSTREAM_ERROR"

    def __init__(self, status: int, body: Any):
        super().__init__(f"Student lookup service returned HTTP {status}")
        self.status = status
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["upstream_status"] = self.status
        data["upstream_body"] = self.body
        return data


class LookupTimeout(StudentLookupError):
    """The identity service did not answer within the configured timeout."""

    code = "TIMEOUT"
    retryable = True


class Unreachable(StudentLookupError):
    """The identity service could not be reached at the network level."""

    code = "UNREACHABLE"
    retryable = True
