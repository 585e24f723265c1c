"""
Booking orchestration: validate, create the calendar event, persist, compensate.

A session record exists only once its calendar event exists. When the record
cannot be stored the event is deleted again; when that fails too the booking
is reported as inconsistent on the ``counselbook.reconciliation`` logger so
an operator can clean up by hand.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, Union

import pendulum
from pendulum import DateTime

from ..domain.exceptions import (
    BadRequest,
    BookingInconsistent,
    BookingPersistFailed,
    CalendarAPIError,
    NotFound,
    PersistenceError,
    RemoteBookingFailed,
    SlotUnavailable,
    UnknownStudent,
    UpstreamError,
)
from ..domain.models import (
    Counselor,
    EventDraft,
    SessionRecord,
    SessionStatus,
    StudentIdentity,
    TimeSlot,
)
from ..domain.slot_calculator import SlotCalculator
from .availability import AvailabilityService, CredentialProviderProtocol
from .credential_store import CredentialStore

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("counselbook.reconciliation")


class EventClientProtocol(Protocol):
    async def create_event(self, access_token: str, calendar_id: str, draft: EventDraft) -> str:
        ...

    async def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        ...


class StudentLookupProtocol(Protocol):
    async def lookup(self, student_code: str) -> StudentIdentity:
        ...


class SessionRepository(Protocol):
    def create(self, record: SessionRecord) -> SessionRecord:
        ...

    def get(self, session_id: int) -> Optional[SessionRecord]:
        ...

    def list_for_counselor(self, counselor_id: int) -> List[SessionRecord]:
        ...

    def update_status(self, session_id: int, status: SessionStatus) -> Optional[SessionRecord]:
        ...


class BookingOrchestrator:
    """
    Books counselling sessions against the counselor's calendar.
    """

    def __init__(
        self,
        store: CredentialStore,
        credentials: CredentialProviderProtocol,
        availability: AvailabilityService,
        calendar_client: EventClientProtocol,
        student_lookup: StudentLookupProtocol,
        sessions: SessionRepository,
        slot_calculator: Optional[SlotCalculator] = None,
        clock: Callable[[], DateTime] = lambda: pendulum.now("UTC"),
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._availability = availability
        self._calendar_client = calendar_client
        self._student_lookup = student_lookup
        self._sessions = sessions
        self._slot_calculator = slot_calculator or SlotCalculator()
        self._clock = clock

    async def book(
        self,
        counselor_id: int,
        student_id: str,
        slot: TimeSlot,
        notes: str = "",
    ) -> SessionRecord:
        """
        Book ``slot`` for a student with a counselor.

        Raises:
            UnknownStudent: If the identity service does not know the student
            SlotUnavailable: If the slot is in the past, outside working hours or busy
            RemoteBookingFailed: If the calendar event could not be created
            BookingPersistFailed: If the record could not be stored (event was removed)
            BookingInconsistent: If the record could not be stored and the event remains
        """
        student = await self._validate_student(student_id)
        counselor = self._store.read(counselor_id)

        await self._ensure_slot_free(counselor, slot)

        # Create/persist/compensate must run to completion even if the caller
        # is cancelled, otherwise a calendar event could be left without a record.
        commit = asyncio.ensure_future(
            self._commit(counselor, student_id.strip(), student, slot, notes)
        )
        try:
            return await asyncio.shield(commit)
        except asyncio.CancelledError:
            commit.add_done_callback(self._log_detached_commit)
            raise

    async def cancel(self, session_id: int) -> SessionRecord:
        """Remove the calendar event and mark the session canceled."""
        record = self._get_session(session_id)
        if record.status is SessionStatus.CANCELED:
            return record

        counselor = self._store.read(record.counselor_id)
        credential = await self._credentials.get_valid_credential(counselor.counselor_id)
        await self._calendar_client.delete_event(
            credential.access_token, counselor.effective_calendar_id, record.remote_event_id
        )

        updated = self._sessions.update_status(session_id, SessionStatus.CANCELED)
        logger.info("Canceled session %s (event %s)", session_id, record.remote_event_id)
        return updated or record

    def list_sessions(self, counselor_id: int) -> List[SessionRecord]:
        """Sessions of a counselor, newest first."""
        self._store.read(counselor_id)
        return self._sessions.list_for_counselor(counselor_id)

    async def update_status(
        self, session_id: int, status: Union[str, SessionStatus]
    ) -> SessionRecord:
        """
        Set a session status; loose spellings such as "cancelled" are accepted.

        Canceling goes through ``cancel`` so the calendar event is removed too.
        """
        try:
            normalized = (
                status if isinstance(status, SessionStatus) else SessionStatus.normalize(status)
            )
        except ValueError as exc:
            raise BadRequest(str(exc)) from exc

        if normalized is SessionStatus.CANCELED:
            return await self.cancel(session_id)

        self._get_session(session_id)
        updated = self._sessions.update_status(session_id, normalized)
        if updated is None:
            raise NotFound(f"Session {session_id} not found")
        return updated

    async def _validate_student(self, student_id: str) -> StudentIdentity:
        try:
            student = await self._student_lookup.lookup(student_id)
        except UpstreamError as exc:
            if exc.status == 404:
                raise UnknownStudent(f"Student {student_id} is not known") from exc
            raise

        if not student.raw:
            raise UnknownStudent(f"Student {student_id} is not known")
        return student

    async def _ensure_slot_free(self, counselor: Counselor, slot: TimeSlot) -> None:
        if slot.start <= self._clock():
            raise SlotUnavailable("The requested slot has already started")

        timezone = self._availability.timezone_for(counselor)
        day = slot.start.in_timezone(timezone).date()
        window = self._availability.working_window(counselor, day)
        if window is None or not window.contains(slot.time_range):
            raise SlotUnavailable("The requested slot is outside the counselor's working hours")

        busy = await self._availability.fetch_busy(counselor, window)
        if not self._slot_calculator.is_slot_free(window, busy, slot):
            raise SlotUnavailable("The requested slot is no longer available")

    async def _commit(
        self,
        counselor: Counselor,
        student_id: str,
        student: StudentIdentity,
        slot: TimeSlot,
        notes: str,
    ) -> SessionRecord:
        credential = await self._credentials.get_valid_credential(counselor.counselor_id)
        calendar_id = counselor.effective_calendar_id
        draft = self._event_draft(counselor, student_id, student, slot, notes)

        try:
            event_id = await self._calendar_client.create_event(
                credential.access_token, calendar_id, draft
            )
        except CalendarAPIError as exc:
            logger.error("Calendar event creation failed for counselor %s: %s",
                         counselor.counselor_id, exc)
            raise RemoteBookingFailed("Could not create the calendar event") from exc

        if not event_id:
            # The provider accepted the request, so an event may exist that cannot be addressed.
            reconciliation_logger.critical(
                "Calendar event creation for counselor %s at %s returned no event id",
                counselor.counselor_id, slot.start.to_iso8601_string(),
            )
            raise RemoteBookingFailed("Could not create the calendar event")

        record = SessionRecord(
            student_id=student_id,
            counselor_id=counselor.counselor_id,
            session_datetime=slot.start,
            session_end=slot.end,
            remote_event_id=event_id,
            notes=notes,
            status=SessionStatus.CONFIRMED,
        )

        try:
            stored = self._sessions.create(record)
        except PersistenceError as exc:
            logger.error("Storing session for event %s failed, removing the event", event_id)
            await self._compensate(credential.access_token, counselor, event_id)
            raise BookingPersistFailed("Could not store the session; the booking was rolled back") from exc

        logger.info(
            "Booked session %s for student %s with counselor %s at %s",
            stored.session_id, stored.student_id, counselor.counselor_id,
            slot.start.to_iso8601_string(),
        )
        return stored

    async def _compensate(self, access_token: str, counselor: Counselor, event_id: str) -> None:
        try:
            await self._calendar_client.delete_event(
                access_token, counselor.effective_calendar_id, event_id
            )
        except CalendarAPIError as exc:
            reconciliation_logger.critical(
                "Calendar event %s for counselor %s has no session record and could not be deleted",
                event_id, counselor.counselor_id,
            )
            raise BookingInconsistent(
                "Session could not be stored and the calendar event could not be removed",
                counselor_id=counselor.counselor_id,
                remote_event_id=event_id,
            ) from exc

    @staticmethod
    def _log_detached_commit(task: asyncio.Future) -> None:
        """Report the outcome of a commit whose caller was cancelled."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            record = task.result()
            logger.info(
                "Session %s was stored after the caller went away", record.session_id
            )
        else:
            logger.error("Booking finished after the caller went away: %s", exc)

    def _get_session(self, session_id: int) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise NotFound(f"Session {session_id} not found")
        return record

    def _event_draft(
        self,
        counselor: Counselor,
        student_id: str,
        student: StudentIdentity,
        slot: TimeSlot,
        notes: str,
    ) -> EventDraft:
        attendees = [counselor.email]
        if student.email and student.email != counselor.email:
            attendees.append(student.email)

        return EventDraft(
            summary=f"Counselling session with {student.display_name()}",
            description=notes or "",
            time_range=slot.time_range,
            timezone=self._availability.timezone_for(counselor),
            attendees=attendees,
            private_properties={
                "counselor_id": str(counselor.counselor_id),
                "student_id": student_id,
            },
        )
