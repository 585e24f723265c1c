"""
Availability service: bookable slots for one counselor on one day.

The service fetches busy times through a calendar client protocol and hands
the arithmetic to the domain-level ``SlotCalculator``.
"""

from __future__ import annotations

import logging
from datetime import date as Date
from typing import Callable, List, Optional, Protocol

import pendulum
from pendulum import DateTime

from ..config import SchedulingDefaults
from ..domain.exceptions import BadRequest
from ..domain.models import Counselor, Credential, TimeRange, TimeSlot, WorkingHours
from ..domain.slot_calculator import SlotCalculator
from .credential_store import CredentialStore

logger = logging.getLogger(__name__)


class BusyTimeClientProtocol(Protocol):
    """Calendar client behaviour needed for availability."""

    async def get_busy_times(
        self,
        access_token: str,
        calendar_id: str,
        start_time: DateTime,
        end_time: DateTime,
        timezone: str,
    ) -> List[TimeRange]:
        """Return busy ranges of one calendar."""


class CredentialProviderProtocol(Protocol):
    async def get_valid_credential(self, counselor_id: int) -> Credential:
        ...


class AvailabilityService:
    """
    Orchestrates credential lookup, busy-time retrieval and slot calculation.
    """

    def __init__(
        self,
        store: CredentialStore,
        credentials: CredentialProviderProtocol,
        calendar_client: BusyTimeClientProtocol,
        slot_calculator: SlotCalculator,
        defaults: Optional[SchedulingDefaults] = None,
        clock: Callable[[], DateTime] = lambda: pendulum.now("UTC"),
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._calendar_client = calendar_client
        self._slot_calculator = slot_calculator
        self._defaults = defaults or SchedulingDefaults()
        self._clock = clock

    async def compute_slots(
        self,
        counselor_id: int,
        day: Date,
        duration_minutes: Optional[int] = None,
    ) -> List[TimeSlot]:
        """
        Compute the counselor's free slots for ``day``.

        Raises:
            BadRequest: If the duration is not positive
            NotFound: If the counselor does not exist
            NotConnected / RefreshFailed: If no credential can be obtained
            CalendarUnavailable: If busy times cannot be fetched
        """
        duration = self._defaults.duration_minutes if duration_minutes is None else duration_minutes
        if duration <= 0:
            raise BadRequest(f"Duration must be a positive number of minutes, got {duration}")

        counselor = self._store.read(counselor_id)
        window = self.working_window(counselor, day)
        if window is None:
            logger.info("Counselor %s has no usable working window on %s", counselor_id, day)
            return []

        busy = await self.fetch_busy(counselor, window)

        slots = self._slot_calculator.find_available_slots(
            working_window=window,
            busy_ranges=busy,
            duration_minutes=duration,
            not_before=self.earliest_start(),
        )
        logger.debug(
            "Counselor %s on %s: %d busy range(s), %d free slot(s)",
            counselor_id, day, len(busy), len(slots),
        )
        return slots

    def working_window(self, counselor: Counselor, day: Date) -> TimeRange | None:
        """Working hours of ``day`` in the counselor's timezone, or None if unusable."""
        hours = WorkingHours.from_strings(
            counselor.work_start_time or self._defaults.work_start_time,
            counselor.work_end_time or self._defaults.work_end_time,
            self.timezone_for(counselor),
        )
        return hours.get_working_hours_for_day(day)

    async def fetch_busy(self, counselor: Counselor, window: TimeRange) -> List[TimeRange]:
        credential = await self._credentials.get_valid_credential(counselor.counselor_id)
        return await self._calendar_client.get_busy_times(
            access_token=credential.access_token,
            calendar_id=counselor.effective_calendar_id,
            start_time=window.start,
            end_time=window.end,
            timezone=self.timezone_for(counselor),
        )

    def earliest_start(self) -> DateTime:
        return self._clock().add(minutes=self._defaults.lead_time_minutes)

    def timezone_for(self, counselor: Counselor) -> str:
        return counselor.timezone or self._defaults.timezone
