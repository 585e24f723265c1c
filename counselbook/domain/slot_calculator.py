"""
Core business logic for calculating bookable session slots.

Pure domain logic without any external dependencies (no API calls, no
storage, no I/O). All ranges are half-open ``[start, end)``.
"""

from typing import Iterable, List, Optional

from pendulum import DateTime

from .models import TimeRange, TimeSlot


class SlotCalculator:
    """
    Calculates fixed-duration bookable slots from a working window and busy times.

    Algorithm:
    1. Merge overlapping or adjacent busy ranges
    2. Subtract the merged busy ranges from the working window
    3. Cut every free gap into consecutive slots of exactly the requested duration
    4. Drop slots that start before the ``not_before`` cut-off
    """

    def find_available_slots(
        self,
        working_window: TimeRange | None,
        busy_ranges: Iterable[TimeRange],
        duration_minutes: int,
        not_before: Optional[DateTime] = None,
    ) -> List[TimeSlot]:
        """
        Find all bookable slots inside a working window.

        Args:
            working_window: The counselor's working hours for one day, or None
            busy_ranges: Busy ranges reported by the calendar (any order)
            duration_minutes: Exact length of every emitted slot
            not_before: Slots starting before this instant are discarded

        Returns:
            Chronologically ordered, non-overlapping slots
        """
        if duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be positive, got {duration_minutes}")

        if working_window is None:
            return []

        merged = self.merge_busy_ranges(busy_ranges)
        free_ranges = self.subtract_busy_from_window(working_window, merged)

        slots: List[TimeSlot] = []
        for free in free_ranges:
            slots.extend(self.split_into_slots(free, duration_minutes))

        if not_before is not None:
            slots = [slot for slot in slots if slot.start >= not_before]

        return slots

    def is_slot_free(
        self,
        working_window: TimeRange | None,
        busy_ranges: Iterable[TimeRange],
        slot: TimeSlot,
    ) -> bool:
        """Check that a slot lies inside the working window and touches no busy range."""
        if working_window is None or not working_window.contains(slot.time_range):
            return False
        return not any(busy.overlaps(slot.time_range) for busy in busy_ranges)

    def merge_busy_ranges(self, ranges: Iterable[TimeRange]) -> List[TimeRange]:
        """
        Merge overlapping or adjacent time ranges.

        Example: [09:00-10:00, 10:00-11:00] -> [09:00-11:00]
        """
        sorted_ranges = sorted(ranges, key=lambda r: r.start)
        if not sorted_ranges:
            return []

        merged: List[TimeRange] = [sorted_ranges[0]]

        for current in sorted_ranges[1:]:
            last = merged[-1]

            # Overlapping or adjacent (no gap)
            if current.start <= last.end:
                merged[-1] = TimeRange(
                    start=last.start,
                    end=max(last.end, current.end)
                )
            else:
                merged.append(current)

        return merged

    def subtract_busy_from_window(
        self,
        working_window: TimeRange,
        busy_ranges: List[TimeRange]
    ) -> List[TimeRange]:
        """
        Subtract busy times from a working window, yielding free time ranges.

        Example:
        Working: 09:00 - 17:00
        Busy: [10:00-11:00, 14:00-15:00]
        Result: [09:00-10:00, 11:00-14:00, 15:00-17:00]
        """
        free_ranges: List[TimeRange] = []
        current_start = working_window.start

        for busy in sorted(busy_ranges, key=lambda r: r.start):
            if not working_window.overlaps(busy):
                continue

            clipped_busy_start = max(busy.start, working_window.start)
            clipped_busy_end = min(busy.end, working_window.end)

            if current_start < clipped_busy_start:
                free_ranges.append(
                    TimeRange(start=current_start, end=clipped_busy_start)
                )

            current_start = max(current_start, clipped_busy_end)

        if current_start < working_window.end:
            free_ranges.append(
                TimeRange(start=current_start, end=working_window.end)
            )

        return free_ranges

    def split_into_slots(self, free_range: TimeRange, duration_minutes: int) -> List[TimeSlot]:
        """
        Cut a free range into consecutive slots, discarding a short remainder.

        Example (30 min): 13:00-14:10 -> [13:00-13:30, 13:30-14:00]
        """
        slots: List[TimeSlot] = []
        cursor = free_range.start

        while True:
            slot_end = cursor.add(minutes=duration_minutes)
            if slot_end > free_range.end:
                break
            slots.append(TimeSlot.between(cursor, slot_end))
            cursor = slot_end

        return slots
