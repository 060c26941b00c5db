"""
Core business logic for calculating bookable time slots.

This is the heart of the application - pure domain logic without any
external dependencies (no database, no notifications, no I/O).
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from pendulum import DateTime

from .availability import DateLike, window_range, working_window_for
from .booking_rules import within_booking_window
from .exceptions import ValidationError
from .models import Booking, EventTemplate, Slot, TimeRange, WeeklyAvailability

DEFAULT_STEP_MINUTES = 15


class SlotCalculator:
    """
    Calculates bookable slots for one day of a host's availability.

    Algorithm:
    1. Resolve the working window for the day (exceptions first)
    2. Expand every active booking by the template buffers
    3. Probe candidate starts from the window start in fixed steps
    4. Keep candidates that fit the window and hit no expanded booking
    """

    def __init__(self, step_minutes: int = DEFAULT_STEP_MINUTES):
        if step_minutes <= 0:
            raise ValidationError(f"Step must be positive, got {step_minutes}")
        self.step_minutes = step_minutes

    def generate_slots(
        self,
        date: DateLike,
        template: EventTemplate,
        availability: WeeklyAvailability,
        existing_bookings: Iterable[Booking],
        timezone: str,
    ) -> Tuple[Slot, ...]:
        """
        Enumerate the bookable slots for ``date``.

        Args:
            date: Calendar day to project (YYYY-MM-DD, date or date-time)
            template: Event template providing duration and buffers
            availability: Host's weekly availability
            existing_bookings: Host's bookings for that day
            timezone: IANA timezone the working hours are expressed in

        Returns:
            Slots ordered by start time. Empty for non-working days.
        """
        day_schedule = working_window_for(availability, date, timezone)
        if day_schedule is None:
            return ()

        window = window_range(day_schedule, date, timezone)
        blocked = self._blocked_ranges(existing_bookings, template)

        slots: List[Slot] = []
        for candidate in self._candidates(window, template.duration):
            if any(candidate.overlaps(busy) for busy in blocked):
                continue
            slots.append(
                Slot(
                    time_range=candidate,
                    host_id=template.host_id,
                    event_template_id=template.id,
                )
            )

        return tuple(slots)

    def _candidates(self, window: TimeRange, duration_minutes: int) -> Iterable[TimeRange]:
        """
        Yield fixed-length candidates starting every ``step_minutes``.

        Stops at the first candidate that would end past the window; no
        partial slots at the boundary.
        """
        slot_start: DateTime = window.start
        while slot_start < window.end:
            slot_end = slot_start.add(minutes=duration_minutes)
            if slot_end > window.end:
                break
            yield TimeRange(start=slot_start, end=slot_end)
            slot_start = slot_start.add(minutes=self.step_minutes)

    @staticmethod
    def _blocked_ranges(
        existing_bookings: Iterable[Booking],
        template: EventTemplate,
    ) -> List[TimeRange]:
        """
        Expand active bookings by the buffers; the candidate itself is not expanded.
        """
        return [
            booking.interval.expand(template.buffer_before, template.buffer_after)
            for booking in existing_bookings
            if booking.status.is_active
        ]


def apply_booking_window(
    slots: Sequence[Slot],
    template: EventTemplate,
    now: DateTime,
) -> List[Slot]:
    """Drop slots that violate the template's notice rules."""
    return [slot for slot in slots if within_booking_window(slot.time_range.start, template, now)]
