"""
Booking admission and status rules.

Admission decides whether a proposed range may be booked against a host's
existing bookings. The remaining helpers derive new ``Booking`` values for
status changes, reschedules and cancellations; inputs are never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from pendulum import DateTime

from .exceptions import InvalidTransitionError, SlotTakenError, ValidationError
from .models import Booking, BookingStatus, EventTemplate, TimeRange

DEFAULT_CANCELLATION_REASON = "No reason provided"

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


class RejectReason(str, Enum):
    SLOT_TAKEN = "SlotTaken"


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of ``admit``: accepted, or rejected with the conflicting bookings."""
    accepted: bool
    reason: Optional[RejectReason] = None
    conflicts: Tuple[str, ...] = field(default=())

    def __bool__(self) -> bool:
        return self.accepted

    @classmethod
    def accept(cls) -> "AdmissionResult":
        return cls(accepted=True)

    @classmethod
    def reject(cls, conflicts: Iterable[str]) -> "AdmissionResult":
        return cls(accepted=False, reason=RejectReason.SLOT_TAKEN, conflicts=tuple(sorted(conflicts)))


def initial_status(template: EventTemplate) -> BookingStatus:
    """Bookings for templates that need host approval start as pending."""
    if template.requires_confirmation:
        return BookingStatus.PENDING
    return BookingStatus.CONFIRMED


def admit(proposed: TimeRange, existing_bookings: Iterable[Booking]) -> AdmissionResult:
    """
    Decide whether ``proposed`` can be booked.

    Only pending and confirmed bookings block. Raw intervals are compared,
    buffers are a slot-generation concern and do not apply here.
    """
    conflicts = [
        booking.id
        for booking in existing_bookings
        if booking.status.is_active and proposed.overlaps(booking.interval)
    ]
    if conflicts:
        return AdmissionResult.reject(conflicts)
    return AdmissionResult.accept()


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS[current]


def change_status(
    booking: Booking,
    status: "BookingStatus | str",
    now: Optional[DateTime] = None,
) -> Booking:
    """Apply a status transition from the transition table."""
    target = BookingStatus.parse(status)
    if not can_transition(booking.status, target):
        raise InvalidTransitionError(
            f"Cannot change booking {booking.id} from {booking.status.value} to {target.value}"
        )
    return booking.with_changes(status=target, updated_at=now or booking.updated_at)


def cancel(
    booking: Booking,
    reason: Optional[str] = None,
    now: Optional[DateTime] = None,
) -> Booking:
    """
    Cancel a booking from any non-terminal state.
    """
    if booking.status.is_terminal:
        raise InvalidTransitionError(
            f"Booking {booking.id} is already {booking.status.value} and cannot be cancelled"
        )
    return booking.with_changes(
        status=BookingStatus.CANCELLED,
        cancellation_reason=reason or DEFAULT_CANCELLATION_REASON,
        updated_at=now or booking.updated_at,
    )


def reschedule(
    booking: Booking,
    new_interval: TimeRange,
    existing_bookings: Iterable[Booking],
    now: Optional[DateTime] = None,
) -> Booking:
    """
    Move a booking to ``new_interval``.

    The booking itself is excluded from the conflict check. Status is kept,
    ``reschedule_count`` is incremented.

    Raises:
        ValidationError: If the booking is no longer active
        SlotTakenError: If the new interval conflicts with another booking
    """
    if booking.status.is_terminal:
        raise ValidationError(
            f"Booking {booking.id} is {booking.status.value} and cannot be rescheduled"
        )

    others = [other for other in existing_bookings if other.id != booking.id]
    result = admit(new_interval, others)
    if not result:
        raise SlotTakenError(
            f"Requested time {new_interval} is already booked ({', '.join(result.conflicts)})"
        )

    return booking.with_changes(
        interval=new_interval,
        reschedule_count=booking.reschedule_count + 1,
        updated_at=now or booking.updated_at,
    )


def within_booking_window(start: DateTime, template: EventTemplate, now: DateTime) -> bool:
    """
    Check the template's notice rules for a booking starting at ``start``.

    The start must be at least ``min_notice_minutes`` after ``now`` and at
    most ``max_booking_days`` days ahead.
    """
    earliest = now.add(minutes=template.min_notice_minutes)
    latest = now.add(days=template.max_booking_days)
    return earliest <= start <= latest


def check_booking_window(interval: TimeRange, template: EventTemplate, now: DateTime) -> None:
    if not within_booking_window(interval.start, template, now):
        raise ValidationError(
            f"Bookings for this event must start between {template.min_notice_minutes} minutes "
            f"and {template.max_booking_days} days from now"
        )
