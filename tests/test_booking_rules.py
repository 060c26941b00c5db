"""
Tests for booking admission and status rules.
"""

import itertools

import pendulum
import pytest

from slotbooker.domain import booking_rules
from slotbooker.domain.booking_rules import RejectReason, admit
from slotbooker.domain.exceptions import InvalidTransitionError, SlotTakenError, ValidationError
from slotbooker.domain.models import Booking, BookingStatus, EventTemplate, TimeRange

TZ = "Europe/Berlin"


def _range(start: str, end: str) -> TimeRange:
    return TimeRange(
        start=pendulum.parse(f"2024-11-25 {start}", tz=TZ),
        end=pendulum.parse(f"2024-11-25 {end}", tz=TZ),
    )


def _booking(booking_id: str, start: str, end: str, status: BookingStatus = BookingStatus.CONFIRMED) -> Booking:
    return Booking(
        id=booking_id,
        event_template_id="tpl",
        host_id="host-1",
        interval=_range(start, end),
        invitee_email="guest@example.com",
        status=status,
    )


class TestAdmit:
    """Tests for admit."""

    def test_exact_overlap_is_rejected(self):
        result = admit(_range("14:00", "14:30"), [_booking("b1", "14:00", "14:30")])

        assert not result
        assert result.reason is RejectReason.SLOT_TAKEN
        assert result.conflicts == ("b1",)

    def test_touching_boundary_is_accepted(self):
        result = admit(_range("14:30", "15:00"), [_booking("b1", "14:00", "14:30")])

        assert result
        assert result.reason is None

    def test_only_active_bookings_block(self):
        existing = [
            _booking("b1", "14:00", "15:00", BookingStatus.CANCELLED),
            _booking("b2", "14:00", "15:00", BookingStatus.COMPLETED),
            _booking("b3", "14:00", "15:00", BookingStatus.NO_SHOW),
        ]

        assert admit(_range("14:00", "15:00"), existing)
        assert not admit(_range("14:00", "15:00"), existing + [_booking("b4", "14:45", "15:15", BookingStatus.PENDING)])

    def test_buffers_are_not_applied(self):
        """Admission compares raw intervals even if the template has buffers."""
        assert admit(_range("10:30", "11:00"), [_booking("b1", "10:00", "10:30")])

    def test_result_independent_of_order(self):
        existing = [
            _booking("b1", "09:00", "09:30"),
            _booking("b2", "10:00", "11:00"),
            _booking("b3", "10:30", "12:00", BookingStatus.PENDING),
            _booking("b4", "10:15", "10:45", BookingStatus.CANCELLED),
        ]
        proposed = _range("10:15", "10:45")

        results = {admit(proposed, list(order)) for order in itertools.permutations(existing)}

        assert len(results) == 1
        assert results.pop().conflicts == ("b2", "b3")

    def test_empty_existing_accepts(self):
        assert admit(_range("09:00", "10:00"), [])


class TestStatusRules:
    """Tests for the status transition table."""

    def test_initial_status_depends_on_confirmation(self):
        assert booking_rules.initial_status(EventTemplate(id="t", host_id="h", duration=30)) is BookingStatus.CONFIRMED
        assert booking_rules.initial_status(
            EventTemplate(id="t", host_id="h", duration=30, requires_confirmation=True)
        ) is BookingStatus.PENDING

    @pytest.mark.parametrize("current, target", [
        (BookingStatus.PENDING, BookingStatus.CONFIRMED),
        (BookingStatus.PENDING, BookingStatus.CANCELLED),
        (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
        (BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
        (BookingStatus.CONFIRMED, BookingStatus.NO_SHOW),
    ])
    def test_allowed_transitions(self, current, target):
        updated = booking_rules.change_status(_booking("b1", "10:00", "10:30", current), target.value)

        assert updated.status is target

    @pytest.mark.parametrize("current, target", [
        (BookingStatus.PENDING, BookingStatus.COMPLETED),
        (BookingStatus.PENDING, BookingStatus.NO_SHOW),
        (BookingStatus.CONFIRMED, BookingStatus.PENDING),
        (BookingStatus.CANCELLED, BookingStatus.CONFIRMED),
        (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
        (BookingStatus.NO_SHOW, BookingStatus.CONFIRMED),
    ])
    def test_forbidden_transitions(self, current, target):
        with pytest.raises(InvalidTransitionError):
            booking_rules.change_status(_booking("b1", "10:00", "10:30", current), target)

    def test_change_status_does_not_mutate_input(self):
        booking = _booking("b1", "10:00", "10:30", BookingStatus.PENDING)

        booking_rules.change_status(booking, BookingStatus.CONFIRMED)

        assert booking.status is BookingStatus.PENDING


class TestCancel:
    """Tests for cancel."""

    @pytest.mark.parametrize("status", [BookingStatus.PENDING, BookingStatus.CONFIRMED])
    def test_cancel_from_active_states(self, status):
        cancelled = booking_rules.cancel(_booking("b1", "10:00", "10:30", status), "Sick")

        assert cancelled.status is BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "Sick"

    def test_default_reason(self):
        cancelled = booking_rules.cancel(_booking("b1", "10:00", "10:30"))

        assert cancelled.cancellation_reason == booking_rules.DEFAULT_CANCELLATION_REASON

    def test_cannot_cancel_terminal_booking(self):
        with pytest.raises(InvalidTransitionError, match="already completed"):
            booking_rules.cancel(_booking("b1", "10:00", "10:30", BookingStatus.COMPLETED))


class TestReschedule:
    """Tests for reschedule."""

    def test_reschedule_moves_and_counts(self):
        booking = _booking("b1", "10:00", "10:30", BookingStatus.PENDING)
        now = pendulum.parse("2024-11-20 12:00", tz="UTC")

        moved = booking_rules.reschedule(booking, _range("11:00", "11:30"), [booking], now=now)

        assert moved.interval == _range("11:00", "11:30")
        assert moved.reschedule_count == 1
        assert moved.status is BookingStatus.PENDING
        assert moved.updated_at == now
        assert booking.interval == _range("10:00", "10:30")

    def test_reschedule_ignores_own_interval(self):
        """Shifting by 15 minutes overlaps only the booking itself."""
        booking = _booking("b1", "10:00", "10:30")

        moved = booking_rules.reschedule(booking, _range("10:15", "10:45"), [booking])

        assert moved.interval == _range("10:15", "10:45")

    def test_reschedule_into_taken_slot(self):
        booking = _booking("b1", "10:00", "10:30")
        other = _booking("b2", "11:00", "11:30")

        with pytest.raises(SlotTakenError, match="b2"):
            booking_rules.reschedule(booking, _range("11:15", "11:45"), [booking, other])

    def test_cannot_reschedule_cancelled_booking(self):
        booking = _booking("b1", "10:00", "10:30", BookingStatus.CANCELLED)

        with pytest.raises(ValidationError, match="cannot be rescheduled"):
            booking_rules.reschedule(booking, _range("11:00", "11:30"), [])


class TestBookingWindow:
    """Tests for notice checks."""

    def test_check_booking_window(self):
        template = EventTemplate(id="t", host_id="h", duration=30, min_notice_minutes=60, max_booking_days=2)
        now = pendulum.parse("2024-11-25 08:00", tz=TZ)

        booking_rules.check_booking_window(_range("09:00", "09:30"), template, now)
        with pytest.raises(ValidationError, match="must start between"):
            booking_rules.check_booking_window(_range("08:30", "09:00"), template, now)
