"""
Domain layer - Pure business logic without external dependencies.
"""

from .availability import working_window_for
from .booking_rules import AdmissionResult, admit, cancel, change_status, initial_status, reschedule
from .models import (
    Booking,
    BookingStatus,
    DaySchedule,
    EventTemplate,
    Slot,
    TimeRange,
    WeeklyAvailability,
    default_availability,
)
from .slot_calculator import SlotCalculator, apply_booking_window

__all__ = [
    "AdmissionResult",
    "Booking",
    "BookingStatus",
    "DaySchedule",
    "EventTemplate",
    "Slot",
    "SlotCalculator",
    "TimeRange",
    "WeeklyAvailability",
    "admit",
    "apply_booking_window",
    "cancel",
    "change_status",
    "default_availability",
    "initial_status",
    "reschedule",
    "working_window_for",
]
