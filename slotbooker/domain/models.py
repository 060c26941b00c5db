"""
Domain models for time ranges, availability, event templates and bookings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import pendulum
from pendulum import DateTime

from .exceptions import ValidationError


WEEKDAYS: Tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

ALLOWED_DURATIONS: Tuple[int, ...] = (15, 30, 45, 60, 90, 120)

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable, half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValidationError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another. Touching ranges do not overlap."""
        return self.start < other.end and other.start < self.end

    def contains(self, instant: DateTime) -> bool:
        return self.start <= instant < self.end

    def expand(self, before: int = 0, after: int = 0) -> "TimeRange":
        """
        Widen the range by ``before`` minutes at the start and ``after`` at the end.

        Used to materialize buffer zones around existing bookings.
        """
        if before < 0 or after < 0:
            raise ValidationError(f"Buffers must not be negative, got ({before}, {after})")
        return TimeRange(
            start=self.start.subtract(minutes=before),
            end=self.end.add(minutes=after),
        )

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        return TimeRange(start=max(self.start, other.start), end=min(self.end, other.end))

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.to_iso8601_string(), "end": self.end.to_iso8601_string()}

    @classmethod
    def parse(cls, start: str, end: str, tz: str = "UTC") -> "TimeRange":
        """
        Build a range from two ISO-8601 strings.

        Strings without an offset are interpreted in ``tz``.
        """
        try:
            start_dt = pendulum.parse(start, tz=tz, exact=True)
            end_dt = pendulum.parse(end, tz=tz, exact=True)
        except (ValueError, TypeError) as exc:
            raise ValidationError(f"Invalid ISO-8601 instant: {exc}") from exc
        if not isinstance(start_dt, DateTime) or not isinstance(end_dt, DateTime):
            raise ValidationError("Booking boundaries must be full date-times")
        return cls(start=start_dt, end=end_dt)

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    return a.overlaps(b)


def expand(interval: TimeRange, before: int, after: int) -> TimeRange:
    return interval.expand(before, after)


def parse_hhmm(value: str) -> Tuple[int, int]:
    """Parse a 24-hour ``HH:MM`` string into (hour, minute)."""
    match = _HHMM.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time format '{value}'. Use HH:MM (24 hours)")
    return int(match.group(1)), int(match.group(2))


def _validate_hours(start: Optional[str], end: Optional[str]) -> None:
    start_hm = parse_hhmm(start)
    end_hm = parse_hhmm(end)
    if start_hm >= end_hm:
        raise ValidationError(f"Start time {start} must be before end time {end}")


@dataclass(frozen=True)
class DaySchedule:
    """
    Working hours for one weekday.

    Non-working days may carry hours (they are kept for the UI) but they are
    not validated. A working day without explicit hours is allowed here and
    treated as non-working by the availability model.
    """
    is_working: bool
    start: Optional[str] = None
    end: Optional[str] = None

    def __post_init__(self):
        if self.is_working and self.has_hours():
            _validate_hours(self.start, self.end)

    def has_hours(self) -> bool:
        return bool(self.start) and bool(self.end)

    def to_document(self) -> Dict[str, Any]:
        return {"isWorking": self.is_working, "start": self.start, "end": self.end}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "DaySchedule":
        return cls(
            is_working=bool(doc.get("isWorking", False)),
            start=doc.get("start"),
            end=doc.get("end"),
        )


@dataclass(frozen=True)
class DateException:
    """A date-specific override of the weekly schedule (holiday, extra day, ...)."""
    date: str
    is_working: bool
    start: Optional[str] = None
    end: Optional[str] = None

    def __post_init__(self):
        try:
            pendulum.from_format(self.date, "YYYY-MM-DD")
        except ValueError as exc:
            raise ValidationError(f"Invalid exception date '{self.date}'. Use YYYY-MM-DD") from exc
        if self.is_working and (self.start or self.end):
            _validate_hours(self.start, self.end)

    def as_day_schedule(self) -> DaySchedule:
        return DaySchedule(is_working=self.is_working, start=self.start, end=self.end)

    def to_document(self) -> Dict[str, Any]:
        return {"date": self.date, "isWorking": self.is_working, "start": self.start, "end": self.end}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "DateException":
        return cls(
            date=str(doc.get("date", "")),
            is_working=bool(doc.get("isWorking", False)),
            start=doc.get("start"),
            end=doc.get("end"),
        )


DEFAULT_SCHEDULE: Dict[str, DaySchedule] = {
    "monday": DaySchedule(is_working=True, start="09:00", end="17:00"),
    "tuesday": DaySchedule(is_working=True, start="09:00", end="17:00"),
    "wednesday": DaySchedule(is_working=True, start="09:00", end="17:00"),
    "thursday": DaySchedule(is_working=True, start="09:00", end="17:00"),
    "friday": DaySchedule(is_working=True, start="09:00", end="17:00"),
    "saturday": DaySchedule(is_working=False, start="09:00", end="13:00"),
    "sunday": DaySchedule(is_working=False, start="09:00", end="13:00"),
}


@dataclass(frozen=True)
class WeeklyAvailability:
    """
    Per-weekday working windows plus date-level exceptions for one host.
    """
    host_id: str
    schedule: Mapping[str, DaySchedule]
    exceptions: Tuple[DateException, ...] = ()

    def __post_init__(self):
        unknown = [day for day in self.schedule if day not in WEEKDAYS]
        if unknown:
            raise ValidationError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        missing = [day for day in WEEKDAYS if day not in self.schedule]
        if missing:
            raise ValidationError(f"Schedule must cover all weekdays, missing: {', '.join(missing)}")

    def exception_for(self, date_str: str) -> DateException | None:
        """Return the first exception registered for ``date_str`` (YYYY-MM-DD)."""
        for exception in self.exceptions:
            if exception.date == date_str:
                return exception
        return None

    def to_document(self) -> Dict[str, Any]:
        return {
            "userId": self.host_id,
            "schedule": {day: self.schedule[day].to_document() for day in WEEKDAYS},
            "exceptions": [exception.to_document() for exception in self.exceptions],
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "WeeklyAvailability":
        """
        Build availability from a stored document.

        Stored entries are taken as they are. A weekday missing from the
        document is non-working and an entry without hours stays without
        hours, so lookups fail closed.
        """
        raw_schedule = doc.get("schedule") or {}
        unknown = [day for day in raw_schedule if day not in WEEKDAYS]
        if unknown:
            raise ValidationError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")

        schedule = {
            day: DaySchedule.from_document(raw_schedule.get(day) or {})
            for day in WEEKDAYS
        }
        exceptions = tuple(
            DateException.from_document(item) for item in doc.get("exceptions") or []
        )
        return cls(host_id=str(doc.get("userId", "")), schedule=schedule, exceptions=exceptions)


def default_availability(host_id: str = "") -> WeeklyAvailability:
    """Monday to Friday 09:00-17:00; weekends off."""
    return WeeklyAvailability(host_id=host_id, schedule=dict(DEFAULT_SCHEDULE))


def create_availability(
    host_id: str,
    schedule: Optional[Mapping[str, Mapping[str, Any]]] = None,
    exceptions: Iterable[Mapping[str, Any]] = (),
) -> WeeklyAvailability:
    """
    Build a new host's availability from partial input.

    Each given day entry is merged over the default schedule and weekdays
    that are not given keep their defaults.
    """
    schedule = schedule or {}
    unknown = [day for day in schedule if day not in WEEKDAYS]
    if unknown:
        raise ValidationError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")

    merged: Dict[str, DaySchedule] = {}
    for day in WEEKDAYS:
        entry = DEFAULT_SCHEDULE[day].to_document()
        entry.update(schedule.get(day) or {})
        merged[day] = DaySchedule.from_document(entry)

    return WeeklyAvailability(
        host_id=host_id,
        schedule=merged,
        exceptions=tuple(DateException.from_document(item) for item in exceptions),
    )


def slugify(title: str) -> str:
    slug = re.sub(r"\s+", "-", title.strip().lower())
    return re.sub(r"[^\w-]+", "", slug)


@dataclass(frozen=True)
class EventTemplate:
    """
    A bookable event type owned by a host.

    Durations are restricted to ``ALLOWED_DURATIONS``; buffers are minutes of
    host-side padding kept free around existing bookings.
    """
    id: str
    host_id: str
    duration: int
    title: str = ""
    slug: str = ""
    buffer_before: int = 0
    buffer_after: int = 0
    min_notice_minutes: int = 60
    max_booking_days: int = 60
    requires_confirmation: bool = False
    is_active: bool = True
    timezone: str = "UTC"

    def __post_init__(self):
        if self.duration not in ALLOWED_DURATIONS:
            allowed = ", ".join(str(d) for d in ALLOWED_DURATIONS)
            raise ValidationError(f"Duration must be one of: {allowed} minutes, got {self.duration}")
        if self.buffer_before < 0 or self.buffer_after < 0:
            raise ValidationError("Buffers must not be negative")
        if self.min_notice_minutes < 0:
            raise ValidationError("min_notice_minutes must be a positive number")
        if not 1 <= self.max_booking_days <= 365:
            raise ValidationError("max_booking_days must be between 1 and 365")
        if len(self.title) > 100:
            raise ValidationError("Title must not exceed 100 characters")
        if not self.slug and self.title:
            object.__setattr__(self, "slug", slugify(self.title))

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.host_id,
            "title": self.title,
            "slug": self.slug,
            "duration": self.duration,
            "bufferBefore": self.buffer_before,
            "bufferAfter": self.buffer_after,
            "minNotice": self.min_notice_minutes,
            "maxBookingDays": self.max_booking_days,
            "requiresConfirmation": self.requires_confirmation,
            "isActive": self.is_active,
            "timezone": self.timezone,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "EventTemplate":
        try:
            return cls(
                id=str(doc["id"]),
                host_id=str(doc["userId"]),
                duration=int(doc["duration"]),
                title=doc.get("title") or "",
                slug=doc.get("slug") or "",
                buffer_before=int(doc.get("bufferBefore") or 0),
                buffer_after=int(doc.get("bufferAfter") or 0),
                min_notice_minutes=int(doc.get("minNotice", 60)),
                max_booking_days=int(doc.get("maxBookingDays", 60)),
                requires_confirmation=bool(doc.get("requiresConfirmation", False)),
                is_active=bool(doc.get("isActive", True)),
                timezone=doc.get("timezone") or "UTC",
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid event template document: {exc}") from exc


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no-show"

    @property
    def is_active(self) -> bool:
        """Active bookings block their interval."""
        return self in (BookingStatus.PENDING, BookingStatus.CONFIRMED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    @classmethod
    def parse(cls, value: "str | BookingStatus") -> "BookingStatus":
        try:
            return cls(value)
        except ValueError as exc:
            allowed = ", ".join(status.value for status in cls)
            raise ValidationError(f"Invalid status '{value}'. Must be one of: {allowed}") from exc


@dataclass(frozen=True)
class Booking:
    """
    A reservation of a time range for an event template.

    Bookings are never deleted; cancellation is a status transition.
    """
    id: str
    event_template_id: str
    host_id: str
    interval: TimeRange
    invitee_email: str
    status: BookingStatus
    invitee_name: str = ""
    uid: str = ""
    reschedule_count: int = 0
    cancellation_reason: Optional[str] = None
    timezone: str = "UTC"
    notes: str = ""
    location: str = "Online"
    created_at: Optional[DateTime] = None
    updated_at: Optional[DateTime] = None

    def with_changes(self, **changes: Any) -> "Booking":
        return replace(self, **changes)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "uid": self.uid,
            "eventTypeId": self.event_template_id,
            "userId": self.host_id,
            "startTime": self.interval.start.to_iso8601_string(),
            "endTime": self.interval.end.to_iso8601_string(),
            "inviteeEmail": self.invitee_email,
            "inviteeName": self.invitee_name,
            "status": self.status.value,
            "rescheduleCount": self.reschedule_count,
            "cancellationReason": self.cancellation_reason,
            "timezone": self.timezone,
            "notes": self.notes,
            "location": self.location,
            "createdAt": self.created_at.to_iso8601_string() if self.created_at else None,
            "updatedAt": self.updated_at.to_iso8601_string() if self.updated_at else None,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Booking":
        try:
            interval = TimeRange.parse(doc["startTime"], doc["endTime"])
            created_at = pendulum.parse(doc["createdAt"]) if doc.get("createdAt") else None
            updated_at = pendulum.parse(doc["updatedAt"]) if doc.get("updatedAt") else None
            return cls(
                id=str(doc["id"]),
                uid=doc.get("uid") or "",
                event_template_id=str(doc["eventTypeId"]),
                host_id=str(doc["userId"]),
                interval=interval,
                invitee_email=str(doc["inviteeEmail"]).lower(),
                invitee_name=doc.get("inviteeName") or "",
                status=BookingStatus.parse(doc.get("status", BookingStatus.CONFIRMED.value)),
                reschedule_count=int(doc.get("rescheduleCount") or 0),
                cancellation_reason=doc.get("cancellationReason"),
                timezone=doc.get("timezone") or "UTC",
                notes=doc.get("notes") or "",
                location=doc.get("location") or "Online",
                created_at=created_at,
                updated_at=updated_at,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid booking document: {exc}") from exc


@dataclass
class Slot:
    """A candidate bookable range produced by the slot generator."""
    time_range: TimeRange
    host_id: str = ""
    event_template_id: str = ""

    def to_dict(self) -> Dict[str, str]:
        return self.time_range.to_dict()

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, YYYY-MM-DD | HH:mm - HH:mm (N min)
        """
        start = self.time_range.start
        end = self.time_range.end
        weekday = WEEKDAYS[start.weekday()].capitalize()
        duration = self.time_range.duration_minutes()
        return f"{weekday}, {start.format('YYYY-MM-DD')} | {start.format('HH:mm')} - {end.format('HH:mm')} ({duration} min)"
