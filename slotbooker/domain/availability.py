"""
Weekly availability lookups: which working window applies to a given day.
"""

from __future__ import annotations

from datetime import date as date_type, datetime
from typing import Union

import pendulum
from pendulum import DateTime

from .exceptions import ValidationError
from .models import WEEKDAYS, DaySchedule, TimeRange, WeeklyAvailability, parse_hhmm

DateLike = Union[str, date_type, DateTime]


def resolve_timezone(name: str):
    """Return the pendulum timezone for ``name`` or raise ``ValidationError``."""
    try:
        return pendulum.timezone(name)
    except (KeyError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone '{name}'") from exc


def local_day(value: DateLike, timezone: str) -> DateTime:
    """
    Return midnight of the calendar day ``value`` refers to, in ``timezone``.

    Strings must be ``YYYY-MM-DD``. Date-times are first converted to the
    timezone so that the weekday is resolved where the host lives.
    """
    tz = resolve_timezone(timezone)

    if isinstance(value, datetime):
        return pendulum.instance(value).in_timezone(tz).start_of("day")

    if isinstance(value, date_type):
        return pendulum.datetime(value.year, value.month, value.day, tz=tz)

    try:
        return pendulum.from_format(str(value), "YYYY-MM-DD", tz=tz)
    except ValueError as exc:
        raise ValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD") from exc


def working_window_for(
    availability: WeeklyAvailability,
    date: DateLike,
    timezone: str,
) -> DaySchedule | None:
    """
    Resolve the day schedule that applies to ``date``.

    Date-specific exceptions win over the weekly schedule. Returns None for
    non-working days and for working entries without explicit hours.
    """
    day = local_day(date, timezone)

    exception = availability.exception_for(day.format("YYYY-MM-DD"))
    if exception is not None:
        entry = exception.as_day_schedule()
    else:
        entry = availability.schedule.get(WEEKDAYS[day.weekday()])

    if entry is None or not entry.is_working or not entry.has_hours():
        return None

    return entry


def window_range(day_schedule: DaySchedule, date: DateLike, timezone: str) -> TimeRange:
    """Anchor a day schedule's ``HH:MM`` boundaries on ``date`` in ``timezone``."""
    day = local_day(date, timezone)
    start_hour, start_minute = parse_hhmm(day_schedule.start)
    end_hour, end_minute = parse_hhmm(day_schedule.end)

    return TimeRange(
        start=day.set(hour=start_hour, minute=start_minute, second=0, microsecond=0),
        end=day.set(hour=end_hour, minute=end_minute, second=0, microsecond=0),
    )
