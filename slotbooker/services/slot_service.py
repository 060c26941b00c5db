"""
Application service for listing bookable slots.

Fetches the template, availability and the day's bookings through the
repository and delegates the projection to the domain ``SlotCalculator``.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

import pendulum
from pendulum import DateTime

from ..domain.availability import DateLike, local_day
from ..domain.exceptions import NotFoundError
from ..domain.models import Slot, TimeRange, default_availability
from ..domain.slot_calculator import SlotCalculator, apply_booking_window
from .repository import BookingRepository

logger = logging.getLogger(__name__)


def utc_now() -> DateTime:
    return pendulum.now("UTC")


class SlotService:
    """
    Orchestrates data retrieval and slot generation for one event template.
    """

    def __init__(
        self,
        repository: BookingRepository,
        slot_calculator: Optional[SlotCalculator] = None,
        clock: Callable[[], DateTime] = utc_now,
    ) -> None:
        self._repository = repository
        self._slot_calculator = slot_calculator or SlotCalculator()
        self._clock = clock

    async def find_slots(
        self,
        *,
        event_template_id: str,
        date: DateLike,
        timezone: Optional[str] = None,
        enforce_notice: bool = True,
    ) -> List[Slot]:
        """
        Return the bookable slots of a template for one day.

        Missing availability falls back to the default schedule. Inactive
        templates have no slots.

        Raises:
            NotFoundError: If the event template does not exist
        """
        template = await self._repository.find_event_template(event_template_id)
        if template is None:
            raise NotFoundError(f"Event template {event_template_id} not found")

        if not template.is_active:
            logger.info("Event template %s is inactive, no slots offered", template.id)
            return []

        tz = timezone or template.timezone
        availability = await self._repository.find_availability(template.host_id)
        if availability is None:
            availability = default_availability(template.host_id)

        day = local_day(date, tz)
        existing = await self._repository.find_bookings(
            template.host_id,
            date_range=TimeRange(start=day, end=day.add(days=1)),
        )

        slots = list(self._slot_calculator.generate_slots(
            date=day,
            template=template,
            availability=availability,
            existing_bookings=existing,
            timezone=tz,
        ))

        if enforce_notice:
            slots = apply_booking_window(slots, template, self._clock())

        logger.debug("%d slot(s) for template %s on %s", len(slots), template.id, day.to_date_string())
        return slots

    async def get_slots(
        self,
        event_template_id: str,
        date: DateLike,
        timezone: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        """Slots as ``{"start": iso, "end": iso}`` mappings."""
        slots = await self.find_slots(event_template_id=event_template_id, date=date, timezone=timezone)
        return [slot.to_dict() for slot in slots]
