"""
Booking notification messages.

Notifications are fire-and-forget: a dispatcher failure is logged and never
propagated to the booking flow.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from ..domain.exceptions import DeliveryError
from ..domain.models import Booking, BookingStatus, EventTemplate

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Protocol describing the outbound message channel."""

    async def send(self, to: str, subject: str, body: str) -> None:
        """Deliver a message; raise DeliveryError on failure."""


def _when(booking: Booking) -> str:
    start = booking.interval.start.in_timezone(booking.timezone)
    return f"{start.format('DD/MM/YYYY')} {start.format('HH:mm')} ({booking.timezone})"


class BookingNotifier:
    """Renders booking messages and hands them to a dispatcher."""

    def __init__(self, dispatcher: NotificationDispatcher, enabled: bool = True) -> None:
        self._dispatcher = dispatcher
        self._enabled = enabled

    async def _deliver(self, to: Optional[str], subject: str, body: str) -> bool:
        if not self._enabled or not to:
            return False
        try:
            await self._dispatcher.send(to, subject, body)
        except DeliveryError as exc:
            logger.warning("Could not deliver '%s' to %s: %s", subject, to, exc)
            return False
        return True

    async def booking_created(
        self,
        booking: Booking,
        template: EventTemplate,
        host_email: Optional[str],
    ) -> None:
        """Send the invitee confirmation and the host notice."""
        state = "confirmed" if booking.status is BookingStatus.CONFIRMED else "received"
        invitee_body = (
            f"Hello {booking.invitee_name},\n\n"
            f"Your booking for {template.title or template.id} has been {state}.\n"
            f"When: {_when(booking)}\n"
            f"Duration: {template.duration} minutes\n"
            f"Location: {booking.location}\n"
        )
        if booking.status is BookingStatus.PENDING:
            invitee_body += "Note: this booking still needs to be confirmed by the host.\n"

        host_body = (
            f"New booking for {template.title or template.id} with {booking.invitee_name}.\n"
            f"When: {_when(booking)}\n"
            f"Status: {booking.status.value}\n"
            f"Invitee email: {booking.invitee_email}\n"
        )
        if booking.notes:
            host_body += f"Notes: {booking.notes}\n"

        await self._deliver(booking.invitee_email, f"Booking {state}: {template.title or template.id}", invitee_body)
        await self._deliver(host_email, f"New booking: {template.title or template.id} with {booking.invitee_name}", host_body)

    async def status_changed(self, booking: Booking) -> None:
        await self._deliver(
            booking.invitee_email,
            f"Booking {booking.status.value}",
            f"Your booking on {_when(booking)} is now {booking.status.value}.\n",
        )

    async def rescheduled(self, booking: Booking, host_email: Optional[str]) -> None:
        body = f"The booking {booking.uid or booking.id} was moved to {_when(booking)}.\n"
        await self._deliver(booking.invitee_email, "Booking rescheduled", body)
        await self._deliver(host_email, "Booking rescheduled", body)

    async def cancelled(self, booking: Booking, host_email: Optional[str]) -> None:
        body = (
            f"The booking on {_when(booking)} was cancelled.\n"
            f"Reason: {booking.cancellation_reason}\n"
        )
        await self._deliver(booking.invitee_email, "Booking cancelled", body)
        await self._deliver(host_email, "Booking cancelled", body)
