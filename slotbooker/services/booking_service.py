"""
Application service for creating and modifying bookings.

Every write follows read, decide, commit: the host's bookings and revision
are read, the domain rules decide, and the commit succeeds only if the
revision is unchanged. A stale commit is retried against a fresh read a
bounded number of times with jittered backoff.
"""

from __future__ import annotations

import asyncio
import logging
import random
import secrets
import string
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union

from pendulum import DateTime
from pydantic import BaseModel, EmailStr, ValidationError as PydanticValidationError, field_validator

from ..domain import booking_rules
from ..domain.availability import resolve_timezone
from ..domain.exceptions import (
    AuthorizationError,
    ConcurrentWriteError,
    NotFoundError,
    SlotbookerError,
    SlotTakenError,
    ValidationError,
)
from ..domain.models import Booking, BookingStatus, TimeRange
from .notifications import BookingNotifier
from .repository import BookingRepository
from .slot_service import utc_now

logger = logging.getLogger(__name__)
_UID_ALPHABET = string.ascii_uppercase + string.digits


def generate_uid(length: int = 6) -> str:
    """Short share code for a booking."""
    return "".join(secrets.choice(_UID_ALPHABET) for _ in range(length))


class BookingRequest(BaseModel):
    """Invitee-facing booking payload."""
    event_template_id: str
    start: str
    end: str
    invitee_email: EmailStr
    invitee_name: str
    timezone: str = "UTC"
    notes: str = ""
    location: str = "Online"

    @field_validator("invitee_email", mode="before")
    @classmethod
    def normalise_email(cls, value: Any) -> Any:
        """Emails are stored lowercased."""
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("invitee_name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Invitee name is required")
        if len(value) > 100:
            raise ValueError("Invitee name must not exceed 100 characters")
        return value

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            resolve_timezone(value)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @classmethod
    def parse(cls, data: Union["BookingRequest", Dict[str, Any]]) -> "BookingRequest":
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc


class BookingService:
    """
    Booking admission, status changes, reschedules and cancellations.
    """

    def __init__(
        self,
        repository: BookingRepository,
        notifier: BookingNotifier,
        *,
        clock: Callable[[], DateTime] = utc_now,
        max_attempts: int = 3,
        backoff_base_seconds: float = 0.05,
    ) -> None:
        if max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        self._repository = repository
        self._notifier = notifier
        self._clock = clock
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds

    async def _backoff(self, attempt: int) -> None:
        delay = self.backoff_base_seconds * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
        await asyncio.sleep(delay)

    async def _commit_with_retry(
        self,
        host_id: str,
        decide: Callable[[], Awaitable[Booking]],
        exhausted: Type[SlotbookerError],
    ) -> Booking:
        """
        Run ``decide`` against a fresh snapshot and commit its result.

        ``decide`` re-reads whatever it needs; it is called once per attempt.
        """
        for attempt in range(1, self.max_attempts + 1):
            revision = await self._repository.revision(host_id)
            booking = await decide()
            try:
                await self._repository.commit_booking(booking, expected_revision=revision)
                return booking
            except ConcurrentWriteError as exc:
                logger.warning(
                    "Concurrent write for host %s (attempt %d/%d): %s",
                    host_id, attempt, self.max_attempts, exc,
                )
                if attempt < self.max_attempts:
                    await self._backoff(attempt)

        raise exhausted(f"Could not commit booking for host {host_id} after {self.max_attempts} attempts")

    async def _load(self, booking_id: str) -> Booking:
        booking = await self._repository.find_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def create_booking(self, request: Union[BookingRequest, Dict[str, Any]]) -> Booking:
        """
        Admit and persist a new booking.

        Raises:
            ValidationError: Malformed request, inactive template or notice violation
            NotFoundError: If the event template does not exist
            SlotTakenError: If the interval is taken, also after retries run out
        """
        request = BookingRequest.parse(request)

        template = await self._repository.find_event_template(request.event_template_id)
        if template is None:
            raise NotFoundError(f"Event template {request.event_template_id} not found")
        if not template.is_active:
            raise ValidationError(f"Event template {template.id} is not accepting bookings")

        interval = TimeRange.parse(request.start, request.end, tz=request.timezone)
        now = self._clock()
        booking_rules.check_booking_window(interval, template, now)

        draft = Booking(
            id=str(uuid.uuid4()),
            uid=generate_uid(),
            event_template_id=template.id,
            host_id=template.host_id,
            interval=interval,
            invitee_email=request.invitee_email,
            invitee_name=request.invitee_name,
            status=booking_rules.initial_status(template),
            timezone=request.timezone,
            notes=request.notes,
            location=request.location,
            created_at=now,
            updated_at=now,
        )

        async def decide() -> Booking:
            existing = await self._repository.find_bookings(template.host_id, date_range=interval)
            result = booking_rules.admit(interval, existing)
            if not result:
                raise SlotTakenError(f"Requested time {interval} is already booked")
            return draft

        booking = await self._commit_with_retry(template.host_id, decide, SlotTakenError)
        logger.info("Created booking %s (%s) for host %s", booking.id, booking.status.value, booking.host_id)

        host_email = await self._repository.find_host_email(booking.host_id)
        await self._notifier.booking_created(booking, template, host_email)
        return booking

    async def update_status(self, booking_id: str, status: Union[str, BookingStatus], actor_id: str) -> Booking:
        """
        Host-side status change following the transition table.

        Raises:
            AuthorizationError: If ``actor_id`` is not the booking's host
            InvalidTransitionError: If the transition is not allowed
        """
        target = BookingStatus.parse(status)
        current = await self._load(booking_id)
        if current.host_id != actor_id:
            raise AuthorizationError(f"Only the host may change the status of booking {booking_id}")

        async def decide() -> Booking:
            fresh = await self._load(booking_id)
            return booking_rules.change_status(fresh, target, now=self._clock())

        booking = await self._commit_with_retry(current.host_id, decide, ConcurrentWriteError)
        logger.info("Booking %s is now %s", booking.id, booking.status.value)
        await self._notifier.status_changed(booking)
        return booking

    async def reschedule(
        self,
        booking_id: str,
        start: str,
        end: str,
        *,
        authorized: bool,
        timezone: Optional[str] = None,
    ) -> Booking:
        """
        Move a booking to a new interval.

        ``authorized`` comes from the identity layer (host session or a valid
        reschedule token).

        Raises:
            AuthorizationError: If the caller is not authorized
            SlotTakenError: If the new interval is taken
        """
        if not authorized:
            raise AuthorizationError(f"Not allowed to reschedule booking {booking_id}")

        current = await self._load(booking_id)
        interval = TimeRange.parse(start, end, tz=timezone or current.timezone)
        template = await self._repository.find_event_template(current.event_template_id)
        if template is not None:
            booking_rules.check_booking_window(interval, template, self._clock())

        async def decide() -> Booking:
            fresh = await self._load(booking_id)
            existing = await self._repository.find_bookings(fresh.host_id, date_range=interval)
            return booking_rules.reschedule(fresh, interval, existing, now=self._clock())

        booking = await self._commit_with_retry(current.host_id, decide, SlotTakenError)
        logger.info("Rescheduled booking %s to %s (count=%d)", booking.id, booking.interval, booking.reschedule_count)

        host_email = await self._repository.find_host_email(booking.host_id)
        await self._notifier.rescheduled(booking, host_email)
        return booking

    async def cancel(self, booking_id: str, reason: Optional[str] = None, *, authorized: bool) -> Booking:
        """
        Cancel a booking from any non-terminal state.

        Raises:
            AuthorizationError: If the caller is not authorized
            InvalidTransitionError: If the booking is already terminal
        """
        if not authorized:
            raise AuthorizationError(f"Not allowed to cancel booking {booking_id}")

        current = await self._load(booking_id)

        async def decide() -> Booking:
            fresh = await self._load(booking_id)
            return booking_rules.cancel(fresh, reason, now=self._clock())

        booking = await self._commit_with_retry(current.host_id, decide, ConcurrentWriteError)
        logger.info("Cancelled booking %s: %s", booking.id, booking.cancellation_reason)

        host_email = await self._repository.find_host_email(booking.host_id)
        await self._notifier.cancelled(booking, host_email)
        return booking
