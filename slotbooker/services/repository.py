"""
Domain-level access to the document store.

The repository translates between stored documents and domain models and is
the only place that knows collection names and query predicates.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..domain.models import (
    Booking,
    BookingStatus,
    EventTemplate,
    TimeRange,
    WeeklyAvailability,
    create_availability,
)

BOOKINGS = "bookings"
EVENT_TYPES = "eventTypes"
AVAILABILITY = "availability"
USERS = "users"
HOST_REVISIONS = "hostRevisions"

ACTIVE_STATUSES: Tuple[BookingStatus, ...] = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class DocumentStore(Protocol):
    """Protocol describing the document store behaviour needed by the services."""

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return a document or None."""

    async def put(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        """Create or replace a document."""

    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        """Merge ``patch`` into an existing document."""

    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document."""

    async def query(
        self, collection: str, predicates: Sequence[Tuple[str, str, Any]] = ()
    ) -> List[Dict[str, Any]]:
        """Return documents matching all ``(field, op, value)`` predicates."""

    async def put_if_revision(
        self,
        collection: str,
        doc_id: str,
        doc: Dict[str, Any],
        revision_collection: str,
        revision_id: str,
        expected: int,
    ) -> None:
        """
        Write ``doc`` and bump ``revision_collection/revision_id`` in one atomic step.

        Nothing is written unless the stored revision equals ``expected``;
        raise ConcurrentWriteError otherwise.
        """


class BookingRepository:
    """
    Reads and writes availability, event templates and bookings.

    Every booking write for a host is stored together with the next value of
    that host's revision counter. A writer whose snapshot is older than the stored
    revision gets ``ConcurrentWriteError`` and must re-read.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def find_event_template(self, template_id: str) -> EventTemplate | None:
        doc = await self._store.get(EVENT_TYPES, template_id)
        return EventTemplate.from_document(doc) if doc else None

    async def find_availability(self, host_id: str) -> WeeklyAvailability | None:
        docs = await self._store.query(AVAILABILITY, [("userId", "==", host_id)])
        if not docs:
            return None
        return WeeklyAvailability.from_document(docs[0])

    async def save_availability(self, availability: WeeklyAvailability) -> None:
        await self._store.put(AVAILABILITY, availability.host_id, availability.to_document())

    async def create_availability(
        self,
        host_id: str,
        schedule: Optional[Dict[str, Dict[str, Any]]] = None,
        exceptions: Iterable[Dict[str, Any]] = (),
    ) -> WeeklyAvailability:
        """Store a host's first availability; unspecified days take the defaults."""
        availability = create_availability(host_id, schedule, exceptions)
        await self.save_availability(availability)
        return availability

    async def find_booking(self, booking_id: str) -> Booking | None:
        doc = await self._store.get(BOOKINGS, booking_id)
        return Booking.from_document(doc) if doc else None

    async def find_bookings(
        self,
        host_id: str,
        date_range: Optional[TimeRange] = None,
        statuses: Iterable[BookingStatus] = ACTIVE_STATUSES,
    ) -> List[Booking]:
        """
        Return a host's bookings, optionally restricted to those overlapping ``date_range``.

        Range filtering happens on parsed instants; stored ISO strings may carry
        different offsets and do not sort lexicographically.
        """
        predicates = [
            ("userId", "==", host_id),
            ("status", "in", [status.value for status in statuses]),
        ]
        bookings = [Booking.from_document(doc) for doc in await self._store.query(BOOKINGS, predicates)]
        if date_range is not None:
            bookings = [booking for booking in bookings if booking.interval.overlaps(date_range)]
        return sorted(bookings, key=lambda booking: booking.interval.start)

    async def find_host_email(self, host_id: str) -> str | None:
        doc = await self._store.get(USERS, host_id)
        if not doc:
            return None
        return doc.get("email")

    async def revision(self, host_id: str) -> int:
        doc = await self._store.get(HOST_REVISIONS, host_id)
        return int((doc or {}).get("revision") or 0)

    async def commit_booking(self, booking: Booking, expected_revision: int) -> None:
        """
        Persist ``booking`` if no other write happened since ``expected_revision`` was read.

        Raises:
            ConcurrentWriteError: If the host's revision moved on
        """
        await self._store.put_if_revision(
            BOOKINGS,
            booking.id,
            booking.to_document(),
            HOST_REVISIONS,
            booking.host_id,
            expected_revision,
        )
