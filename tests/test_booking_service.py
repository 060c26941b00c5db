"""
Tests for the BookingService write paths.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

import pendulum
import pytest

from slotbooker.adapters.dispatchers import LoggingDispatcher, OutboxDispatcher
from slotbooker.adapters.memory_store import InMemoryDocumentStore
from slotbooker.domain.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    SlotTakenError,
    ValidationError,
)
from slotbooker.domain.models import BookingStatus
from slotbooker.services.booking_service import BookingRequest, BookingService
from slotbooker.services.notifications import BookingNotifier
from slotbooker.services.repository import BOOKINGS, HOST_REVISIONS, BookingRepository

NOW = pendulum.parse("2024-11-20 08:00", tz="UTC")
HOST = "host-1"


def _documents():
    return {
        "users": [{"id": HOST, "email": "host@example.com"}],
        "eventTypes": [
            {"id": "intro", "userId": HOST, "title": "Intro", "duration": 30, "bufferBefore": 15, "bufferAfter": 15},
            {"id": "review", "userId": HOST, "title": "Review", "duration": 60, "requiresConfirmation": True},
            {"id": "retired", "userId": HOST, "duration": 30, "isActive": False},
        ],
        "bookings": [],
    }


class RacingStore(InMemoryDocumentStore):
    """Simulates another writer committing between a read and the commit."""

    def __init__(self, collections=None, races: int = 0, intruder: Optional[dict] = None):
        super().__init__(collections)
        self.races = races
        self.intruder = intruder
        self.commit_calls = 0

    async def put_if_revision(self, collection, doc_id, doc, revision_collection, revision_id, expected):
        self.commit_calls += 1
        if self.races > 0:
            self.races -= 1
            revisions = self._collection(revision_collection)
            current = revisions.setdefault(revision_id, {}).get("revision") or 0
            revisions[revision_id]["revision"] = current + 1
            if self.intruder is not None:
                self._collection(BOOKINGS)[self.intruder["id"]] = dict(self.intruder)
        await super().put_if_revision(collection, doc_id, doc, revision_collection, revision_id, expected)


class LatentStore(InMemoryDocumentStore):
    """Yields to the event loop before every call, like a networked store."""

    async def get(self, collection, doc_id):
        await asyncio.sleep(0)
        return await super().get(collection, doc_id)

    async def query(self, collection, predicates=()):
        await asyncio.sleep(0)
        return await super().query(collection, predicates)

    async def put(self, collection, doc_id, doc):
        await asyncio.sleep(0.01)
        await super().put(collection, doc_id, doc)

    async def put_if_revision(self, collection, doc_id, doc, revision_collection, revision_id, expected):
        await asyncio.sleep(0.01)
        await super().put_if_revision(collection, doc_id, doc, revision_collection, revision_id, expected)


def _build_service(
    store: Optional[InMemoryDocumentStore] = None,
    fail_for: Tuple[str, ...] = (),
    max_attempts: int = 3,
) -> Tuple[BookingService, InMemoryDocumentStore, OutboxDispatcher]:
    store = store or InMemoryDocumentStore.from_documents(_documents())
    outbox = OutboxDispatcher(fail_for=fail_for)
    service = BookingService(
        BookingRepository(store),
        BookingNotifier(outbox),
        clock=lambda: NOW,
        max_attempts=max_attempts,
        backoff_base_seconds=0,
    )
    return service, store, outbox


def _iso(value: str) -> str:
    """Short ``HH:MM`` values are Monday 2024-11-25 in Berlin."""
    return value if "T" in value else f"2024-11-25T{value}:00+01:00"


def _request(template: str = "intro", start: str = "10:00", end: str = "10:30", **overrides) -> dict:
    data = {
        "event_template_id": template,
        "start": _iso(start),
        "end": _iso(end),
        "invitee_email": "Guest@Example.com",
        "invitee_name": "Guest",
        "timezone": "Europe/Berlin",
    }
    data.update(overrides)
    return data


def _subjects(outbox: OutboxDispatcher) -> List[str]:
    return [subject for _, subject, _ in outbox.sent]


def test_create_booking_confirms_by_default():
    service, store, outbox = _build_service()

    booking = asyncio.run(service.create_booking(_request()))

    assert booking.status is BookingStatus.CONFIRMED
    assert booking.invitee_email == "guest@example.com"
    assert len(booking.uid) == 6
    assert booking.created_at == NOW
    saved = asyncio.run(store.get(BOOKINGS, booking.id))
    assert saved["status"] == "confirmed"
    assert saved["userId"] == HOST
    assert [to for to, _, _ in outbox.sent] == ["guest@example.com", "host@example.com"]
    assert _subjects(outbox)[0] == "Booking confirmed: Intro"


def test_create_booking_pending_when_confirmation_required():
    service, _, outbox = _build_service()

    booking = asyncio.run(service.create_booking(_request("review", "11:00", "12:00")))

    assert booking.status is BookingStatus.PENDING
    assert _subjects(outbox)[0] == "Booking received: Review"


def test_create_booking_rejects_overlap():
    """Admission compares raw intervals, buffers do not apply."""
    service, _, _ = _build_service()
    asyncio.run(service.create_booking(_request(start="10:00", end="10:30")))

    with pytest.raises(SlotTakenError):
        asyncio.run(service.create_booking(_request(start="10:15", end="10:45")))

    adjacent = asyncio.run(service.create_booking(_request(start="10:30", end="11:00")))
    assert adjacent.status is BookingStatus.CONFIRMED


def test_create_booking_unknown_template():
    service, _, _ = _build_service()

    with pytest.raises(NotFoundError):
        asyncio.run(service.create_booking(_request("missing")))


def test_create_booking_inactive_template():
    service, _, _ = _build_service()

    with pytest.raises(ValidationError, match="not accepting bookings"):
        asyncio.run(service.create_booking(_request("retired")))


def test_create_booking_enforces_notice():
    service, _, _ = _build_service()
    # 30 minutes after NOW, the template asks for 60
    request = _request(start="2024-11-20T09:30:00+01:00", end="2024-11-20T10:00:00+01:00")

    with pytest.raises(ValidationError, match="must start between"):
        asyncio.run(service.create_booking(request))


@pytest.mark.parametrize("field, value", [
    ("invitee_email", "not-an-email"),
    ("invitee_email", "a@b..cc"),
    ("invitee_name", "   "),
    ("invitee_name", "x" * 101),
    ("timezone", "Mars/Base"),
])
def test_create_booking_validates_request(field, value):
    service, _, _ = _build_service()

    with pytest.raises(ValidationError):
        asyncio.run(service.create_booking(_request(**{field: value})))


def test_booking_request_parse_passes_models_through():
    request = BookingRequest.parse(_request())

    assert BookingRequest.parse(request) is request


def test_concurrent_write_is_retried():
    store = RacingStore(InMemoryDocumentStore.from_documents(_documents()).dump(), races=1)
    service, _, _ = _build_service(store)

    booking = asyncio.run(service.create_booking(_request()))

    assert booking.status is BookingStatus.CONFIRMED
    assert store.commit_calls == 2


def test_concurrent_overlapping_write_loses():
    """The retry re-reads bookings and sees the competing commit."""
    intruder = {
        "id": "other",
        "eventTypeId": "intro",
        "userId": HOST,
        "startTime": "2024-11-25T10:00:00+01:00",
        "endTime": "2024-11-25T10:30:00+01:00",
        "inviteeEmail": "other@example.com",
        "status": "confirmed",
    }
    store = RacingStore(InMemoryDocumentStore.from_documents(_documents()).dump(), races=1, intruder=intruder)
    service, _, _ = _build_service(store)

    with pytest.raises(SlotTakenError):
        asyncio.run(service.create_booking(_request()))

    assert asyncio.run(store.query(BOOKINGS)) == [intruder]


def test_retries_are_bounded():
    store = RacingStore(InMemoryDocumentStore.from_documents(_documents()).dump(), races=10)
    service, _, outbox = _build_service(store, max_attempts=3)

    with pytest.raises(SlotTakenError, match="after 3 attempts"):
        asyncio.run(service.create_booking(_request()))

    assert store.commit_calls == 3
    assert outbox.sent == []


def test_simultaneous_bookings_admit_one():
    """Two writers racing for the same interval on a store that yields."""
    store = LatentStore.from_documents(_documents())
    service, _, _ = _build_service(store)

    async def book_twice():
        return await asyncio.gather(
            service.create_booking(_request(invitee_email="a@example.com")),
            service.create_booking(_request(invitee_email="b@example.com")),
            return_exceptions=True,
        )

    results = asyncio.run(book_twice())

    assert sum(isinstance(result, SlotTakenError) for result in results) == 1
    assert len(asyncio.run(store.query(BOOKINGS))) == 1
    assert asyncio.run(store.get(HOST_REVISIONS, HOST))["revision"] == 1


def test_simultaneous_reschedules_admit_one():
    store = LatentStore.from_documents(_documents())
    service, _, _ = _build_service(store)
    first = asyncio.run(service.create_booking(_request(start="10:00", end="10:30")))
    second = asyncio.run(service.create_booking(_request(start="11:00", end="11:30")))

    async def move_both():
        return await asyncio.gather(
            service.reschedule(first.id, _iso("14:00"), _iso("14:30"), authorized=True),
            service.reschedule(second.id, _iso("14:00"), _iso("14:30"), authorized=True),
            return_exceptions=True,
        )

    results = asyncio.run(move_both())

    assert sum(isinstance(result, SlotTakenError) for result in results) == 1
    starts = [doc["startTime"] for doc in asyncio.run(store.query(BOOKINGS))]
    assert starts.count(_iso("14:00")) == 1


def test_notification_failure_does_not_fail_booking():
    service, _, outbox = _build_service(fail_for=("guest@example.com",))

    booking = asyncio.run(service.create_booking(_request()))

    assert booking.status is BookingStatus.CONFIRMED
    assert [to for to, _, _ in outbox.sent] == ["host@example.com"]


def test_update_status_requires_host():
    service, _, _ = _build_service()
    booking = asyncio.run(service.create_booking(_request("review", "11:00", "12:00")))

    with pytest.raises(AuthorizationError):
        asyncio.run(service.update_status(booking.id, "confirmed", actor_id="someone-else"))

    confirmed = asyncio.run(service.update_status(booking.id, "confirmed", actor_id=HOST))
    assert confirmed.status is BookingStatus.CONFIRMED

    with pytest.raises(InvalidTransitionError):
        asyncio.run(service.update_status(booking.id, "pending", actor_id=HOST))


def test_update_status_unknown_booking():
    service, _, _ = _build_service()

    with pytest.raises(NotFoundError):
        asyncio.run(service.update_status("nope", "confirmed", actor_id=HOST))


def test_reschedule_moves_booking():
    service, store, outbox = _build_service()
    booking = asyncio.run(service.create_booking(_request()))

    moved = asyncio.run(service.reschedule(
        booking.id, "2024-11-25T10:15:00+01:00", "2024-11-25T10:45:00+01:00", authorized=True,
    ))

    assert moved.reschedule_count == 1
    assert moved.interval.start == pendulum.parse("2024-11-25T09:15:00Z")
    assert asyncio.run(store.get(BOOKINGS, booking.id))["rescheduleCount"] == 1
    assert "Booking rescheduled" in _subjects(outbox)


def test_reschedule_into_other_booking():
    service, _, _ = _build_service()
    first = asyncio.run(service.create_booking(_request(start="10:00", end="10:30")))
    asyncio.run(service.create_booking(_request(start="11:00", end="11:30")))

    with pytest.raises(SlotTakenError):
        asyncio.run(service.reschedule(
            first.id, "2024-11-25T11:00:00+01:00", "2024-11-25T11:30:00+01:00", authorized=True,
        ))


def test_reschedule_requires_authorization():
    service, _, _ = _build_service()
    booking = asyncio.run(service.create_booking(_request()))

    with pytest.raises(AuthorizationError):
        asyncio.run(service.reschedule(
            booking.id, "2024-11-25T12:00:00+01:00", "2024-11-25T12:30:00+01:00", authorized=False,
        ))


def test_cancel_frees_the_slot():
    service, _, outbox = _build_service()
    booking = asyncio.run(service.create_booking(_request()))

    with pytest.raises(AuthorizationError):
        asyncio.run(service.cancel(booking.id, authorized=False))

    cancelled = asyncio.run(service.cancel(booking.id, authorized=True))

    assert cancelled.status is BookingStatus.CANCELLED
    assert cancelled.cancellation_reason == "No reason provided"
    assert "Booking cancelled" in _subjects(outbox)

    again = asyncio.run(service.create_booking(_request()))
    assert again.status is BookingStatus.CONFIRMED

    with pytest.raises(InvalidTransitionError):
        asyncio.run(service.cancel(booking.id, "twice", authorized=True))


def test_logging_dispatcher_records_messages(caplog):
    store = InMemoryDocumentStore.from_documents(_documents())
    service = BookingService(
        BookingRepository(store),
        BookingNotifier(LoggingDispatcher(sender="bookings@example.com")),
        clock=lambda: NOW,
    )

    with caplog.at_level(logging.INFO, logger="slotbooker.adapters.dispatchers"):
        asyncio.run(service.create_booking(_request()))

    assert "Mail from bookings@example.com to guest@example.com: Booking confirmed: Intro" in caplog.text


def test_disabled_notifier_sends_nothing():
    store = InMemoryDocumentStore.from_documents(_documents())
    outbox = OutboxDispatcher()
    service = BookingService(BookingRepository(store), BookingNotifier(outbox, enabled=False), clock=lambda: NOW)

    asyncio.run(service.create_booking(_request()))

    assert outbox.sent == []
