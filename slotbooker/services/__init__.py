"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .booking_service import BookingRequest, BookingService
from .notifications import BookingNotifier, NotificationDispatcher
from .repository import BookingRepository, DocumentStore
from .slot_service import SlotService

__all__ = [
    "BookingNotifier",
    "BookingRepository",
    "BookingRequest",
    "BookingService",
    "DocumentStore",
    "NotificationDispatcher",
    "SlotService",
]
