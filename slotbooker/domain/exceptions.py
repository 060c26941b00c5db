"""
Domain-specific exception hierarchy for the slotbooker application.
"""


class SlotbookerError(Exception):
    """Base class for all application-level errors."""


class ValidationError(SlotbookerError):
    """Raised when input is malformed (bad interval, weekday, duration, ...)."""


class InvalidTransitionError(ValidationError):
    """Raised when a booking status change is not allowed."""


class SlotTakenError(SlotbookerError):
    """Raised when a proposed interval conflicts with an existing booking."""


class NotFoundError(SlotbookerError):
    """Raised when a referenced template, availability or booking is absent."""


class AuthorizationError(SlotbookerError):
    """Raised when the caller is not allowed to modify a booking."""


class AuthError(SlotbookerError):
    """Raised when a credential or capability token cannot be verified."""


class DeliveryError(SlotbookerError):
    """Raised by notification dispatchers when a message cannot be sent."""


class ConcurrentWriteError(SlotbookerError):
    """Raised by the store when a write was based on a stale snapshot."""
