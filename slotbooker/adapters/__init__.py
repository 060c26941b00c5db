"""
Adapters layer - In-memory store, notification dispatchers and capability tokens.
"""

from .capability_tokens import CapabilityTokens
from .dispatchers import ConsoleDispatcher, LoggingDispatcher, OutboxDispatcher
from .memory_store import InMemoryDocumentStore

__all__ = [
    "CapabilityTokens",
    "ConsoleDispatcher",
    "InMemoryDocumentStore",
    "LoggingDispatcher",
    "OutboxDispatcher",
]
