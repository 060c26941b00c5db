"""
Notification dispatchers that do not need an external mail service.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

from rich.console import Console
from rich.panel import Panel

from ..domain.exceptions import DeliveryError

logger = logging.getLogger(__name__)


class LoggingDispatcher:
    """Writes every message to the application log."""

    def __init__(self, sender: str = "no-reply@slotbooker.local"):
        self.sender = sender

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Mail from %s to %s: %s", self.sender, to, subject)
        logger.debug("%s", body)


class ConsoleDispatcher:
    """
    Prints messages as Rich panels.

    Used by the CLI so that a demo run shows what would have been mailed.
    """

    def __init__(self, console: Console | None = None, sender: str = "no-reply@slotbooker.local"):
        self.console = console or Console()
        self.sender = sender

    async def send(self, to: str, subject: str, body: str) -> None:
        self.console.print(Panel.fit(
            body.rstrip(),
            title=f"✉ {subject}",
            subtitle=f"{self.sender} → {to}",
        ))


class OutboxDispatcher:
    """
    Collects messages in memory.

    ``fail_for`` lists recipients whose delivery raises ``DeliveryError``.
    """

    def __init__(self, fail_for: Tuple[str, ...] = ()):
        self.sent: List[Tuple[str, str, str]] = []
        self.fail_for = fail_for

    async def send(self, to: str, subject: str, body: str) -> None:
        if to in self.fail_for:
            raise DeliveryError(f"Mailbox {to} unavailable")
        self.sent.append((to, subject, body))
