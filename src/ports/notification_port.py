"""Notification port — abstract interface for delivering reminders to users.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class DeliveryFailed(Exception):
    """Raised when a delivery channel cannot show a notification."""


class DeliveryChannel(Protocol):
    """Fire-and-forget display of a notification (chat push, log, ...)."""

    async def show(
        self,
        title: str,
        body: str,
        tag: str | None = None,
        require_interaction: bool = False,
    ) -> None: ...
