"""Logging delivery adapter — implements DeliveryChannel.

Used where no chat is attached (manual sweeps, local runs): the
notification is written to the application log instead.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LogChannel:
    """DeliveryChannel that records notifications in the log."""

    def __init__(self, recipient: str = "") -> None:
        self._recipient = recipient

    async def show(
        self,
        title: str,
        body: str,
        tag: str | None = None,
        require_interaction: bool = False,
    ) -> None:
        logger.info("Notification for %s [%s]: %s — %s", self._recipient or "-", tag or "-", title, body)
