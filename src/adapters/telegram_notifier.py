"""Telegram delivery adapter — implements DeliveryChannel.

Wraps a telegram.Bot instance and a chat id to satisfy the
DeliveryChannel protocol.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from src.ports.notification_port import DeliveryFailed

logger = logging.getLogger(__name__)


class TelegramChannel:
    """Telegram implementation of DeliveryChannel for one chat."""

    def __init__(self, bot: Bot, chat_id: int | str) -> None:
        self._bot = bot
        self._chat_id = chat_id

    async def show(
        self,
        title: str,
        body: str,
        tag: str | None = None,
        require_interaction: bool = False,
    ) -> None:
        # Telegram has no sticky alerts; require_interaction keeps sound on
        try:
            await self._bot.send_message(
                chat_id=self._chat_id,
                text=f"🔔 {title}\n{body}",
                disable_notification=not require_interaction,
            )
        except TelegramError as exc:
            raise DeliveryFailed(f"Telegram send to {self._chat_id} failed: {exc}") from exc
