"""Client-side reminder countdowns.

A TimerRegistry belongs to one chat session. It keeps at most one live
countdown per event: re-arming an event cancels the previous countdown
first, and editing or deleting the event must call cancel().

A countdown armed with a `claim` callable must win the shared notification
record before it shows anything. The server sweep makes the same claim, so a
reminder reaches the user at most once. Countdowns die with the process and
the sweep picks up whatever they never claimed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from src.data.models import Event
    from src.ports.notification_port import DeliveryChannel

logger = logging.getLogger(__name__)

DEFAULT_LEAD_MINUTES = 15

# Resolves True when this caller won the stored reminder and may deliver it.
Claim = Callable[[], Awaitable[bool]]


def reminder_text(event: Event, lead_minutes: int) -> tuple[str, str]:
    """Return the (title, body) shown for an event reminder."""
    title = f"Upcoming: {event.title}"
    body = f"Starting in {lead_minutes} minutes"
    if event.location:
        body += f" at {event.location}"
    return title, body


class TimerRegistry:
    """Arms, cancels and fires reminder countdowns keyed by event id."""

    def __init__(
        self,
        channel: DeliveryChannel,
        lead_minutes: int = DEFAULT_LEAD_MINUTES,
    ) -> None:
        self._channel = channel
        self._lead_minutes = lead_minutes
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._deliveries: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, key: object) -> bool:
        return str(key) in self._handles

    def pending(self) -> list[str]:
        return list(self._handles)

    def arm(
        self,
        key: str | int,
        scheduled_for: datetime,
        title: str,
        body: str,
        now: datetime | None = None,
        claim: Claim | None = None,
    ) -> bool:
        """Start a countdown that shows (title, body) at `scheduled_for`.

        Must be called from a running event loop. Returns False and arms
        nothing when `scheduled_for` is not in the future. When `claim` is
        given it is awaited on expiry and the reminder is shown only if it
        resolves True.
        """
        key = str(key)
        if now is None:
            now = datetime.now(timezone.utc)

        delay = (scheduled_for - now).total_seconds()
        self.cancel(key)
        if delay <= 0:
            logger.debug("Not arming reminder for %s: already due (%.1fs ago)", key, -delay)
            return False

        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(delay, self._fire, key, title, body, claim)
        logger.info("Reminder armed for %s in %.0fs", key, delay)
        return True

    def arm_for_event(
        self, event: Event, now: datetime | None = None, claim: Claim | None = None,
    ) -> bool:
        """Arm the standard reminder `lead_minutes` before the event starts."""
        scheduled_for = event.start - timedelta(minutes=self._lead_minutes)
        title, body = reminder_text(event, self._lead_minutes)
        return self.arm(event.id, scheduled_for, title, body, now=now, claim=claim)

    def cancel(self, key: str | int) -> bool:
        """Cancel and discard the countdown for `key`. Returns True if one was live."""
        handle = self._handles.pop(str(key), None)
        if handle is None:
            return False
        handle.cancel()
        logger.info("Reminder cancelled for %s", key)
        return True

    def cancel_all(self) -> int:
        count = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        return count

    def _fire(self, key: str, title: str, body: str, claim: Claim | None) -> None:
        self._handles.pop(key, None)
        task = asyncio.ensure_future(self._deliver(key, title, body, claim))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, key: str, title: str, body: str, claim: Claim | None) -> None:
        try:
            if claim is not None and not await claim():
                logger.info("Reminder for %s already delivered elsewhere, skipping", key)
                return
            await self._channel.show(title, body, tag=key, require_interaction=True)
            logger.info("Reminder delivered for %s", key)
        except Exception as exc:
            logger.error("Reminder delivery failed for %s: %s", key, exc)
