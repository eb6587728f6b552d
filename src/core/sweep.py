"""
SmartCal Assistant — Reminder Sweep.

Server-side half of reminder delivery: on every trigger, claim each due,
unsent reminder and deliver it. Claiming is an atomic conditional update
in the store, so overlapping sweeps never deliver the same reminder twice:
only the sweep whose claim succeeds delivers, the others skip it.

This module is provider-agnostic: it depends on the NotificationStore and
DeliveryChannel protocols, not on specific implementations.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from src.ports.notification_port import DeliveryChannel
    from src.ports.store_port import NotificationStore

logger = logging.getLogger(__name__)

ChannelResolver = Callable[[str], "DeliveryChannel"]


class SweepUnauthorized(Exception):
    """The sweep trigger was called without the shared secret."""


@dataclass
class SweepReport:
    """Outcome of one sweep pass, by notification id."""

    delivered: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)     # claimed first by another sweep or countdown
    failed: dict[int, str] = field(default_factory=dict)  # claimed, delivery raised

    @property
    def processed(self) -> int:
        return len(self.delivered)


async def run_sweep(
    store: NotificationStore,
    channel_for: ChannelResolver,
    now: datetime | None = None,
) -> SweepReport:
    """Claim and deliver every reminder due at `now`.

    Args:
        store: Notification store; its sync calls run in a worker thread.
        channel_for: Returns the delivery channel for a user id.
        now: Reference instant. Defaults to the current UTC time.

    A delivery failure is recorded and the batch continues; the reminder
    stays claimed and is not retried.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    report = SweepReport()
    due = await asyncio.to_thread(store.list_due, now)
    if due:
        logger.info("Sweep found %d due reminder(s)", len(due))

    for notification in due:
        claimed = await asyncio.to_thread(store.claim, notification.id)
        if not claimed:
            logger.info("Reminder #%d already claimed by another sweep — skipping", notification.id)
            report.skipped.append(notification.id)
            continue

        try:
            channel = channel_for(notification.user_id)
            await channel.show(
                notification.title,
                notification.message,
                tag=str(notification.event_id),
                require_interaction=True,
            )
        except Exception as exc:
            logger.error("Failed to deliver reminder #%d: %s", notification.id, exc)
            report.failed[notification.id] = str(exc)
            continue

        logger.info("Reminder #%d delivered to user %s", notification.id, notification.user_id)
        report.delivered.append(notification.id)

    return report


def check_authorization(authorization: str | None, secret: str) -> None:
    """Raise SweepUnauthorized unless `authorization` is "Bearer <secret>"."""
    if not secret:
        raise SweepUnauthorized("Sweep secret is not configured")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise SweepUnauthorized("Invalid sweep credentials")


async def trigger_sweep(
    authorization: str | None,
    store: NotificationStore,
    channel_for: ChannelResolver,
    secret: str | None = None,
    now: datetime | None = None,
) -> int:
    """Authenticated entry point for external schedulers.

    Returns the number of reminders this invocation delivered.
    """
    if secret is None:
        from src.config import settings
        secret = settings.CRON_SECRET

    check_authorization(authorization, secret)
    report = await run_sweep(store, channel_for, now=now)
    if report.failed:
        logger.warning("Sweep finished with %d failed deliveries", len(report.failed))
    return report.processed
