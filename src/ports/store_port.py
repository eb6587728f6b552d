"""Store ports — abstract interfaces for events, notifications and profiles.

Core modules depend on these protocols, never on a specific database.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from src.data.models import BehavioralProfile, Event, Notification


class EventStore(Protocol):
    """Event persistence used by the action service and profile learning."""

    def create_event(
        self,
        user_id: str,
        title: str,
        start: datetime,
        end: datetime,
        location: str | None = None,
        attendees: list[str] | None = None,
        category: str = "meeting",
        description: str | None = None,
        priority: str = "medium",
        is_recurring: bool = False,
    ) -> Event: ...

    def get_event(self, event_id: int) -> Event | None: ...

    def list_events(
        self, user_id: str, start: datetime | None = None, end: datetime | None = None,
    ) -> list[Event]: ...

    def recent_events(self, user_id: str, limit: int = 50) -> list[Event]: ...

    def update_event(self, event_id: int, **changes) -> Event | None: ...

    def delete_event(self, event_id: int) -> bool: ...


class NotificationStore(Protocol):
    """Notification persistence. `claim` must be an atomic conditional update."""

    def create_notification(
        self,
        user_id: str,
        event_id: int,
        type: str,
        title: str,
        message: str,
        sent: bool = False,
        scheduled_for: datetime | None = None,
    ) -> Notification: ...

    def list_due(self, now: datetime | None = None) -> list[Notification]: ...

    def claim(self, notification_id: int) -> bool: ...

    def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int = 20,
    ) -> list[Notification]: ...

    def mark_read(self, notification_ids: list[int]) -> int: ...

    def pending_reminders_for_event(self, event_id: int) -> list[Notification]: ...

    def reschedule_reminder(
        self, notification_id: int, scheduled_for: datetime, title: str, message: str,
    ) -> bool: ...

    def cancel_pending_for_event(self, event_id: int) -> int: ...


class ProfileStore(Protocol):
    """Behavioral profile persistence — at most one profile per user."""

    def get_profile(self, user_id: str) -> BehavioralProfile | None: ...

    def save_profile(self, profile: BehavioralProfile) -> BehavioralProfile: ...
