"""
SmartCal Assistant — Data Models.

Persisted records: events captured from free text, the notifications
derived from them, and one behavioral profile per user. All datetimes are
timezone-aware; the SQLite layer stores them as UTC ISO strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

CATEGORIES = ("meeting", "task", "reminder", "personal", "work")
DEFAULT_CATEGORY = "meeting"
PRIORITIES = ("low", "medium", "high")
NOTIFICATION_TYPES = ("created", "reminder", "updated", "cancelled")


@dataclass
class Event:
    """A scheduled event owned by one user."""

    id: int
    user_id: str
    title: str
    start: datetime
    end: datetime
    location: str | None = None
    attendees: list[str] = field(default_factory=list)
    category: str = DEFAULT_CATEGORY
    description: str | None = None
    priority: str = "medium"
    is_recurring: bool = False       # flagged only, never expanded
    created_at: datetime | None = None

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


@dataclass
class Notification:
    """An in-app notification; reminders carry `scheduled_for`.

    `sent` only ever moves False → True, through NotificationDB.claim().
    """

    id: int
    user_id: str
    event_id: int
    type: str                            # one of NOTIFICATION_TYPES
    title: str
    message: str
    read: bool = False
    sent: bool = False
    scheduled_for: datetime | None = None
    created_at: datetime | None = None


@dataclass
class MeetingFrequency:
    daily: int = 0
    weekly: int = 0


@dataclass
class BehavioralProfile:
    """Snapshot of a user's scheduling habits. At most one per user."""

    user_id: str
    common_meeting_times: list[str] = field(default_factory=list)   # "HH:MM", most frequent first
    average_meeting_duration: int = 60                              # minutes
    frequent_attendees: list[str] = field(default_factory=list)
    preferred_categories: list[str] = field(default_factory=lambda: [DEFAULT_CATEGORY])
    meeting_frequency: MeetingFrequency = field(default_factory=MeetingFrequency)
    last_updated: datetime | None = None
