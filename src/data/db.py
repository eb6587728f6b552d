"""
SmartCal Assistant — SQLite storage.

Events, notifications and behavioral profiles persist in SQLite across
restarts. Datetimes are stored as fixed-width UTC ISO strings so that SQL
string comparison orders them correctly.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from src.data.models import (
    DEFAULT_CATEGORY,
    BehavioralProfile,
    Event,
    MeetingFrequency,
    Notification,
)

logger = logging.getLogger(__name__)

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def to_db_time(dt: datetime) -> str:
    """Serialize a datetime as a UTC ISO string (naive input is taken as local time)."""
    return dt.astimezone(timezone.utc).strftime(_TS_FORMAT)


def from_db_time(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _SQLiteDB:
    """Shared connection handling: one short-lived connection per operation."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        raise NotImplementedError


class EventDB(_SQLiteDB):
    """SQLite-backed event store."""

    _UPDATABLE = {
        "title", "start", "end", "location", "attendees", "category",
        "description", "priority", "is_recurring",
    }

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      TEXT    NOT NULL,
                    title        TEXT    NOT NULL,
                    start_at     TEXT    NOT NULL,
                    end_at       TEXT    NOT NULL,
                    location     TEXT,
                    attendees    TEXT    NOT NULL DEFAULT '[]',
                    category     TEXT    NOT NULL DEFAULT 'meeting',
                    description  TEXT,
                    priority     TEXT    NOT NULL DEFAULT 'medium',
                    is_recurring INTEGER NOT NULL DEFAULT 0,
                    created_at   TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_user_start ON events (user_id, start_at)"
            )
        logger.debug("Events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            start=from_db_time(row["start_at"]),
            end=from_db_time(row["end_at"]),
            location=row["location"],
            attendees=json.loads(row["attendees"]),
            category=row["category"],
            description=row["description"],
            priority=row["priority"],
            is_recurring=bool(row["is_recurring"]),
            created_at=from_db_time(row["created_at"]),
        )

    def create_event(
        self,
        user_id: str,
        title: str,
        start: datetime,
        end: datetime,
        location: str | None = None,
        attendees: list[str] | None = None,
        category: str = DEFAULT_CATEGORY,
        description: str | None = None,
        priority: str = "medium",
        is_recurring: bool = False,
    ) -> Event:
        """Insert a new event and return it with its identity."""
        if end < start:
            raise ValueError("Event end must not precede its start")

        created_at = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (user_id, title, start_at, end_at, location, attendees,
                     category, description, priority, is_recurring, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, title, to_db_time(start), to_db_time(end), location,
                    json.dumps(attendees or []), category, description, priority,
                    int(is_recurring), to_db_time(created_at),
                ),
            )
            event_id = cursor.lastrowid

        logger.info("Event added: #%d '%s' for user %s", event_id, title, user_id)
        return Event(
            id=event_id,
            user_id=user_id,
            title=title,
            start=start,
            end=end,
            location=location,
            attendees=list(attendees or []),
            category=category,
            description=description,
            priority=priority,
            is_recurring=is_recurring,
            created_at=created_at,
        )

    def get_event(self, event_id: int) -> Event | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def list_events(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Event]:
        """Return a user's events ordered by start, optionally within [start, end]."""
        query = "SELECT * FROM events WHERE user_id = ?"
        params: list = [user_id]
        if start is not None:
            query += " AND start_at >= ?"
            params.append(to_db_time(start))
        if end is not None:
            query += " AND end_at <= ?"
            params.append(to_db_time(end))
        query += " ORDER BY start_at"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def recent_events(self, user_id: str, limit: int = 50) -> list[Event]:
        """Return up to `limit` of a user's events, latest start first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE user_id = ? ORDER BY start_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def update_event(self, event_id: int, **changes) -> Event | None:
        """Apply field changes to an event. Returns the updated event, or None if missing."""
        unknown = set(changes) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update event fields: {', '.join(sorted(unknown))}")

        current = self.get_event(event_id)
        if current is None:
            return None

        for key, value in changes.items():
            setattr(current, key, value)
        if current.end < current.start:
            raise ValueError("Event end must not precede its start")

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE events SET
                    title = ?, start_at = ?, end_at = ?, location = ?, attendees = ?,
                    category = ?, description = ?, priority = ?, is_recurring = ?
                WHERE id = ?
                """,
                (
                    current.title, to_db_time(current.start), to_db_time(current.end),
                    current.location, json.dumps(current.attendees), current.category,
                    current.description, current.priority, int(current.is_recurring),
                    event_id,
                ),
            )
        logger.info("Event #%d updated: %s", event_id, ", ".join(sorted(changes)))
        return current

    def delete_event(self, event_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Event #%d deleted", event_id)
        return deleted


class NotificationDB(_SQLiteDB):
    """SQLite-backed notification store with an atomic reminder claim."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id       TEXT    NOT NULL,
                    event_id      INTEGER NOT NULL,
                    type          TEXT    NOT NULL,
                    title         TEXT    NOT NULL,
                    message       TEXT    NOT NULL,
                    read          INTEGER NOT NULL DEFAULT 0,
                    sent          INTEGER NOT NULL DEFAULT 0,
                    scheduled_for TEXT,
                    created_at    TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_due ON notifications (sent, scheduled_for)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, created_at)"
            )
        logger.debug("Notifications table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            event_id=row["event_id"],
            type=row["type"],
            title=row["title"],
            message=row["message"],
            read=bool(row["read"]),
            sent=bool(row["sent"]),
            scheduled_for=from_db_time(row["scheduled_for"]),
            created_at=from_db_time(row["created_at"]),
        )

    def create_notification(
        self,
        user_id: str,
        event_id: int,
        type: str,
        title: str,
        message: str,
        sent: bool = False,
        scheduled_for: datetime | None = None,
    ) -> Notification:
        created_at = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notifications
                    (user_id, event_id, type, title, message, read, sent, scheduled_for, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    user_id, event_id, type, title, message, int(sent),
                    to_db_time(scheduled_for) if scheduled_for else None,
                    to_db_time(created_at),
                ),
            )
            notification_id = cursor.lastrowid

        logger.info("Notification #%d (%s) created for event #%d", notification_id, type, event_id)
        return Notification(
            id=notification_id,
            user_id=user_id,
            event_id=event_id,
            type=type,
            title=title,
            message=message,
            sent=sent,
            scheduled_for=scheduled_for,
            created_at=created_at,
        )

    def get_notification(self, notification_id: int) -> Notification | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_notification(row)

    def list_due(self, now: datetime | None = None) -> list[Notification]:
        """Return unsent notifications whose scheduled_for <= now, oldest first."""
        if now is None:
            now = _utcnow()
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM notifications
                WHERE sent = 0 AND scheduled_for IS NOT NULL AND scheduled_for <= ?
                ORDER BY scheduled_for, id
                """,
                (to_db_time(now),),
            ).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def claim(self, notification_id: int) -> bool:
        """Atomically flip sent 0 → 1. Only the caller that gets True may deliver."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET sent = 1 WHERE id = ? AND sent = 0",
                (notification_id,),
            )
        return cursor.rowcount == 1

    def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int = 20,
    ) -> list[Notification]:
        """Return a user's notifications, most recent first."""
        query = "SELECT * FROM notifications WHERE user_id = ?"
        params: list = [user_id]
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def mark_read(self, notification_ids: list[int]) -> int:
        if not notification_ids:
            return 0
        placeholders = ", ".join("?" for _ in notification_ids)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE notifications SET read = 1 WHERE id IN ({placeholders})",
                list(notification_ids),
            )
        return cursor.rowcount

    def pending_reminders_for_event(self, event_id: int) -> list[Notification]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE event_id = ? AND type = 'reminder' AND sent = 0",
                (event_id,),
            ).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def reschedule_reminder(
        self, notification_id: int, scheduled_for: datetime, title: str, message: str,
    ) -> bool:
        """Move an unsent reminder. Returns False if it was already claimed."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE notifications SET scheduled_for = ?, title = ?, message = ?
                WHERE id = ? AND sent = 0
                """,
                (to_db_time(scheduled_for), title, message, notification_id),
            )
        return cursor.rowcount == 1

    def cancel_pending_for_event(self, event_id: int) -> int:
        """Drop unsent reminders for an event. Returns how many were removed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM notifications WHERE event_id = ? AND type = 'reminder' AND sent = 0",
                (event_id,),
            )
        if cursor.rowcount:
            logger.info("Cancelled %d pending reminder(s) for event #%d", cursor.rowcount, event_id)
        return cursor.rowcount


class ProfileDB(_SQLiteDB):
    """SQLite-backed behavioral profiles, one row per user."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    user_id                  TEXT    PRIMARY KEY,
                    common_meeting_times     TEXT    NOT NULL DEFAULT '[]',
                    average_meeting_duration INTEGER NOT NULL DEFAULT 60,
                    frequent_attendees       TEXT    NOT NULL DEFAULT '[]',
                    preferred_categories     TEXT    NOT NULL DEFAULT '["meeting"]',
                    daily_count              INTEGER NOT NULL DEFAULT 0,
                    weekly_count             INTEGER NOT NULL DEFAULT 0,
                    last_updated             TEXT
                )
            """)
        logger.debug("Profiles table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> BehavioralProfile:
        return BehavioralProfile(
            user_id=row["user_id"],
            common_meeting_times=json.loads(row["common_meeting_times"]),
            average_meeting_duration=row["average_meeting_duration"],
            frequent_attendees=json.loads(row["frequent_attendees"]),
            preferred_categories=json.loads(row["preferred_categories"]),
            meeting_frequency=MeetingFrequency(
                daily=row["daily_count"], weekly=row["weekly_count"],
            ),
            last_updated=from_db_time(row["last_updated"]),
        )

    def get_profile(self, user_id: str) -> BehavioralProfile | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_profile(row)

    def save_profile(self, profile: BehavioralProfile) -> BehavioralProfile:
        """Insert or replace the user's single profile."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO profiles
                    (user_id, common_meeting_times, average_meeting_duration,
                     frequent_attendees, preferred_categories, daily_count,
                     weekly_count, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    common_meeting_times     = excluded.common_meeting_times,
                    average_meeting_duration = excluded.average_meeting_duration,
                    frequent_attendees       = excluded.frequent_attendees,
                    preferred_categories     = excluded.preferred_categories,
                    daily_count              = excluded.daily_count,
                    weekly_count             = excluded.weekly_count,
                    last_updated             = excluded.last_updated
                """,
                (
                    profile.user_id,
                    json.dumps(profile.common_meeting_times),
                    profile.average_meeting_duration,
                    json.dumps(profile.frequent_attendees),
                    json.dumps(profile.preferred_categories),
                    profile.meeting_frequency.daily,
                    profile.meeting_frequency.weekly,
                    to_db_time(profile.last_updated) if profile.last_updated else None,
                ),
            )
        logger.info("Profile saved for user %s", profile.user_id)
        return profile
