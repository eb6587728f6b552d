"""
SmartCal Assistant — UI-Agnostic Action Service.

Service layer that orchestrates all business logic:
extract text -> store event -> create "created" and "reminder"
notifications -> arm the session's reminder countdown, plus event edits,
deletions, the notification inbox and behavioral profiles.

Each UI adapter (Telegram, web) calls this service and renders the
response objects in its own way.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import TYPE_CHECKING

from src.core.patterns import INITIAL_WINDOW, REFRESH_WINDOW, compute_profile, update_profile
from src.core.temporal import resolve
from src.core.timers import DEFAULT_LEAD_MINUTES, reminder_text
from src.data.models import CATEGORIES, BehavioralProfile

if TYPE_CHECKING:
    from src.core.extractor import EventDraft
    from src.core.timers import Claim, TimerRegistry
    from src.data.models import Event, Notification
    from src.ports.store_port import EventStore, NotificationStore, ProfileStore

logger = logging.getLogger(__name__)

DEFAULT_MEETING_TIMES = ["09:00", "14:00"]
EDITABLE_FIELDS = ("title", "date", "time", "duration", "location", "category", "description")


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str


@dataclass
class EventCreatedResponse(ServiceResponse):
    event: Event | None = None
    reminder: Notification | None = None
    confidence: float = 0.0
    degraded: bool = False


@dataclass
class ErrorResponse(ServiceResponse):
    cause: str = ""


@dataclass
class CreatedEvent:
    event: Event
    reminder: Notification | None = None


# ---------------------------------------------------------------------------
# ActionService
# ---------------------------------------------------------------------------


class ActionService:
    """Orchestrates events, notifications and profiles.

    Returns records or structured response objects — never sends messages
    directly. Timer registries are passed in per call because they belong
    to the caller's session.
    """

    def __init__(
        self,
        events: EventStore,
        notifications: NotificationStore,
        profiles: ProfileStore,
        lead_minutes: int = DEFAULT_LEAD_MINUTES,
        tz: tzinfo | None = None,
    ) -> None:
        self._events = events
        self._notifications = notifications
        self._profiles = profiles
        self._lead_minutes = lead_minutes
        self._tz = tz

    def _now(self) -> datetime:
        return datetime.now(self._tz or timezone.utc)

    def _claimer(self, notification_id: int) -> Claim:
        """Countdown hook that takes the stored reminder through the same claim as the sweep."""

        async def claim() -> bool:
            return await asyncio.to_thread(self._notifications.claim, notification_id)

        return claim

    # ------------------------------------------------------------------
    # Public: free-text capture
    # ------------------------------------------------------------------

    async def create_from_text(
        self,
        user_id: str,
        text: str,
        timers: TimerRegistry | None = None,
        now: datetime | None = None,
    ) -> ServiceResponse:
        """Extract an event from free text and create it.

        Every failure comes back as an ErrorResponse carrying the cause, so
        the user's text is never dropped silently.
        """
        from src.core.extractor import BackendUnavailable, Degraded, ExtractionFailed, extract_event

        try:
            result = await extract_event(text, now=now)
        except BackendUnavailable as exc:
            logger.warning("Extraction skipped, backend unavailable: %s", exc)
            return ErrorResponse(
                kind=ResponseKind.ERROR,
                message="The assistant's language model is offline. Please try again shortly.",
                cause=str(exc),
            )
        except ExtractionFailed as exc:
            logger.error("Extraction failed for '%s': %s", text[:80], exc)
            return ErrorResponse(
                kind=ResponseKind.ERROR,
                message="Failed to parse input.",
                cause=str(exc),
            )
        except Exception as exc:
            logger.error("Unexpected extraction error: %s", exc)
            return ErrorResponse(
                kind=ResponseKind.ERROR,
                message="Failed to parse input.",
                cause=str(exc) or type(exc).__name__,
            )

        try:
            created = self.create_event(user_id, result.draft, timers=timers, now=now)
        except Exception as exc:
            logger.error("Failed to create event for user %s: %s", user_id, exc)
            return ErrorResponse(
                kind=ResponseKind.ERROR,
                message="Failed to create event.",
                cause=str(exc) or type(exc).__name__,
            )

        degraded = isinstance(result, Degraded)
        message = f"Event created: {created.event.title}"
        if created.reminder is not None:
            message += f". You will receive a reminder {self._lead_minutes} minutes before the event."
        if degraded:
            message += " I wasn't fully sure about the details — please double-check them."

        return EventCreatedResponse(
            kind=ResponseKind.SUCCESS,
            message=message,
            event=created.event,
            reminder=created.reminder,
            confidence=result.confidence,
            degraded=degraded,
        )

    # ------------------------------------------------------------------
    # Public: event lifecycle
    # ------------------------------------------------------------------

    def create_event(
        self,
        user_id: str,
        draft: EventDraft,
        timers: TimerRegistry | None = None,
        now: datetime | None = None,
    ) -> CreatedEvent:
        """Persist a draft with its "created" notification and future reminder.

        The writes are independent: if the reminder can't be stored, the
        event and its "created" notification still stand.
        """
        if now is None:
            now = self._now()

        event = self._events.create_event(
            user_id=user_id,
            title=draft.title,
            start=draft.start,
            end=draft.end,
            location=draft.location,
            attendees=draft.attendees,
            category=draft.category,
            description=draft.description,
            priority=draft.priority,
            is_recurring=draft.is_recurring,
        )

        start_local = event.start.astimezone(self._tz) if self._tz else event.start
        self._notifications.create_notification(
            user_id=user_id,
            event_id=event.id,
            type="created",
            title="Event Created",
            message=f"{event.title} scheduled for {start_local.strftime('%b %d, %H:%M')}",
            sent=True,
        )

        reminder = None
        try:
            reminder = self._schedule_reminder(event, now)
        except Exception as exc:
            logger.error("Event #%d saved but its reminder could not be stored: %s", event.id, exc)

        if reminder is not None and timers is not None:
            timers.arm(
                event.id, reminder.scheduled_for, reminder.title, reminder.message,
                now=now, claim=self._claimer(reminder.id),
            )

        if event.attendees:
            logger.info("Event #%d created with attendees: %s", event.id, ", ".join(event.attendees))
        return CreatedEvent(event=event, reminder=reminder)

    def _schedule_reminder(self, event: Event, now: datetime) -> Notification | None:
        reminder_at = event.start - timedelta(minutes=self._lead_minutes)
        if reminder_at <= now:
            logger.info("No reminder for event #%d: reminder time already passed", event.id)
            return None

        title, body = reminder_text(event, self._lead_minutes)
        return self._notifications.create_notification(
            user_id=event.user_id,
            event_id=event.id,
            type="reminder",
            title=title,
            message=body,
            sent=False,
            scheduled_for=reminder_at,
        )

    def update_event(
        self,
        event_id: int,
        timers: TimerRegistry | None = None,
        now: datetime | None = None,
        user_id: str | None = None,
        **changes,
    ) -> Event | None:
        """Apply changes, then move (or drop) the event's pending reminder.

        When `user_id` is given, events owned by someone else are left alone.
        """
        if user_id is not None:
            current = self._events.get_event(event_id)
            if current is None or current.user_id != user_id:
                return None

        if timers is not None:
            timers.cancel(event_id)

        event = self._events.update_event(event_id, **changes)
        if event is None:
            return None
        if now is None:
            now = self._now()

        reminder_at = event.start - timedelta(minutes=self._lead_minutes)
        title, body = reminder_text(event, self._lead_minutes)
        pending = self._notifications.pending_reminders_for_event(event_id)

        reminder_id = None
        if reminder_at <= now:
            self._notifications.cancel_pending_for_event(event_id)
        elif pending:
            for reminder in pending:
                self._notifications.reschedule_reminder(reminder.id, reminder_at, title, body)
            reminder_id = pending[0].id
        else:
            reminder = self._schedule_reminder(event, now)
            reminder_id = reminder.id if reminder is not None else None

        if timers is not None and reminder_id is not None:
            timers.arm(
                event_id, reminder_at, title, body, now=now, claim=self._claimer(reminder_id),
            )

        self._notifications.create_notification(
            user_id=event.user_id,
            event_id=event_id,
            type="updated",
            title="Event Updated",
            message=f"{event.title} was updated",
            sent=True,
        )
        return event

    def edit_event(
        self,
        event_id: int,
        edits: dict[str, str],
        timers: TimerRegistry | None = None,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> Event | None:
        """Apply loose user edits such as {"date": "tomorrow", "time": "15:00"}.

        "date" and "time" move the start and keep the event's length;
        "duration" (minutes) changes the length. Returns None when the event
        is missing or not owned by `user_id`.

        Raises:
            ValueError: unknown field or unreadable value.
        """
        unknown = set(edits) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown field(s): {', '.join(sorted(unknown))}")

        event = self._events.get_event(event_id)
        if event is None or (user_id is not None and event.user_id != user_id):
            return None
        if now is None:
            now = self._now()

        changes: dict = {}
        if "title" in edits:
            if not edits["title"].strip():
                raise ValueError("Title cannot be empty")
            changes["title"] = edits["title"].strip()
        for key in ("location", "description"):
            if key in edits:
                changes[key] = edits[key].strip() or None
        if "category" in edits:
            category = edits["category"].strip().lower()
            if category not in CATEGORIES:
                raise ValueError(f"Category must be one of: {', '.join(CATEGORIES)}")
            changes["category"] = category

        length = event.end - event.start
        if "duration" in edits:
            try:
                minutes = int(edits["duration"])
            except ValueError:
                raise ValueError(f"Duration must be whole minutes, got '{edits['duration']}'") from None
            if minutes <= 0:
                raise ValueError("Duration must be positive")
            length = timedelta(minutes=minutes)

        start = event.start
        if "time" in edits:
            try:
                datetime.strptime(edits["time"].strip(), "%H:%M")
            except ValueError:
                raise ValueError(f"Time must be HH:MM, got '{edits['time']}'") from None
        if "date" in edits or "time" in edits:
            start_local = event.start.astimezone(self._tz) if self._tz else event.start
            if "date" in edits:
                now_local = now.astimezone(self._tz) if self._tz else now
                start = resolve(
                    edits["date"], edits.get("time") or start_local.strftime("%H:%M"), now=now_local,
                )
            else:
                start = resolve(None, edits["time"], now=start_local)

        if start != event.start or "duration" in edits:
            changes["start"] = start
            changes["end"] = start + length

        return self.update_event(event_id, timers=timers, now=now, **changes)

    def delete_event(
        self,
        event_id: int,
        timers: TimerRegistry | None = None,
        user_id: str | None = None,
    ) -> bool:
        """Delete an event, its live countdown and any reminder not yet sent.

        When `user_id` is given, events owned by someone else are left alone.
        """
        event = self._events.get_event(event_id)
        if event is None or (user_id is not None and event.user_id != user_id):
            return False

        if timers is not None:
            timers.cancel(event_id)

        self._notifications.cancel_pending_for_event(event_id)
        deleted = self._events.delete_event(event_id)
        if deleted:
            self._notifications.create_notification(
                user_id=event.user_id,
                event_id=event_id,
                type="cancelled",
                title="Event Cancelled",
                message=f"{event.title} was cancelled",
                sent=True,
            )
        return deleted

    def list_events(
        self, user_id: str, start: datetime | None = None, end: datetime | None = None,
    ) -> list[Event]:
        return self._events.list_events(user_id, start=start, end=end)

    # ------------------------------------------------------------------
    # Public: notification inbox
    # ------------------------------------------------------------------

    def notifications(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        return self._notifications.list_for_user(user_id, unread_only=unread_only, limit=20)

    def mark_read(self, notification_ids: list[int]) -> int:
        return self._notifications.mark_read(notification_ids)

    # ------------------------------------------------------------------
    # Public: behavioral profile
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str, now: datetime | None = None) -> BehavioralProfile:
        """Return the stored profile, computing it from recent history on first use.

        With no history at all a default profile is returned and not stored.
        """
        profile = self._profiles.get_profile(user_id)
        if profile is not None:
            return profile

        events = self._events.recent_events(user_id, limit=INITIAL_WINDOW)
        if not events:
            return BehavioralProfile(user_id=user_id, common_meeting_times=list(DEFAULT_MEETING_TIMES))

        profile = compute_profile(user_id, events, now=now or self._now(), tz=self._tz)
        return self._profiles.save_profile(profile)

    def refresh_profile(self, user_id: str, now: datetime | None = None) -> BehavioralProfile | None:
        """Recompute the profile from the latest events. None if the user has no events."""
        events = self._events.recent_events(user_id, limit=REFRESH_WINDOW)
        if not events:
            logger.info("No events found for user %s — profile not refreshed", user_id)
            return None

        now = now or self._now()
        existing = self._profiles.get_profile(user_id)
        if existing is None:
            profile = compute_profile(user_id, events, now=now, tz=self._tz)
        else:
            profile = update_profile(existing, events, now=now, tz=self._tz)
        return self._profiles.save_profile(profile)
