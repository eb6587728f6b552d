"""Pattern learning — pure business logic.

Folds a user's event history into a BehavioralProfile: favourite time
slots, typical duration, frequent collaborators, preferred categories and
recent meeting cadence.

No I/O: this module only transforms data. Persisting the profile is the
caller's job.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable

from src.data.models import DEFAULT_CATEGORY, BehavioralProfile, Event, MeetingFrequency

logger = logging.getLogger(__name__)

TOP_TIME_SLOTS = 5
TOP_ATTENDEES = 10
DEFAULT_MEETING_DURATION = 60

# History windows used by the action service
INITIAL_WINDOW = 50
REFRESH_WINDOW = 100


def _time_slot(event: Event, tz: tzinfo | None) -> str:
    start = event.start.astimezone(tz) if tz is not None else event.start
    return start.strftime("%H:%M")


def _top(counts: Counter, n: int | None = None) -> list[str]:
    # most_common keeps first-seen order among equal counts
    return [key for key, _ in counts.most_common(n)]


def average_duration(events: list[Event]) -> int:
    """Mean event length in whole minutes, DEFAULT_MEETING_DURATION if empty."""
    if not events:
        return DEFAULT_MEETING_DURATION
    total = sum(ev.duration_minutes for ev in events)
    # halves round up
    return int(total / len(events) + 0.5)


def preferred_categories(events: list[Event]) -> list[str]:
    """Categories used more than once, most used first; never empty."""
    counts = Counter(ev.category for ev in events if ev.category)
    preferred = [cat for cat, count in counts.most_common() if count > 1]
    return preferred or [DEFAULT_CATEGORY]


def meeting_frequency(events: list[Event], now: datetime) -> MeetingFrequency:
    """Count events that started within the last day and the last week of `now`.

    Events still in the future are not counted.
    """
    day_ago = now - timedelta(days=1)
    week_ago = now - timedelta(days=7)
    return MeetingFrequency(
        daily=sum(1 for ev in events if day_ago <= ev.start <= now),
        weekly=sum(1 for ev in events if week_ago <= ev.start <= now),
    )


def compute_profile(
    user_id: str,
    events: Iterable[Event],
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> BehavioralProfile:
    """Build a profile from `events` (conventionally most recent first).

    Args:
        user_id: Owner of the profile.
        events: Historical events. Order only matters for tie-breaking.
        now: Reference instant for the daily/weekly counts.
        tz: Zone used to read each event's time of day. Defaults to the
            zone the event start already carries.
    """
    events = list(events)
    if now is None:
        now = datetime.now(timezone.utc)

    slot_counts = Counter(_time_slot(ev, tz) for ev in events)
    attendee_counts = Counter(name for ev in events for name in ev.attendees)

    profile = BehavioralProfile(
        user_id=user_id,
        common_meeting_times=_top(slot_counts, TOP_TIME_SLOTS),
        average_meeting_duration=average_duration(events),
        frequent_attendees=_top(attendee_counts, TOP_ATTENDEES),
        preferred_categories=preferred_categories(events),
        meeting_frequency=meeting_frequency(events, now),
        last_updated=now,
    )
    logger.debug(
        "Profile for %s from %d events: times=%s avg=%d",
        user_id, len(events), profile.common_meeting_times, profile.average_meeting_duration,
    )
    return profile


def update_profile(
    profile: BehavioralProfile,
    events: Iterable[Event],
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> BehavioralProfile:
    """Return a recomputed copy of `profile`; the original is left untouched."""
    fresh = compute_profile(profile.user_id, events, now=now, tz=tz)
    return replace(
        profile,
        common_meeting_times=fresh.common_meeting_times,
        average_meeting_duration=fresh.average_meeting_duration,
        frequent_attendees=fresh.frequent_attendees,
        preferred_categories=fresh.preferred_categories,
        meeting_frequency=fresh.meeting_frequency,
        last_updated=fresh.last_updated,
    )
