"""Temporal resolver — pure date/time logic.

Turns the loose date and time tokens produced by the generation backend
("tomorrow", "next friday", "2025-02-14", "14:30") into an absolute,
timezone-aware instant, and derives an event's end from its duration.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60

_WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def next_weekday(today: datetime, weekday: int) -> datetime:
    """Return the next occurrence of `weekday` strictly after `today`.

    "Next" never means today: on the target weekday itself the result is
    seven days out.
    """
    days_ahead = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead)


def _resolve_relative(phrase: str, now: datetime) -> datetime | None:
    if phrase == "today":
        return now
    if phrase == "tomorrow":
        return now + timedelta(days=1)
    if phrase == "next week":
        return now + timedelta(days=7)
    if phrase.startswith("next "):
        weekday = _WEEKDAYS.get(phrase.removeprefix("next ").strip())
        if weekday is not None:
            return next_weekday(now, weekday)
    return None


def _resolve_date(date_part: str, now: datetime) -> datetime:
    phrase = " ".join(date_part.lower().split())

    relative = _resolve_relative(phrase, now)
    if relative is not None:
        return relative

    if _ISO_DATE_RE.match(phrase):
        try:
            day = date.fromisoformat(phrase)
            return now.replace(year=day.year, month=day.month, day=day.day)
        except ValueError as exc:
            logger.warning("Invalid ISO date '%s': %s — falling back to today", date_part, exc)
            return now

    try:
        parsed = date_parser.parse(date_part, default=now.replace(tzinfo=None))
    except (ValueError, OverflowError) as exc:
        logger.warning("Unrecognized date '%s' (%s) — falling back to today", date_part, exc)
        return now

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=now.tzinfo)
    return parsed.astimezone(now.tzinfo) if now.tzinfo is not None else parsed.replace(tzinfo=None)


def _apply_time(resolved: datetime, time_part: str) -> datetime:
    match = _TIME_RE.match(time_part.strip())
    if match is None:
        logger.warning("Ignoring malformed time '%s' (expected HH:MM)", time_part)
        return resolved

    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        logger.warning("Ignoring out-of-range time '%s'", time_part)
        return resolved
    return resolved.replace(hour=hour, minute=minute, second=0, microsecond=0)


def resolve(
    date_part: str | None = None,
    time_part: str | None = None,
    *,
    now: datetime | None = None,
) -> datetime:
    """Resolve a loose date and an optional "HH:MM" time into an instant.

    Args:
        date_part: None (today), a relative phrase ("today", "tomorrow",
            "next week", "next <weekday>"), an ISO date, or any string
            dateutil can read. Anything unreadable resolves to today.
        time_part: "HH:MM" in 24-hour format. When given, it replaces the
            hour and minute and zeroes seconds; when absent, the current
            time of day is kept.
        now: Reference instant. Defaults to the current local time.

    Returns:
        A datetime carrying the same tzinfo as `now`.
    """
    if now is None:
        now = datetime.now().astimezone()

    resolved = _resolve_date(date_part, now) if date_part and date_part.strip() else now

    if time_part and time_part.strip():
        resolved = _apply_time(resolved, time_part)

    return resolved


def derive_end(start: datetime, duration_minutes: int) -> datetime:
    """Return `start` plus `duration_minutes`.

    Raises ValueError on a non-positive or non-integer duration; callers
    substitute DEFAULT_DURATION_MINUTES first.
    """
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise ValueError(f"duration must be an integer number of minutes, got {duration_minutes!r}")
    if duration_minutes <= 0:
        raise ValueError(f"duration must be positive, got {duration_minutes}")
    return start + timedelta(minutes=duration_minutes)
