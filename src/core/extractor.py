"""
SmartCal Assistant — Event Extractor.

Brain of the Capture System: converts a free-text appointment description
into a structured event draft using the configured generation backend.

The backend's reply is untyped text, so every extraction ends in one of
three explicit outcomes:

    Strict(draft)            reply parsed as a JSON object
    Degraded(draft, reason)  reply was malformed; fields recovered by regex,
                             confidence pinned at 0.5
    Failed(reason)           even the regex recovery broke
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from src.core.fallback import extract_field
from src.core.llm import complete, health_check
from src.core.temporal import DEFAULT_DURATION_MINUTES, derive_end, resolve
from src.data.models import CATEGORIES, DEFAULT_CATEGORY, PRIORITIES

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Event"
DEFAULT_CONFIDENCE = 0.8
DEGRADED_CONFIDENCE = 0.5
FALLBACK_TIME = "09:00"
MAX_DURATION_MINUTES = 7 * 24 * 60


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BackendUnavailable(Exception):
    """The generation backend did not pass its health check. Retryable."""


class MalformedGenerationOutput(Exception):
    """The backend reply could not be parsed as a JSON event object."""


class ExtractionFailed(Exception):
    """Both the strict parse and the fallback recovery failed."""


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def _coerce_category(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in CATEGORIES:
        return value.strip().lower()
    if value is not None:
        logger.info("Unknown category %r — defaulting to '%s'", value, DEFAULT_CATEGORY)
    return DEFAULT_CATEGORY


def _coerce_duration(value: Any) -> int:
    """Whole positive minutes from an int, float or "90"/"90 minutes" string.

    Capped at MAX_DURATION_MINUTES; anything non-finite or non-positive
    becomes DEFAULT_DURATION_MINUTES.
    """
    if isinstance(value, bool):
        return DEFAULT_DURATION_MINUTES
    if isinstance(value, float) and not math.isfinite(value):
        logger.info("Non-finite duration %r — defaulting to %d", value, DEFAULT_DURATION_MINUTES)
        return DEFAULT_DURATION_MINUTES
    if isinstance(value, (int, float)):
        minutes = int(round(value))
    elif isinstance(value, str):
        match = re.match(r"\s*(\d+)", value)
        minutes = int(match.group(1)) if match else 0
    else:
        minutes = 0
    if minutes <= 0:
        return DEFAULT_DURATION_MINUTES
    if minutes > MAX_DURATION_MINUTES:
        logger.info("Duration %d exceeds %d minutes — capping", minutes, MAX_DURATION_MINUTES)
        return MAX_DURATION_MINUTES
    return minutes


def _dedupe_attendees(names: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        key = name.casefold()
        if key not in seen:
            seen.add(key)
            result.append(name)
    return result


class GeneratedEvent(BaseModel):
    """Fields the backend is asked to produce. Every field is optional.

    JSON example:
    {
        "title": "Team Meeting",
        "date": "2024-10-26",
        "time": "14:00",
        "duration": 60,
        "location": "Conference Room",
        "attendees": ["John", "Sarah"],
        "category": "meeting",
        "description": "Weekly team sync",
        "confidence": 0.95
    }
    """
    title: str | None = None
    date: str | None = None
    time: str | None = None
    duration: int = DEFAULT_DURATION_MINUTES
    location: str | None = None
    attendees: list[str] = []
    category: str = DEFAULT_CATEGORY
    description: str | None = None
    confidence: float | None = None
    is_recurring: bool = False

    @field_validator("title", "date", "time", "location", "description", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> str | None:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("duration", mode="before")
    @classmethod
    def parse_duration(cls, v: Any) -> int:
        return _coerce_duration(v)

    @field_validator("category", mode="before")
    @classmethod
    def parse_category(cls, v: Any) -> str:
        return _coerce_category(v)

    @field_validator("attendees", mode="before")
    @classmethod
    def parse_attendees(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, list):
            return []
        return [str(item).strip() for item in v if item is not None and str(item).strip()]

    @field_validator("confidence", mode="before")
    @classmethod
    def parse_confidence(cls, v: Any) -> float | None:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        return min(max(value, 0.0), 1.0)

    @field_validator("is_recurring", mode="before")
    @classmethod
    def parse_recurring(cls, v: Any) -> bool:
        return v is True or (isinstance(v, str) and v.strip().lower() == "true")


class EventDraft(BaseModel):
    """Structured event ready to be persisted."""
    title: str = DEFAULT_TITLE
    start: datetime
    end: datetime
    location: str | None = None
    attendees: list[str] = []
    category: str = DEFAULT_CATEGORY
    description: str | None = None
    confidence: float = DEFAULT_CONFIDENCE
    priority: str = "medium"
    is_recurring: bool = False

    @field_validator("attendees")
    @classmethod
    def unique_attendees(cls, v: list[str]) -> list[str]:
        return _dedupe_attendees(v)

    @field_validator("category", mode="before")
    @classmethod
    def valid_category(cls, v: Any) -> str:
        return _coerce_category(v)

    @field_validator("priority", mode="before")
    @classmethod
    def valid_priority(cls, v: Any) -> str:
        return v if v in PRIORITIES else "medium"

    @field_validator("confidence")
    @classmethod
    def confidence_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {v}")
        return v

    @model_validator(mode="after")
    def end_not_before_start(self) -> EventDraft:
        if self.end < self.start:
            raise ValueError("end must not precede start")
        return self


@dataclass(frozen=True)
class Strict:
    draft: EventDraft

    @property
    def confidence(self) -> float:
        return self.draft.confidence


@dataclass(frozen=True)
class Degraded:
    draft: EventDraft
    reason: str

    @property
    def confidence(self) -> float:
        return self.draft.confidence


@dataclass(frozen=True)
class Failed:
    reason: str


ExtractionResult = Strict | Degraded | Failed


# ---------------------------------------------------------------------------
# Prompt for the generation backend
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are a calendar assistant. Parse the user's natural language input into calendar event details.

Today's date is {today}.

Extract the following information:
- title: The event title/subject
- date: The date in ISO format (YYYY-MM-DD), or one of "today", "tomorrow", "next week", "next <weekday>"
- time: The time in 24-hour format (HH:MM)
- duration: How long the event lasts (in minutes, as a number)
- location: Where the event takes place
- attendees: List of people attending (as array)
- category: One of [meeting, task, reminder, personal, work]
- description: Any additional details
- is_recurring: true if the event repeats ("every Monday", "daily standup")
- confidence: How sure you are about the extraction, between 0 and 1

If information is not provided, use these defaults:
- date: "{today}"
- time: "09:00"
- duration: 60
- category: "meeting"

Example response format:
{{"title": "Team Meeting", "date": "2024-10-26", "time": "14:00", "duration": 60, "location": "Conference Room", "attendees": ["John", "Sarah"], "category": "meeting", "description": "Weekly team sync", "is_recurring": false, "confidence": 0.95}}

IMPORTANT: Respond ONLY with a single valid JSON object. No explanatory text before or after. No markdown formatting.
"""


# ---------------------------------------------------------------------------
# Response Cleaning Functions
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code fences from the backend's raw response."""
    return _FENCE_RE.sub("", raw_text).strip()


def _find_json_object(text: str) -> str | None:
    """Return the first balanced {...} substring, ignoring braces inside strings."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _parse_strict(raw_text: str) -> GeneratedEvent:
    """Parse the reply as a JSON event object or raise MalformedGenerationOutput."""
    candidate = _find_json_object(_clean_llm_response(raw_text))
    if candidate is None:
        raise MalformedGenerationOutput("no JSON object found in response")

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedGenerationOutput(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedGenerationOutput(f"expected a JSON object, got {type(data).__name__}")

    try:
        return GeneratedEvent(**data)
    except (ValidationError, TypeError, OverflowError) as exc:
        raise MalformedGenerationOutput(f"unexpected field types: {exc}") from exc


def _parse_fallback(raw_text: str) -> GeneratedEvent:
    """Recover individual fields by pattern matching."""
    return GeneratedEvent(
        title=extract_field(raw_text, "title") or DEFAULT_TITLE,
        date=extract_field(raw_text, "date"),
        time=extract_field(raw_text, "time") or FALLBACK_TIME,
        duration=extract_field(raw_text, "duration") or DEFAULT_DURATION_MINUTES,
        location=extract_field(raw_text, "location"),
        category=extract_field(raw_text, "category"),
        description=extract_field(raw_text, "description"),
        confidence=DEGRADED_CONFIDENCE,
    )


# ---------------------------------------------------------------------------
# Draft construction
# ---------------------------------------------------------------------------


def _build_draft(fields: GeneratedEvent, now: datetime) -> EventDraft:
    start = resolve(fields.date, fields.time, now=now)
    end = derive_end(start, fields.duration)
    return EventDraft(
        title=fields.title or DEFAULT_TITLE,
        start=start,
        end=end,
        location=fields.location,
        attendees=fields.attendees,
        category=fields.category,
        description=fields.description,
        confidence=DEFAULT_CONFIDENCE if fields.confidence is None else fields.confidence,
        is_recurring=fields.is_recurring,
    )


def interpret_response(raw_text: str, now: datetime) -> ExtractionResult:
    """Turn raw backend text into Strict, Degraded or Failed."""
    try:
        fields = _parse_strict(raw_text)
        return Strict(_build_draft(fields, now))
    except MalformedGenerationOutput as exc:
        logger.warning("Malformed backend output (%s) — using fallback extraction", exc)
        reason = str(exc)
    except (ValueError, OverflowError) as exc:
        logger.warning("Backend fields unusable (%s) — using fallback extraction", exc)
        reason = f"unusable field values: {exc}"

    try:
        fields = _parse_fallback(raw_text)
        draft = _build_draft(fields, now)
    except Exception as exc:
        logger.error("Fallback extraction failed: %s — raw: '%s'", exc, raw_text)
        return Failed(reason=f"{reason}; fallback failed: {exc}")

    logger.info("Fallback draft: '%s' at %s", draft.title, draft.start.isoformat())
    return Degraded(draft, reason=reason)


def _now() -> datetime:
    from src.config import settings

    return datetime.now(ZoneInfo(settings.TIMEZONE))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def extract_event(user_text: str, *, now: datetime | None = None) -> Strict | Degraded:
    """Extract a structured event draft from free text.

    Raises:
        BackendUnavailable: the backend failed its health check; no
            generation request was made.
        ExtractionFailed: neither the strict parse nor the fallback produced
            a draft.
    """
    if not await health_check():
        raise BackendUnavailable("Generation backend is not reachable. Please start it and try again.")

    if now is None:
        now = _now()

    raw_text = await complete(
        system=_SYSTEM_PROMPT.format(today=now.date().isoformat()),
        user_message=f'Input: "{user_text}"',
        max_tokens=512,
    )
    logger.debug("Backend raw response: %s", raw_text)

    result = interpret_response(raw_text, now)
    if isinstance(result, Failed):
        raise ExtractionFailed(result.reason)

    logger.info(
        "Extracted '%s' at %s (%s, confidence %.2f)",
        result.draft.title, result.draft.start.isoformat(),
        type(result).__name__.lower(), result.confidence,
    )
    return result
