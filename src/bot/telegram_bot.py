"""
SmartCal Assistant — Telegram Bot.

Telegram is the chat front-end of SmartCal. Free-text capture, the event
list, the notification inbox and behavioral patterns all flow through
this bot, and a repeating job runs the reminder sweep.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import shlex
from datetime import datetime, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings

if TYPE_CHECKING:
    from src.core.action_service import ActionService
    from src.core.timers import TimerRegistry
    from src.data.db import NotificationDB

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(context: ContextTypes.DEFAULT_TYPE) -> ActionService:
    return context.bot_data["service"]


def _timers(update: Update, context: ContextTypes.DEFAULT_TYPE) -> TimerRegistry:
    """Return this chat's countdown registry, creating it on first use."""
    timers = context.chat_data.get("timers")
    if timers is None:
        from src.adapters.telegram_notifier import TelegramChannel
        from src.core.timers import TimerRegistry

        channel = TelegramChannel(context.bot, update.effective_chat.id)
        timers = TimerRegistry(channel, lead_minutes=settings.REMINDER_LEAD_MINUTES)
        context.chat_data["timers"] = timers
    return timers


def _user_id(update: Update) -> str:
    return str(update.effective_user.id)


def _local(dt: datetime) -> datetime:
    return dt.astimezone(ZoneInfo(settings.TIMEZONE))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *SmartCal Assistant*!\n\n"
        "Tell me about an event in plain words and I'll put it on your calendar:\n"
        "• \"Lunch with Dana tomorrow at 13:00 at Café Nero\"\n"
        "• \"Dentist next tuesday 10:30, 45 minutes\"\n\n"
        f"You'll get a reminder {settings.REMINDER_LEAD_MINUTES} minutes before each event.\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/events — List your upcoming events\n"
        "/edit <id> field=value ... — Change an event (title, date, time, duration, location, category, description)\n"
        "/delete <id> — Delete an event and its reminder\n"
        "/notifications — Show your latest notifications (/notifications unread)\n"
        "/read <id> ... — Mark notifications as read (/read all)\n"
        "/patterns — Show your scheduling patterns\n"
        "/learn — Re-learn your patterns from recent events\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /events — list upcoming events."""
    try:
        events = _service(context).list_events(_user_id(update), start=datetime.now(timezone.utc))
    except Exception as exc:
        logger.error("/events error: %s", exc)
        await update.message.reply_text("Couldn't load your events. Please try again.")
        return

    if not events:
        await update.message.reply_text("No upcoming events.")
        return

    lines = ["Upcoming events:\n"]
    for ev in events:
        start = _local(ev.start)
        line = f"{ev.id} — {start:%a %d %b %H:%M} {ev.title} ({ev.duration_minutes:.0f} min, {ev.category})"
        if ev.location:
            line += f" @ {ev.location}"
        lines.append(line)
    await update.message.reply_text("\n".join(lines))


def _parse_edits(tokens: list[str]) -> dict[str, str]:
    """Turn `time=15:00 title="Team sync"` style arguments into a field dict."""
    edits = {}
    for token in shlex.split(" ".join(tokens)):
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected field=value, got '{token}'")
        edits[key.strip().lower()] = value
    return edits


@authorized_only
async def cmd_edit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /edit <id> field=value ... — change an event and move its reminder."""
    args = context.args
    if not args or len(args) < 2:
        await update.message.reply_text(
            "Usage: /edit <event_id> field=value ...\n"
            "Example: /edit 7 date=tomorrow time=15:00 title=\"Team sync\""
        )
        return

    try:
        event_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid event ID. Use /events to see valid IDs.")
        return

    try:
        edits = _parse_edits(args[1:])
        event = _service(context).edit_event(
            event_id, edits, timers=_timers(update, context), user_id=_user_id(update),
        )
    except ValueError as exc:
        await update.message.reply_text(f"Couldn't edit event {event_id}: {exc}")
        return
    except Exception as exc:
        logger.error("/edit error: %s", exc)
        await update.message.reply_text(f"Couldn't edit event {event_id}. Please try again.")
        return

    if event is None:
        await update.message.reply_text(f"No event with ID {event_id}. Use /events to see valid IDs.")
        return

    await update.message.reply_text(
        f"✅ Event {event_id} updated: {event.title}, "
        f"{_local(event.start):%a %d %b %H:%M}–{_local(event.end):%H:%M}"
    )


@authorized_only
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete <id> — delete an event and cancel its reminder."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /delete <event_id>\nUse /events to see IDs.")
        return

    try:
        event_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid event ID. Use /events to see valid IDs.")
        return

    try:
        deleted = _service(context).delete_event(
            event_id, timers=_timers(update, context), user_id=_user_id(update),
        )
    except Exception as exc:
        logger.error("/delete error: %s", exc)
        await update.message.reply_text(f"Couldn't delete event {event_id}. Please try again.")
        return

    if deleted:
        await update.message.reply_text(f"✅ Event {event_id} deleted.")
    else:
        await update.message.reply_text(f"No event with ID {event_id}. Use /events to see valid IDs.")


@authorized_only
async def cmd_notifications(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /notifications [unread] — show the latest notifications."""
    unread_only = bool(context.args) and context.args[0].lower() == "unread"

    try:
        items = _service(context).notifications(_user_id(update), unread_only=unread_only)
    except Exception as exc:
        logger.error("/notifications error: %s", exc)
        await update.message.reply_text("Couldn't load notifications. Please try again.")
        return

    if not items:
        await update.message.reply_text("No unread notifications." if unread_only else "No notifications.")
        return

    lines = ["Notifications:\n"]
    for n in items:
        marker = " " if n.read else "•"
        lines.append(f"{marker} {n.id} — {n.title}: {n.message}")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_read(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /read <id> ... | all — mark notifications as read."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /read <id> [<id> ...] or /read all")
        return

    service = _service(context)
    if args[0].lower() == "all":
        ids = [n.id for n in service.notifications(_user_id(update), unread_only=True)]
    else:
        try:
            ids = [int(a) for a in args]
        except ValueError:
            await update.message.reply_text("Notification IDs must be numbers.")
            return

    try:
        count = service.mark_read(ids)
    except Exception as exc:
        logger.error("/read error: %s", exc)
        await update.message.reply_text("Couldn't update notifications. Please try again.")
        return

    await update.message.reply_text(f"Marked {count} notification(s) as read.")


def _format_profile(profile) -> str:
    lines = [
        "Your scheduling patterns:\n",
        f"Common times: {', '.join(profile.common_meeting_times) or '—'}",
        f"Average duration: {profile.average_meeting_duration} min",
        f"Preferred categories: {', '.join(profile.preferred_categories)}",
        f"Events in the last day / week: {profile.meeting_frequency.daily} / {profile.meeting_frequency.weekly}",
    ]
    if profile.frequent_attendees:
        lines.append(f"Frequent attendees: {', '.join(profile.frequent_attendees)}")
    return "\n".join(lines)


@authorized_only
async def cmd_patterns(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /patterns — show the behavioral profile."""
    try:
        profile = _service(context).get_profile(_user_id(update))
    except Exception as exc:
        logger.error("/patterns error: %s", exc)
        await update.message.reply_text("Couldn't load your patterns. Please try again.")
        return
    await update.message.reply_text(_format_profile(profile))


@authorized_only
async def cmd_learn(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /learn — recompute the behavioral profile from recent events."""
    try:
        profile = _service(context).refresh_profile(_user_id(update))
    except Exception as exc:
        logger.error("/learn error: %s", exc)
        await update.message.reply_text("Couldn't update your patterns. Please try again.")
        return

    if profile is None:
        await update.message.reply_text("No events found — add some events first.")
        return
    await update.message.reply_text("✅ Patterns updated.\n\n" + _format_profile(profile))


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — extract and create an event."""
    from src.core.action_service import EventCreatedResponse, ResponseKind

    processing_msg = await update.message.reply_text("Processing...")
    response = await _service(context).create_from_text(
        _user_id(update), update.message.text, timers=_timers(update, context),
    )

    if response.kind == ResponseKind.ERROR:
        cause = getattr(response, "cause", "")
        await update.message.reply_text(f"{response.message}\n({cause})" if cause else response.message)
    elif isinstance(response, EventCreatedResponse) and response.event is not None:
        ev = response.event
        text = (
            f"✅ {response.message}\n"
            f"📅 {_local(ev.start):%a %d %b %H:%M}–{_local(ev.end):%H:%M} ({ev.category})"
        )
        if ev.location:
            text += f"\n📍 {ev.location}"
        if ev.attendees:
            text += f"\n👥 {', '.join(ev.attendees)}"
        await update.message.reply_text(text)
    else:
        await update.message.reply_text(response.message)

    try:
        await processing_msg.delete()
    except Exception:
        pass  # Non-critical if delete fails


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    service: ActionService | None = None,
    notifications: NotificationDB | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        service: Action service. Defaults to one backed by the SQLite stores
                 at settings.DATABASE_PATH.
        notifications: Store the reminder sweep claims from. Must be the
                       store the service writes reminders to.
    """
    from src.data.db import EventDB, NotificationDB, ProfileDB

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if notifications is None:
        notifications = NotificationDB()
    if service is None:
        from src.core.action_service import ActionService

        service = ActionService(
            EventDB(),
            notifications,
            ProfileDB(),
            lead_minutes=settings.REMINDER_LEAD_MINUTES,
            tz=ZoneInfo(settings.TIMEZONE),
        )

    app.bot_data["service"] = service

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("events", cmd_events))
    app.add_handler(CommandHandler("edit", cmd_edit))
    app.add_handler(CommandHandler("delete", cmd_delete))
    app.add_handler(CommandHandler("notifications", cmd_notifications))
    app.add_handler(CommandHandler("read", cmd_read))
    app.add_handler(CommandHandler("patterns", cmd_patterns))
    app.add_handler(CommandHandler("learn", cmd_learn))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    # Reminder sweep: delivers reminders whose chat countdown was lost
    _setup_reminder_sweep(app, notifications)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_reminder_sweep(app: Application, store: NotificationDB) -> None:
    """Register the repeating reminder sweep on the job queue."""
    from src.adapters.log_notifier import LogChannel
    from src.adapters.telegram_notifier import TelegramChannel
    from src.core.sweep import run_sweep

    def channel_for(user_id: str) -> TelegramChannel | LogChannel:
        # Private chats share the user's id
        if not user_id.lstrip("-").isdigit():
            return LogChannel(user_id)
        return TelegramChannel(app.bot, int(user_id))

    async def _sweep_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        report = await run_sweep(store, channel_for)
        if report.failed:
            logger.warning("Reminder sweep: %d delivery failure(s)", len(report.failed))

    app.job_queue.run_repeating(
        _sweep_job_callback,
        interval=settings.SWEEP_INTERVAL_SECONDS,
        first=settings.SWEEP_INTERVAL_SECONDS,
        name="reminder_sweep",
    )

    logger.info("Reminder sweep scheduled every %ds", settings.SWEEP_INTERVAL_SECONDS)


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting SmartCal Assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
