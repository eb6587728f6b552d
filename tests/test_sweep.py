"""Tests for src.core.sweep — server-side reminder delivery.

Uses real NotificationDB instances on a temp file so the claim is the
actual conditional UPDATE, including sweeps racing each other.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from src.core.sweep import SweepUnauthorized, check_authorization, run_sweep, trigger_sweep
from src.data.db import NotificationDB

NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def _channel():
    channel = MagicMock()
    channel.show = AsyncMock()
    return channel


def _reminder(db, scheduled_for, user_id="u1", event_id=1, title="Upcoming: Standup"):
    return db.create_notification(
        user_id=user_id,
        event_id=event_id,
        type="reminder",
        title=title,
        message="Starting in 15 minutes",
        scheduled_for=scheduled_for,
    )


class TestRunSweep:
    @pytest.mark.asyncio
    async def test_delivers_due_reminders_and_marks_sent(self, notification_db):
        due = _reminder(notification_db, NOW - timedelta(minutes=1))
        channel = _channel()

        report = await run_sweep(notification_db, lambda uid: channel, now=NOW)

        assert report.delivered == [due.id]
        assert report.processed == 1
        channel.show.assert_awaited_once_with(
            "Upcoming: Standup", "Starting in 15 minutes", tag="1", require_interaction=True,
        )
        assert notification_db.get_notification(due.id).sent is True

    @pytest.mark.asyncio
    async def test_future_reminders_are_left_alone(self, notification_db):
        future = _reminder(notification_db, NOW + timedelta(minutes=5))
        channel = _channel()

        report = await run_sweep(notification_db, lambda uid: channel, now=NOW)

        assert report.processed == 0
        channel.show.assert_not_called()
        assert notification_db.get_notification(future.id).sent is False

    @pytest.mark.asyncio
    async def test_reminder_due_exactly_now_is_delivered(self, notification_db):
        _reminder(notification_db, NOW)
        report = await run_sweep(notification_db, lambda uid: _channel(), now=NOW)
        assert report.processed == 1

    @pytest.mark.asyncio
    async def test_second_sweep_delivers_nothing(self, notification_db):
        _reminder(notification_db, NOW - timedelta(minutes=1))
        channel = _channel()

        await run_sweep(notification_db, lambda uid: channel, now=NOW)
        report = await run_sweep(notification_db, lambda uid: channel, now=NOW)

        assert report.processed == 0
        assert channel.show.await_count == 1

    @pytest.mark.asyncio
    async def test_channel_is_resolved_per_user(self, notification_db):
        _reminder(notification_db, NOW - timedelta(minutes=2), user_id="alice")
        _reminder(notification_db, NOW - timedelta(minutes=1), user_id="bob")
        channels = {"alice": _channel(), "bob": _channel()}

        await run_sweep(notification_db, channels.__getitem__, now=NOW)

        channels["alice"].show.assert_awaited_once()
        channels["bob"].show.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_stop_batch(self, notification_db):
        first = _reminder(notification_db, NOW - timedelta(minutes=2), title="First")
        second = _reminder(notification_db, NOW - timedelta(minutes=1), title="Second")
        channel = _channel()
        channel.show = AsyncMock(side_effect=[RuntimeError("chat gone"), None])

        report = await run_sweep(notification_db, lambda uid: channel, now=NOW)

        assert report.delivered == [second.id]
        assert first.id in report.failed
        assert "chat gone" in report.failed[first.id]
        # a failed delivery stays claimed and is not retried
        assert notification_db.get_notification(first.id).sent is True


class TestConcurrentSweeps:
    @pytest.mark.asyncio
    async def test_overlapping_sweeps_deliver_each_reminder_once(self, tmp_db_path):
        store_a = NotificationDB(db_path=tmp_db_path)
        store_b = NotificationDB(db_path=tmp_db_path)
        ids = [_reminder(store_a, NOW - timedelta(minutes=i), event_id=i).id for i in range(1, 6)]
        channel = _channel()

        report_a, report_b = await asyncio.gather(
            run_sweep(store_a, lambda uid: channel, now=NOW),
            run_sweep(store_b, lambda uid: channel, now=NOW),
        )

        assert sorted(report_a.delivered + report_b.delivered) == sorted(ids)
        assert report_a.processed + report_b.processed == 5
        assert channel.show.await_count == 5

    @pytest.mark.asyncio
    async def test_stale_snapshot_loses_the_claim(self, tmp_db_path):
        store_a = NotificationDB(db_path=tmp_db_path)
        store_b = NotificationDB(db_path=tmp_db_path)
        reminder = _reminder(store_a, NOW - timedelta(minutes=1))
        stale_snapshot = store_b.list_due(NOW)
        channel = _channel()

        first = await run_sweep(store_a, lambda uid: channel, now=NOW)
        with patch.object(store_b, "list_due", return_value=stale_snapshot):
            second = await run_sweep(store_b, lambda uid: channel, now=NOW)

        assert first.delivered == [reminder.id]
        assert second.processed == 0
        assert second.skipped == [reminder.id]
        channel.show.assert_awaited_once()


class TestAuthorization:
    def test_valid_bearer_token(self):
        check_authorization("Bearer s3cret", "s3cret")

    @pytest.mark.parametrize("header", [None, "", "s3cret", "Bearer wrong", "bearer s3cret"])
    def test_rejected_headers(self, header):
        with pytest.raises(SweepUnauthorized):
            check_authorization(header, "s3cret")

    def test_unconfigured_secret_rejects_everything(self):
        with pytest.raises(SweepUnauthorized):
            check_authorization("Bearer ", "")


class TestTriggerSweep:
    @pytest.mark.asyncio
    async def test_authorized_trigger_returns_processed_count(self, notification_db):
        _reminder(notification_db, NOW - timedelta(minutes=1))
        count = await trigger_sweep(
            "Bearer test-cron-secret", notification_db, lambda uid: _channel(), now=NOW,
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_unauthorized_trigger_touches_nothing(self, notification_db):
        reminder = _reminder(notification_db, NOW - timedelta(minutes=1))
        channel = _channel()

        with pytest.raises(SweepUnauthorized):
            await trigger_sweep("Bearer nope", notification_db, lambda uid: channel, now=NOW)

        channel.show.assert_not_called()
        assert notification_db.get_notification(reminder.id).sent is False

    @pytest.mark.asyncio
    async def test_explicit_secret_overrides_settings(self, notification_db):
        count = await trigger_sweep(
            "Bearer other", notification_db, lambda uid: _channel(), secret="other", now=NOW,
        )
        assert count == 0
