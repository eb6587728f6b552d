"""Tests for src.data.db — EventDB, NotificationDB, ProfileDB (SQLite storage)."""

import pytest
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from src.data.db import from_db_time, to_db_time
from src.data.models import BehavioralProfile, MeetingFrequency

NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def _add(event_db, start=NOW, minutes=60, user_id="u1", title="Meeting", **kwargs):
    return event_db.create_event(
        user_id=user_id, title=title, start=start, end=start + timedelta(minutes=minutes), **kwargs,
    )


class TestTimestamps:
    def test_round_trip_converts_to_utc(self):
        local = datetime(2025, 1, 15, 12, 0, tzinfo=ZoneInfo("Asia/Jerusalem"))
        raw = to_db_time(local)
        assert raw == "2025-01-15T10:00:00.000000+00:00"
        assert from_db_time(raw) == local

    def test_fixed_width_strings_sort_chronologically(self):
        early = to_db_time(datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc))
        late = to_db_time(datetime(2025, 1, 15, 9, 0, 0, 1, tzinfo=timezone.utc))
        assert early < late

    def test_none(self):
        assert from_db_time(None) is None


class TestEventDB:
    def test_create_returns_event_with_id(self, event_db):
        event = _add(event_db, attendees=["Dan"], location="Room 1", category="work")
        assert event.id is not None
        assert event.attendees == ["Dan"]
        assert event.created_at is not None

    def test_get_event_round_trip(self, event_db):
        created = _add(event_db, attendees=["Dan", "Sarah"], is_recurring=True, priority="high")
        loaded = event_db.get_event(created.id)
        assert loaded.title == "Meeting"
        assert loaded.start == NOW
        assert loaded.end == NOW + timedelta(hours=1)
        assert loaded.attendees == ["Dan", "Sarah"]
        assert loaded.is_recurring is True
        assert loaded.priority == "high"

    def test_get_missing_event(self, event_db):
        assert event_db.get_event(999) is None

    def test_end_before_start_rejected(self, event_db):
        with pytest.raises(ValueError):
            event_db.create_event(user_id="u1", title="X", start=NOW, end=NOW - timedelta(minutes=1))

    def test_zero_length_event_allowed(self, event_db):
        event = event_db.create_event(user_id="u1", title="X", start=NOW, end=NOW)
        assert event.duration_minutes == 0

    def test_list_events_ordered_and_scoped_to_user(self, event_db):
        _add(event_db, start=NOW + timedelta(days=2), title="Later")
        _add(event_db, start=NOW, title="Sooner")
        _add(event_db, start=NOW, user_id="u2", title="Other user")

        titles = [e.title for e in event_db.list_events("u1")]
        assert titles == ["Sooner", "Later"]

    def test_list_events_range(self, event_db):
        _add(event_db, start=NOW - timedelta(days=1), title="Past")
        _add(event_db, start=NOW + timedelta(hours=1), title="Soon")
        events = event_db.list_events("u1", start=NOW, end=NOW + timedelta(days=1))
        assert [e.title for e in events] == ["Soon"]

    def test_recent_events_latest_first_with_limit(self, event_db):
        for i in range(5):
            _add(event_db, start=NOW + timedelta(days=i), title=f"E{i}")
        recent = event_db.recent_events("u1", limit=3)
        assert [e.title for e in recent] == ["E4", "E3", "E2"]

    def test_update_event(self, event_db):
        event = _add(event_db)
        new_start = NOW + timedelta(days=1)
        updated = event_db.update_event(
            event.id, title="Moved", start=new_start, end=new_start + timedelta(minutes=30),
        )
        assert updated.title == "Moved"
        assert event_db.get_event(event.id).start == new_start

    def test_update_rejects_unknown_fields(self, event_db):
        event = _add(event_db)
        with pytest.raises(ValueError):
            event_db.update_event(event.id, user_id="someone-else")

    def test_update_rejects_end_before_start(self, event_db):
        event = _add(event_db)
        with pytest.raises(ValueError):
            event_db.update_event(event.id, end=NOW - timedelta(hours=1))

    def test_update_missing_event(self, event_db):
        assert event_db.update_event(999, title="X") is None

    def test_delete_event(self, event_db):
        event = _add(event_db)
        assert event_db.delete_event(event.id) is True
        assert event_db.get_event(event.id) is None
        assert event_db.delete_event(event.id) is False


class TestNotificationDB:
    def _reminder(self, db, scheduled_for, event_id=1, user_id="u1"):
        return db.create_notification(
            user_id=user_id, event_id=event_id, type="reminder",
            title="Upcoming", message="Soon", scheduled_for=scheduled_for,
        )

    def test_create_and_get(self, notification_db):
        n = self._reminder(notification_db, NOW)
        loaded = notification_db.get_notification(n.id)
        assert loaded.type == "reminder"
        assert loaded.sent is False
        assert loaded.read is False
        assert loaded.scheduled_for == NOW

    def test_created_notification_can_be_stored_as_sent(self, notification_db):
        n = notification_db.create_notification(
            user_id="u1", event_id=1, type="created", title="Event Created", message="m", sent=True,
        )
        assert notification_db.get_notification(n.id).sent is True

    def test_list_due(self, notification_db):
        due = self._reminder(notification_db, NOW - timedelta(minutes=1))
        self._reminder(notification_db, NOW + timedelta(minutes=1))
        notification_db.create_notification(
            user_id="u1", event_id=1, type="created", title="t", message="m",
        )
        assert [n.id for n in notification_db.list_due(NOW)] == [due.id]

    def test_claim_succeeds_once(self, notification_db):
        n = self._reminder(notification_db, NOW)
        assert notification_db.claim(n.id) is True
        assert notification_db.claim(n.id) is False
        assert notification_db.list_due(NOW) == []

    def test_claim_missing_notification(self, notification_db):
        assert notification_db.claim(999) is False

    def test_list_for_user_newest_first_with_limit(self, notification_db):
        ids = [self._reminder(notification_db, NOW, event_id=i).id for i in range(25)]
        self._reminder(notification_db, NOW, user_id="u2")

        items = notification_db.list_for_user("u1")
        assert len(items) == 20
        assert items[0].id == ids[-1]

    def test_unread_only_and_mark_read(self, notification_db):
        a = self._reminder(notification_db, NOW)
        b = self._reminder(notification_db, NOW)
        assert notification_db.mark_read([a.id]) == 1

        unread = notification_db.list_for_user("u1", unread_only=True)
        assert [n.id for n in unread] == [b.id]

    def test_mark_read_empty(self, notification_db):
        assert notification_db.mark_read([]) == 0

    def test_reschedule_only_unsent(self, notification_db):
        n = self._reminder(notification_db, NOW)
        later = NOW + timedelta(hours=1)
        assert notification_db.reschedule_reminder(n.id, later, "New", "Body") is True
        assert notification_db.get_notification(n.id).scheduled_for == later

        notification_db.claim(n.id)
        assert notification_db.reschedule_reminder(n.id, NOW, "Again", "Body") is False

    def test_cancel_pending_keeps_sent_and_other_types(self, notification_db):
        pending = self._reminder(notification_db, NOW, event_id=3)
        sent = self._reminder(notification_db, NOW, event_id=3)
        notification_db.claim(sent.id)
        created = notification_db.create_notification(
            user_id="u1", event_id=3, type="created", title="t", message="m", sent=True,
        )

        assert notification_db.cancel_pending_for_event(3) == 1
        assert notification_db.get_notification(pending.id) is None
        assert notification_db.get_notification(sent.id) is not None
        assert notification_db.get_notification(created.id) is not None

    def test_pending_reminders_for_event(self, notification_db):
        n = self._reminder(notification_db, NOW, event_id=4)
        self._reminder(notification_db, NOW, event_id=5)
        assert [r.id for r in notification_db.pending_reminders_for_event(4)] == [n.id]


class TestProfileDB:
    def test_missing_profile(self, profile_db):
        assert profile_db.get_profile("nobody") is None

    def test_save_and_load(self, profile_db):
        profile = BehavioralProfile(
            user_id="u1",
            common_meeting_times=["09:00", "14:00"],
            average_meeting_duration=45,
            frequent_attendees=["Dan"],
            preferred_categories=["work"],
            meeting_frequency=MeetingFrequency(daily=2, weekly=7),
            last_updated=NOW,
        )
        profile_db.save_profile(profile)
        assert profile_db.get_profile("u1") == profile

    def test_save_overwrites_single_profile(self, profile_db):
        profile_db.save_profile(BehavioralProfile(user_id="u1", average_meeting_duration=30))
        profile_db.save_profile(BehavioralProfile(user_id="u1", average_meeting_duration=90))
        assert profile_db.get_profile("u1").average_meeting_duration == 90
