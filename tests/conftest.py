"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like temp-file stores.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_PROVIDER", "ollama")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("TIMEZONE", "UTC")

import pytest
from datetime import datetime, timezone


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_smartcal.db")


@pytest.fixture
def event_db(tmp_db_path):
    """Return an EventDB instance backed by a temp file."""
    from src.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def notification_db(tmp_db_path):
    """Return a NotificationDB instance sharing the event DB's file."""
    from src.data.db import NotificationDB
    return NotificationDB(db_path=tmp_db_path)


@pytest.fixture
def profile_db(tmp_db_path):
    """Return a ProfileDB instance sharing the event DB's file."""
    from src.data.db import ProfileDB
    return ProfileDB(db_path=tmp_db_path)


@pytest.fixture
def now():
    """A fixed reference instant: Wednesday 2025-01-15 10:00 UTC."""
    return datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
