"""Shared fixtures for the drip-feed scheduler test suite."""

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from dripfeed.config import Settings, reset_settings
from dripfeed.exceptions import DatabaseError
from dripfeed.logging import AuditLogger
from dripfeed.utils import parse_timestamp, to_iso


# ---------------------------------------------------------------------------
# Ensure we don't hit real services during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear credentials and overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "DRIP_LOG_LEVEL",
        "DRIP_SHARED_SLOT_CAPACITY",
        "DRIP_VERIFY_SLOT_CAPACITY",
        "DRIP_RUN_TIMEOUT_SECONDS",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_settings_singleton():
    """Ensure the Settings singleton is cleared before and after each test."""
    reset_settings()
    yield
    reset_settings()


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """08:00 UTC, inside the default 06-22 window."""
    return datetime(2025, 6, 15, 8, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory stand-in for SupabaseDB
# ---------------------------------------------------------------------------
class FakeDB:
    """Implements the SupabaseDB surface the scheduler uses, in memory.

    Timestamps are stored as ISO strings, like PostgREST returns them.
    """

    BASE_CREATED = datetime(2025, 6, 14, 0, 0, 0, tzinfo=timezone.utc)

    def __init__(self) -> None:
        self.topics: List[Dict[str, Any]] = []
        self.stories: Dict[str, Dict[str, Any]] = {}
        self.topic_articles: Dict[str, str] = {}
        self.articles: Dict[str, str] = {}
        self.system_logs: List[Dict[str, Any]] = []

        # Failure injection
        self.fail_channel_list = False
        self.fail_backlog_calls: set = set()  # 1-based call numbers
        self.fail_set_schedule_ids: set = set()
        self.fail_reservations_read = False
        self.fail_system_log = False
        self.on_set_schedule: Optional[Callable[[str, datetime], Awaitable[None]]] = None

        # Call accounting
        self.backlog_calls = 0
        self.write_calls = 0
        self.link_lookups = 0

    # -- builders ---------------------------------------------------------

    def add_topic(self, topic_id: str, name: Optional[str] = None, **overrides: Any) -> Dict[str, Any]:
        row = {
            "id": topic_id,
            "name": name if name is not None else f"Topic {topic_id}",
            "drip_feed_enabled": True,
            "is_active": True,
            "drip_release_interval_hours": 4,
            "drip_stories_per_release": 2,
            "drip_start_hour": 6,
            "drip_end_hour": 22,
        }
        row.update(overrides)
        self.topics.append(row)
        return row

    def add_story(
        self,
        story_id: str,
        topic_id: Optional[str],
        order: int = 0,
        legacy: bool = False,
        scheduled: Optional[datetime] = None,
        queued: Optional[datetime] = None,
        status: str = "ready",
    ) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "id": story_id,
            "title": f"Story {story_id}",
            "status": status,
            "created_at": to_iso(self.BASE_CREATED + timedelta(minutes=order)),
            "scheduled_publish_at": to_iso(scheduled) if scheduled else None,
            "drip_queued_at": to_iso(queued) if queued else None,
            "topic_article_id": None,
            "article_id": None,
        }
        if topic_id is not None:
            if legacy:
                row["article_id"] = f"art-{story_id}"
                self.articles[row["article_id"]] = topic_id
            else:
                row["topic_article_id"] = f"ta-{story_id}"
                self.topic_articles[row["topic_article_id"]] = topic_id
        self.stories[story_id] = row
        return row

    def scheduled_at(self, story_id: str) -> Optional[datetime]:
        return parse_timestamp(self.stories[story_id]["scheduled_publish_at"])

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {k: dict(v) for k, v in self.stories.items()}

    # -- topics -----------------------------------------------------------

    async def list_enabled_channels(self, channel_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if self.fail_channel_list:
            raise DatabaseError("topics table unavailable")
        return [
            dict(t)
            for t in self.topics
            if t.get("drip_feed_enabled")
            and t.get("is_active")
            and (channel_id is None or t["id"] == channel_id)
        ]

    # -- links ------------------------------------------------------------

    async def get_topic_article_channel(self, topic_article_id: str) -> Optional[str]:
        self.link_lookups += 1
        return self.topic_articles.get(topic_article_id)

    async def get_article_channel(self, article_id: str) -> Optional[str]:
        self.link_lookups += 1
        return self.articles.get(article_id)

    # -- story reads ------------------------------------------------------

    def _ready(self) -> List[Dict[str, Any]]:
        return [dict(s) for s in self.stories.values() if s["status"] == "ready"]

    async def list_ready_unscheduled_items(self) -> List[Dict[str, Any]]:
        self.backlog_calls += 1
        if self.backlog_calls in self.fail_backlog_calls:
            raise DatabaseError("stories query timed out")
        rows = [s for s in self._ready() if s["scheduled_publish_at"] is None]
        return sorted(rows, key=lambda s: s["created_at"])

    async def list_reserved_items(self, since: datetime) -> List[Dict[str, Any]]:
        return [
            s
            for s in self._ready()
            if s["scheduled_publish_at"] is not None
            and parse_timestamp(s["scheduled_publish_at"]) >= since
        ]

    async def list_reservations_at(self, slot: datetime) -> List[Dict[str, Any]]:
        if self.fail_reservations_read:
            raise DatabaseError("reservations read failed")
        return [
            s
            for s in self._ready()
            if s["scheduled_publish_at"] is not None
            and parse_timestamp(s["scheduled_publish_at"]) == slot
        ]

    async def list_scheduled_ready_items(self) -> List[Dict[str, Any]]:
        return [s for s in self._ready() if s["scheduled_publish_at"] is not None]

    async def list_queued_items(self, after: datetime) -> List[Dict[str, Any]]:
        rows = [
            s
            for s in self._ready()
            if s["scheduled_publish_at"] is not None
            and parse_timestamp(s["scheduled_publish_at"]) > after
        ]
        return sorted(rows, key=lambda s: parse_timestamp(s["scheduled_publish_at"]))

    # -- story writes -----------------------------------------------------

    async def set_schedule(self, item_id: str, slot: datetime, queued_at: datetime) -> bool:
        self.write_calls += 1
        if self.on_set_schedule is not None:
            await self.on_set_schedule(item_id, slot)
        if item_id in self.fail_set_schedule_ids:
            raise DatabaseError(f"update failed for {item_id}")
        row = self.stories[item_id]
        if row["scheduled_publish_at"] is not None:
            return False
        row["scheduled_publish_at"] = to_iso(slot)
        row["drip_queued_at"] = to_iso(queued_at)
        return True

    async def release_schedule(self, item_id: str, slot: datetime) -> bool:
        self.write_calls += 1
        row = self.stories[item_id]
        if parse_timestamp(row["scheduled_publish_at"]) != slot:
            return False
        row["scheduled_publish_at"] = None
        row["drip_queued_at"] = None
        return True

    async def clear_schedules(self, item_ids: Sequence[str]) -> int:
        self.write_calls += 1
        for item_id in item_ids:
            self.stories[item_id]["scheduled_publish_at"] = None
        return len(item_ids)

    # -- logs -------------------------------------------------------------

    async def save_system_log(self, log_entry: Dict[str, Any]) -> None:
        if self.fail_system_log:
            raise DatabaseError("system_logs insert failed")
        self.system_logs.append(log_entry)


@pytest.fixture
def fake_db():
    """An empty in-memory store."""
    return FakeDB()


@pytest.fixture
def settings(tmp_path):
    """Default settings with logs redirected to a temp directory."""
    return Settings(log_dir=str(tmp_path / "logs"))


@pytest.fixture
def audit(fake_db, settings):
    """Audit logger writing to the fake store and a temp directory."""
    return AuditLogger(db=fake_db, log_dir=settings.log_dir)


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client whose query chain returns itself.

    Set ``client.table_mock.result_data`` to control what ``execute()``
    returns.
    """
    client = MagicMock()
    table_mock = MagicMock()
    for method in (
        "select", "insert", "update", "delete", "eq", "gt", "gte", "lte",
        "is_", "in_", "order", "limit",
    ):
        getattr(table_mock, method).return_value = table_mock
    table_mock.not_ = table_mock
    table_mock.result_data = []

    async def mock_execute():
        return MagicMock(data=table_mock.result_data)

    table_mock.execute = AsyncMock(side_effect=mock_execute)
    client.table.return_value = table_mock
    client.table_mock = table_mock
    return client
