"""
Unified async database client for the drip-feed scheduler.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Tables touched:
    - ``topics``          channel configuration (read-only)
    - ``stories``         backlog; only ``scheduled_publish_at`` and
                          ``drip_queued_at`` are ever written
    - ``topic_articles``  multi-tenant story -> topic link (read-only)
    - ``articles``        legacy story -> topic link (read-only)
    - ``system_logs``     audit trail (insert-only)

Usage::

    from dripfeed.database import SupabaseDB

    db = await SupabaseDB.create()
    channels = await db.list_enabled_channels()
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx
from supabase import AsyncClient, create_async_client

from dripfeed.exceptions import ConfigurationError, DatabaseError, ValidationError
from dripfeed.utils import to_iso, with_retry

logger = logging.getLogger(__name__)

# Columns read from ``stories`` for every scheduling query
STORY_COLUMNS = (
    "id, title, status, created_at, scheduled_publish_at, "
    "drip_queued_at, topic_article_id, article_id"
)

TOPIC_COLUMNS = (
    "id, name, drip_feed_enabled, drip_release_interval_hours, "
    "drip_stories_per_release, drip_start_hour, drip_end_hour"
)

# Reads are idempotent and retried on dropped connections; writes are not.
_read_retry = with_retry(
    max_attempts=2,
    base_delay=0.5,
    retryable_exceptions=(httpx.TransportError,),
)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Args:
        value: The value to check.
        name: Human-readable field name used in error messages.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key for full server-side access

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Reads ``SUPABASE_URL`` and ``SUPABASE_SERVICE_KEY``.

        Raises:
            ConfigurationError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client for the scheduler.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.

        Returns:
            A fully initialised :class:`SupabaseDB` instance.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # TOPICS (channel configuration)
    # -----------------------------------------------------------------

    @_read_retry
    async def list_enabled_channels(
        self, channel_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get active topics with drip feed switched on.

        Args:
            channel_id: Restrict the result to this topic.

        Returns:
            List of ``topics`` rows (drip-feed columns only).
        """
        query = (
            self.client.table("topics")
            .select(TOPIC_COLUMNS)
            .eq("drip_feed_enabled", True)
            .eq("is_active", True)
        )
        if channel_id:
            query = query.eq("id", channel_id)

        result = await query.execute()
        return result.data

    # -----------------------------------------------------------------
    # STORY -> TOPIC LINKS
    # -----------------------------------------------------------------

    @_read_retry
    async def get_topic_article_channel(
        self, topic_article_id: str
    ) -> Optional[str]:
        """Topic id behind a ``topic_articles`` row, or ``None``."""
        validate_not_empty(topic_article_id, "topic_article_id")
        result = await (
            self.client.table("topic_articles")
            .select("topic_id")
            .eq("id", topic_article_id)
            .limit(1)
            .execute()
        )
        return result.data[0].get("topic_id") if result.data else None

    @_read_retry
    async def get_article_channel(self, article_id: str) -> Optional[str]:
        """Topic id behind a legacy ``articles`` row, or ``None``."""
        validate_not_empty(article_id, "article_id")
        result = await (
            self.client.table("articles")
            .select("topic_id")
            .eq("id", article_id)
            .limit(1)
            .execute()
        )
        return result.data[0].get("topic_id") if result.data else None

    # -----------------------------------------------------------------
    # STORIES (reads)
    # -----------------------------------------------------------------

    @_read_retry
    async def list_ready_unscheduled_items(self) -> List[Dict[str, Any]]:
        """Get ready stories without a release slot, oldest first.

        Returns:
            List of story dicts ordered by ``created_at`` ascending.
        """
        result = await (
            self.client.table("stories")
            .select(STORY_COLUMNS)
            .eq("status", "ready")
            .is_("scheduled_publish_at", "null")
            .order("created_at", desc=False)
            .execute()
        )
        return result.data

    @_read_retry
    async def list_reserved_items(self, since: datetime) -> List[Dict[str, Any]]:
        """Get ready stories holding a slot at or after *since*."""
        result = await (
            self.client.table("stories")
            .select(STORY_COLUMNS)
            .eq("status", "ready")
            .not_.is_("scheduled_publish_at", "null")
            .gte("scheduled_publish_at", to_iso(since))
            .execute()
        )
        return result.data

    @_read_retry
    async def list_reservations_at(self, slot: datetime) -> List[Dict[str, Any]]:
        """Get ready stories holding exactly the slot *slot*."""
        result = await (
            self.client.table("stories")
            .select(STORY_COLUMNS)
            .eq("status", "ready")
            .eq("scheduled_publish_at", to_iso(slot))
            .execute()
        )
        return result.data

    @_read_retry
    async def list_scheduled_ready_items(self) -> List[Dict[str, Any]]:
        """Get every ready story that has any release slot."""
        result = await (
            self.client.table("stories")
            .select(STORY_COLUMNS)
            .eq("status", "ready")
            .not_.is_("scheduled_publish_at", "null")
            .execute()
        )
        return result.data

    @_read_retry
    async def list_queued_items(self, after: datetime) -> List[Dict[str, Any]]:
        """Get ready stories due strictly after *after*, soonest first."""
        result = await (
            self.client.table("stories")
            .select(STORY_COLUMNS)
            .eq("status", "ready")
            .gt("scheduled_publish_at", to_iso(after))
            .order("scheduled_publish_at", desc=False)
            .execute()
        )
        return result.data

    # -----------------------------------------------------------------
    # STORIES (writes)
    # -----------------------------------------------------------------

    async def set_schedule(
        self, item_id: str, slot: datetime, queued_at: datetime
    ) -> bool:
        """Give a story its release slot, only if it has none yet.

        The ``scheduled_publish_at IS NULL`` filter makes the write a
        conditional claim: a concurrent run that already scheduled the
        story wins and this call reports ``False``.

        Args:
            item_id: Story UUID.
            slot: Release timestamp.
            queued_at: When the story entered the drip queue.

        Returns:
            ``True`` if the story was claimed, ``False`` otherwise.
        """
        validate_not_empty(item_id, "item_id")

        result = await (
            self.client.table("stories")
            .update({
                "scheduled_publish_at": to_iso(slot),
                "drip_queued_at": to_iso(queued_at),
            })
            .eq("id", item_id)
            .is_("scheduled_publish_at", "null")
            .execute()
        )
        # If data is returned, the update matched and the claim succeeded
        return bool(result.data)

    async def release_schedule(self, item_id: str, slot: datetime) -> bool:
        """Undo :meth:`set_schedule` for a story still holding *slot*.

        Returns:
            ``True`` if the story was released.
        """
        validate_not_empty(item_id, "item_id")

        result = await (
            self.client.table("stories")
            .update({"scheduled_publish_at": None, "drip_queued_at": None})
            .eq("id", item_id)
            .eq("scheduled_publish_at", to_iso(slot))
            .execute()
        )
        return bool(result.data)

    async def clear_schedules(self, item_ids: Sequence[str]) -> int:
        """Clear ``scheduled_publish_at`` on the given stories.

        ``drip_queued_at`` is left untouched so the queue history survives
        an emergency release.

        Returns:
            Number of rows updated.

        Raises:
            DatabaseError: If the update fails.
        """
        if not item_ids:
            return 0

        try:
            result = await (
                self.client.table("stories")
                .update({"scheduled_publish_at": None})
                .in_("id", list(item_ids))
                .execute()
            )
        except Exception as exc:
            raise DatabaseError(
                f"Failed to clear scheduled times: {exc}"
            ) from exc
        return len(result.data)

    # -----------------------------------------------------------------
    # SYSTEM LOGS
    # -----------------------------------------------------------------

    async def save_system_log(self, log_entry: Dict[str, Any]) -> None:
        """Insert an audit record into ``system_logs``.

        Args:
            log_entry: Row dict.  Must contain ``level`` and ``message``.

        Raises:
            ValidationError: On missing fields.
        """
        if not log_entry:
            raise ValidationError("log_entry cannot be None or empty")
        if "level" not in log_entry or "message" not in log_entry:
            raise ValidationError("log_entry must have 'level' and 'message'")

        await self.client.table("system_logs").insert(log_entry).execute()


# =============================================================================
# FACTORY
# =============================================================================


async def connect() -> SupabaseDB:
    """Create a :class:`SupabaseDB` from the environment.

    Each serverless invocation gets its own client; nothing is cached at
    module level.

    Raises:
        ConfigurationError: If the Supabase credentials are missing.
    """
    db = await SupabaseDB.create()
    logger.debug("[DRIP FEED] Connected to Supabase")
    return db
