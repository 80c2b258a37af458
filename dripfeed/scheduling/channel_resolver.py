"""
Resolve a story to the topic (channel) it belongs to.

Stories reach a topic through one of two links:

- ``topic_article_id`` -> ``topic_articles.topic_id`` (multi-tenant layout)
- ``article_id`` -> ``articles.topic_id`` (legacy layout)

Both yield a topic UUID, so the scheduler only ever compares channel ids
and never needs to know which layout a story came from.
"""

import logging
from typing import Dict, Optional

from dripfeed.scheduling.models import ContentItem

logger = logging.getLogger(__name__)


class ChannelResolver:
    """Maps stories to topic ids, caching each link lookup.

    One resolver is created per run so the cache never outlives the
    snapshot it was built for.

    Args:
        db: Database client (:class:`~dripfeed.database.SupabaseDB`).
    """

    def __init__(self, db: "SupabaseDB") -> None:  # noqa: F821
        self.db = db
        self._topic_article_cache: Dict[str, Optional[str]] = {}
        self._article_cache: Dict[str, Optional[str]] = {}

    async def resolve(self, item: ContentItem) -> Optional[str]:
        """Return the topic id for *item*, or ``None`` if neither link resolves.

        The multi-tenant link is tried first; the legacy link is only
        consulted when the first one is missing or dangling.
        """
        if item.topic_article_id:
            channel_id = await self._via_topic_article(item.topic_article_id)
            if channel_id is not None:
                return channel_id

        if item.article_id:
            channel_id = await self._via_article(item.article_id)
            if channel_id is not None:
                return channel_id

        logger.debug("[DRIP FEED] Story %s has no resolvable topic", item.id)
        return None

    async def belongs_to(self, item: ContentItem, channel_id: str) -> bool:
        """True when *item* resolves to *channel_id*."""
        return await self.resolve(item) == channel_id

    async def _via_topic_article(self, topic_article_id: str) -> Optional[str]:
        if topic_article_id not in self._topic_article_cache:
            self._topic_article_cache[topic_article_id] = (
                await self.db.get_topic_article_channel(topic_article_id)
            )
        return self._topic_article_cache[topic_article_id]

    async def _via_article(self, article_id: str) -> Optional[str]:
        if article_id not in self._article_cache:
            self._article_cache[article_id] = await self.db.get_article_channel(
                article_id
            )
        return self._article_cache[article_id]


__all__ = ["ChannelResolver"]
