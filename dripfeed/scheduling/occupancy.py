"""
Slot occupancy snapshot for a single scheduler run.

``SlotOccupancyIndex`` answers "how many stories are already due at this
exact timestamp?".  It is filled once per run from the store and is never
re-read mid-run; assignments made by the run itself are added through
:meth:`SlotOccupancyIndex.reserve` so one lookup covers both.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, Optional, Tuple

from dripfeed.scheduling.channel_resolver import ChannelResolver
from dripfeed.scheduling.models import ContentItem
from dripfeed.utils import ensure_utc

logger = logging.getLogger(__name__)

# Bucket used for every reservation when capacity is shared across channels
_SHARED = "*"


class SlotOccupancyIndex:
    """Reservation counts keyed by ``(channel, slot timestamp)``.

    Args:
        shared: When ``True`` all channels share one count per timestamp,
            matching the historical cross-channel behaviour.  When ``False``
            (default) counts are scoped to the channel that owns the story.
    """

    def __init__(self, shared: bool = False) -> None:
        self.shared = shared
        self._counts: Counter = Counter()

    def _key(self, slot: datetime, channel_id: Optional[str]) -> Tuple[str, datetime]:
        bucket = _SHARED if self.shared else (channel_id or "")
        return bucket, ensure_utc(slot)

    @classmethod
    async def build(
        cls,
        items: Iterable[ContentItem],
        resolver: ChannelResolver,
        shared: bool = False,
    ) -> "SlotOccupancyIndex":
        """Create a snapshot from already-reserved stories.

        Args:
            items: Ready stories with ``scheduled_publish_at >= now``.
            resolver: Resolves each story to its channel (skipped when
                *shared* is ``True``).
            shared: See class docstring.

        Returns:
            A populated index.
        """
        index = cls(shared=shared)
        unresolved = 0
        for item in items:
            if item.scheduled_publish_at is None:
                continue
            channel_id = None if shared else await resolver.resolve(item)
            if channel_id is None and not shared:
                unresolved += 1
                continue
            index.reserve(item.scheduled_publish_at, channel_id)

        if unresolved:
            logger.debug(
                "[DRIP FEED] %d reserved stories have no resolvable topic; "
                "ignored for occupancy",
                unresolved,
            )
        return index

    def count_at(self, slot: datetime, channel_id: Optional[str] = None) -> int:
        """Stories already reserved at *slot* for *channel_id*."""
        return self._counts[self._key(slot, channel_id)]

    def reserve(self, slot: datetime, channel_id: Optional[str] = None) -> None:
        """Record one more story at *slot*."""
        self._counts[self._key(slot, channel_id)] += 1

    def mark_full(self, slot: datetime, channel_id: Optional[str], capacity: int) -> None:
        """Raise the count at *slot* to *capacity* so no more stories go there."""
        key = self._key(slot, channel_id)
        self._counts[key] = max(self._counts[key], capacity)

    def __len__(self) -> int:
        return sum(self._counts.values())


__all__ = ["SlotOccupancyIndex"]
