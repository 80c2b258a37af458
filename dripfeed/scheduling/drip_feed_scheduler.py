"""
Drip-feed release scheduler.

``DripFeedScheduler`` spreads each topic's backlog of ready stories over
release slots inside the topic's daily window.  It owns exactly two story
columns, ``scheduled_publish_at`` and ``drip_queued_at``; the publisher
picks stories up once their slot has passed.

Three entry points share one slot walk:

- :meth:`DripFeedScheduler.run` persists assignments and audits them.
- :meth:`DripFeedScheduler.preview` computes the same assignments
  without writing anything.
- :meth:`DripFeedScheduler.emergency_release` clears a topic's slots so
  everything queued becomes due immediately.

All database interactions go through the ``db`` parameter (a
:class:`~dripfeed.database.SupabaseDB` instance).
"""

import logging
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from dripfeed.config import Settings
from dripfeed.exceptions import SchedulingConflictError
from dripfeed.logging import AuditLogger, LogLevel
from dripfeed.scheduling.channel_resolver import ChannelResolver
from dripfeed.scheduling.models import (
    Channel,
    ChannelPreview,
    ChannelResult,
    ContentItem,
    RunReport,
    SkipReason,
)
from dripfeed.scheduling.occupancy import SlotOccupancyIndex
from dripfeed.scheduling.slots import (
    advance_slot,
    is_within_window,
    next_slot_after,
    window_close_for,
)
from dripfeed.utils import ensure_utc, to_iso, utc_now

logger = logging.getLogger(__name__)

TRIGGER_STORY_READY = "story_ready_trigger"
TRIGGER_CRON = "cron_job"


class DripFeedScheduler:
    """Assigns release slots to ready stories, one topic at a time.

    Topics are processed sequentially and stories within a topic in
    creation order, because the occupancy snapshot is only consistent for
    a single writer per run.

    Args:
        db: Database client (:class:`~dripfeed.database.SupabaseDB`).
        audit: Audit trail for scheduling events and run summaries.
        settings: Application settings (defaults, capacity mode).
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        audit: AuditLogger,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.audit = audit
        self.settings = settings or Settings()

    # ================================================================
    # NORMAL RUN
    # ================================================================

    async def run(
        self,
        now: Optional[datetime] = None,
        channel_id: Optional[str] = None,
    ) -> RunReport:
        """Schedule every eligible topic's backlog.

        Args:
            now: Invocation time (defaults to the current UTC time).
            channel_id: Only process this topic.

        Returns:
            A :class:`RunReport` with one result per topic.

        Raises:
            DatabaseError, RetryExhaustedError: If the topic list itself
                cannot be read.  Failures inside a topic are reported in
                its result instead.
        """
        now = ensure_utc(now or utc_now())
        report = RunReport(
            started_at=now,
            trigger_source=TRIGGER_STORY_READY if channel_id else TRIGGER_CRON,
        )

        channels = await self._load_channels(channel_id)
        if not channels:
            logger.info("[DRIP FEED] No topics with drip feed enabled")
            report.finished_at = utc_now()
            return report

        logger.info(
            "[DRIP FEED] Found %d topic(s) with drip feed enabled", len(channels)
        )

        resolver = ChannelResolver(self.db)
        index: Optional[SlotOccupancyIndex] = None

        for channel in channels:
            result = ChannelResult(channel=channel.label, channel_id=channel.id)
            report.results.append(result)

            if not self._ready_for_release(channel, now, result):
                continue

            try:
                backlog = await self._fetch_backlog(channel, resolver)
                if backlog and index is None:
                    index = await self._build_index(now, resolver)
            except Exception as exc:
                logger.error(
                    "[DRIP FEED] Error fetching stories for %s: %s",
                    channel.label,
                    exc,
                )
                result.skipped = SkipReason.FETCH_FAILED
                result.error = str(exc)
                continue

            if not backlog:
                logger.info("[DRIP FEED] No unscheduled ready stories for %s", channel.label)
                result.skipped = SkipReason.NO_STORIES
                continue

            logger.info(
                "[DRIP FEED] %s: %d unscheduled stories, up to %d per slot every %dh",
                channel.label,
                len(backlog),
                channel.items_per_slot,
                channel.release_interval_hours,
            )

            for item, slot, in_slot in self._walk(channel, backlog, index, now):
                if await self._assign(channel, item, slot, in_slot, now, index, resolver):
                    result.scheduled += 1

            logger.info(
                "[DRIP FEED] Scheduled %d stories for %s", result.scheduled, channel.label
            )

        report.finished_at = utc_now()
        await self.audit.info(
            f"Drip feed scheduler completed: {report.total_scheduled} stories "
            f"scheduled across {report.channels_processed} topics",
            **report.summary(),
        )
        await self.audit.flush()

        logger.info(
            "[DRIP FEED] Summary: %d scheduled, %d topics processed, %d skipped (%dms)",
            report.total_scheduled,
            report.channels_processed,
            report.channels_skipped,
            report.duration_ms,
        )
        return report

    # ================================================================
    # DRY RUN
    # ================================================================

    async def preview(
        self,
        now: Optional[datetime] = None,
        channel_id: Optional[str] = None,
    ) -> List[ChannelPreview]:
        """Compute what :meth:`run` would schedule, without side effects.

        Uses the same window checks, backlog, occupancy snapshot and slot
        walk as a normal run, but never writes to ``stories`` and never
        records audit events.
        """
        now = ensure_utc(now or utc_now())
        channels = await self._load_channels(channel_id)

        resolver = ChannelResolver(self.db)
        index: Optional[SlotOccupancyIndex] = None
        previews: List[ChannelPreview] = []

        for channel in channels:
            preview = ChannelPreview(channel=channel.label, channel_id=channel.id)
            previews.append(preview)

            # Reuse the run-time eligibility check through a scratch result
            scratch = ChannelResult(channel=channel.label, channel_id=channel.id)
            if not self._ready_for_release(channel, now, scratch):
                preview.skipped, preview.error = scratch.skipped, scratch.error
                continue
            preview.daily_capacity = channel.daily_capacity

            try:
                backlog = await self._fetch_backlog(channel, resolver)
                if backlog and index is None:
                    index = await self._build_index(now, resolver)
            except Exception as exc:
                preview.skipped = SkipReason.FETCH_FAILED
                preview.error = str(exc)
                continue

            if not backlog:
                preview.skipped = SkipReason.NO_STORIES
                continue

            for item, slot, _ in self._walk(channel, backlog, index, now):
                index.reserve(slot, channel.id)
                preview.add(slot, item.id)

        return previews

    # ================================================================
    # EMERGENCY OVERRIDE
    # ================================================================

    async def emergency_release(self, channel_id: str) -> int:
        """Clear every queued slot of one topic so its stories publish now.

        Only ready stories that resolve to *channel_id* and currently hold
        a slot are touched; ``drip_queued_at`` is preserved.

        Args:
            channel_id: Topic whose queue is flushed.

        Returns:
            Number of stories released.

        Raises:
            DatabaseError: If the stories cannot be read or updated.
        """
        logger.warning(
            "[DRIP FEED] EMERGENCY: releasing all queued stories for topic %s",
            channel_id,
        )

        rows = await self.db.list_scheduled_ready_items()
        resolver = ChannelResolver(self.db)

        item_ids: List[str] = []
        for row in rows:
            item = ContentItem.from_row(row)
            if await resolver.belongs_to(item, channel_id):
                item_ids.append(item.id)

        released = 0
        if item_ids:
            released = await self.db.clear_schedules(item_ids)
            logger.info(
                "[DRIP FEED] Cleared scheduled times for %d stories", released
            )

        await self.audit.warning(
            "Emergency publish all triggered for topic",
            topic_id=channel_id,
            stories_released=released,
            triggered_at=to_iso(utc_now()),
        )
        await self.audit.flush()
        return released

    # ================================================================
    # QUEUE LISTING
    # ================================================================

    async def list_queued(
        self, channel_id: str, now: Optional[datetime] = None
    ) -> List[ContentItem]:
        """Stories of one topic waiting for a future slot, soonest first."""
        now = ensure_utc(now or utc_now())
        resolver = ChannelResolver(self.db)

        queued: List[ContentItem] = []
        for row in await self.db.list_queued_items(now):
            item = ContentItem.from_row(row)
            if await resolver.belongs_to(item, channel_id):
                queued.append(item)
        return queued

    # ================================================================
    # SLOT WALK
    # ================================================================

    def _walk(
        self,
        channel: Channel,
        backlog: List[ContentItem],
        index: SlotOccupancyIndex,
        now: datetime,
    ) -> Iterator[Tuple[ContentItem, datetime, int]]:
        """Yield ``(item, slot, stories_already_in_slot)`` in backlog order.

        The caller reserves the yielded slot in *index* when the story lands
        there; the walk reads the index fresh for every story, so a failed
        write leaves the slot open for the next one.  Stops when the next
        free slot would fall at or past the window close.
        """
        slot = next_slot_after(
            now,
            channel.release_interval_hours,
            channel.window_start_hour,
            channel.window_end_hour,
        )
        closes_at = window_close_for(slot, channel.window_end_hour)
        in_slot = 0

        for item in backlog:
            while self._occupied(index, slot, channel) >= channel.items_per_slot:
                slot = advance_slot(slot, channel.release_interval_hours)
                in_slot = 0
                if slot >= closes_at:
                    logger.info(
                        "[DRIP FEED] %s: next slot would be outside release "
                        "window (%02d:00 UTC), stopping",
                        channel.label,
                        channel.window_end_hour,
                    )
                    return
            before = self._occupied(index, slot, channel)
            yield item, slot, in_slot
            if self._occupied(index, slot, channel) > before:
                in_slot += 1

    def _occupied(
        self, index: SlotOccupancyIndex, slot: datetime, channel: Channel
    ) -> int:
        return index.count_at(slot, channel.id)

    # ================================================================
    # ASSIGNMENT
    # ================================================================

    async def _assign(
        self,
        channel: Channel,
        item: ContentItem,
        slot: datetime,
        in_slot: int,
        now: datetime,
        index: SlotOccupancyIndex,
        resolver: ChannelResolver,
    ) -> bool:
        """Persist one slot assignment.

        Returns ``True`` when the story now holds *slot*.  A failed or lost
        write leaves the story unscheduled for the next run.  A capacity
        conflict detected after the write marks the slot full so the walk
        moves on; the story itself is retried by the next run.  A re-check
        that cannot be completed keeps the claim.  Nothing after the write
        raises, so one story never aborts the run.
        """
        try:
            claimed = await self.db.set_schedule(item.id, slot, now)
        except Exception as exc:
            logger.error(
                "[DRIP FEED] Failed to schedule story %s: %s", item.id, exc
            )
            # The slot is still free as far as this run knows
            return False

        if not claimed:
            logger.info(
                "[DRIP FEED] Story %s was scheduled by another run, skipping",
                item.id,
            )
            return False

        index.reserve(slot, channel.id)

        if self.settings.verify_slot_capacity:
            try:
                await self._verify_capacity(channel, item, slot, resolver)
            except SchedulingConflictError as exc:
                logger.warning("[DRIP FEED] %s", exc)
                index.mark_full(slot, channel.id, channel.items_per_slot)
                return False
            except Exception as exc:
                # The claim is already persisted; keep it unverified
                logger.error(
                    "[DRIP FEED] Could not verify slot %s for story %s: %s",
                    to_iso(slot),
                    item.id,
                    exc,
                )

        item.scheduled_publish_at = slot
        item.queued_at = now

        await self.audit.record_event(
            LogLevel.INFO,
            "Drip feed event: story_scheduled",
            {
                "topic_id": channel.id,
                "story_id": item.id,
                "event_type": "story_scheduled",
                "details": {
                    "title": item.title,
                    "scheduled_for": to_iso(slot),
                    "stories_in_slot": in_slot + 1,
                },
            },
            function_name="drip_feed",
        )
        logger.info(
            "[DRIP FEED] Scheduled \"%s\" for %s (slot has %d/%d)",
            item.title[:40],
            to_iso(slot),
            in_slot + 1,
            channel.items_per_slot,
        )
        return True

    async def _verify_capacity(
        self,
        channel: Channel,
        item: ContentItem,
        slot: datetime,
        resolver: ChannelResolver,
    ) -> None:
        """Re-read the slot after a write and undo it if overbooked.

        Two overlapping runs can each see room in the same slot; whichever
        re-checks last and finds the slot over capacity backs out.

        Raises:
            SchedulingConflictError: After rolling the write back.
        """
        rows = await self.db.list_reservations_at(slot)
        if self.settings.shared_slot_capacity:
            count = len(rows)
        else:
            count = 0
            for row in rows:
                if await resolver.belongs_to(ContentItem.from_row(row), channel.id):
                    count += 1

        if count <= channel.items_per_slot:
            return

        await self.db.release_schedule(item.id, slot)
        raise SchedulingConflictError(
            f"Slot {to_iso(slot)} for {channel.label} holds {count} stories "
            f"(limit {channel.items_per_slot}); released story {item.id}"
        )

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    async def _load_channels(self, channel_id: Optional[str]) -> List[Channel]:
        rows = await self.db.list_enabled_channels(channel_id)
        defaults = self.settings.drip_defaults
        return [Channel.from_row(row, defaults) for row in rows]

    def _ready_for_release(
        self, channel: Channel, now: datetime, result: ChannelResult
    ) -> bool:
        """Apply the enabled/config/window gates, filling *result* on a skip."""
        try:
            channel.validate()
        except ValueError as exc:
            logger.error("[DRIP FEED] %s", exc)
            result.skipped = SkipReason.INVALID_CONFIG
            result.error = str(exc)
            return False

        if not channel.enabled or not is_within_window(
            now.hour, channel.window_start_hour, channel.window_end_hour
        ):
            logger.info(
                "[DRIP FEED] %s: outside release window (%02d:00 - %02d:00 UTC), "
                "current: %02d:00",
                channel.label,
                channel.window_start_hour,
                channel.window_end_hour,
                now.hour,
            )
            result.skipped = SkipReason.OUTSIDE_RELEASE_WINDOW
            return False
        return True

    async def _fetch_backlog(
        self, channel: Channel, resolver: ChannelResolver
    ) -> List[ContentItem]:
        """Ready, unscheduled stories of *channel*, oldest first."""
        backlog: List[ContentItem] = []
        for row in await self.db.list_ready_unscheduled_items():
            item = ContentItem.from_row(row)
            if item.is_backlog_candidate and await resolver.belongs_to(item, channel.id):
                backlog.append(item)
        return backlog

    async def _build_index(
        self, now: datetime, resolver: ChannelResolver
    ) -> SlotOccupancyIndex:
        rows = await self.db.list_reserved_items(now)
        return await SlotOccupancyIndex.build(
            (ContentItem.from_row(row) for row in rows),
            resolver,
            shared=self.settings.shared_slot_capacity,
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "DripFeedScheduler",
    "TRIGGER_STORY_READY",
    "TRIGGER_CRON",
]
