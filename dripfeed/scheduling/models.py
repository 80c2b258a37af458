"""
Scheduling data models: StoryStatus, Channel, ContentItem and run results.

Defines the core data structures used by the drip-feed scheduler:
- ``StoryStatus``: Lifecycle status of a story row.
- ``Channel``: A topic's drip-feed configuration (read-only to the scheduler).
- ``ContentItem``: A story eligible for timed release.
- ``ChannelResult`` / ``RunReport``: What a normal run reports back.
- ``ChannelPreview``: What a dry run reports back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dripfeed.config import DripFeedDefaults
from dripfeed.exceptions import InvalidChannelConfigError
from dripfeed.utils import parse_timestamp, to_iso, utc_now


# =============================================================================
# STORY STATUS ENUM
# =============================================================================


class StoryStatus(Enum):
    """Lifecycle status of a story.

    Transitions:
        READY -> SCHEDULED -> PUBLISHED
        READY -> PUBLISHED

    The scheduler only reads ``READY`` stories; the status transition itself
    belongs to the downstream publisher.
    """

    READY = "ready"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"


# =============================================================================
# SKIP REASONS
# =============================================================================


class SkipReason:
    """Values reported in ``ChannelResult.skipped``."""

    NONE = ""
    OUTSIDE_RELEASE_WINDOW = "outside_release_window"
    NO_STORIES = "no_stories"
    FETCH_FAILED = "fetch_failed"
    INVALID_CONFIG = "invalid_config"


# =============================================================================
# CHANNEL
# =============================================================================


@dataclass
class Channel:
    """A release stream (a ``topics`` row) with its drip-feed settings.

    Attributes:
        id: Topic UUID.
        name: Display name, used as ``channel`` in run results.
        enabled: Whether drip feeding is switched on.
        release_interval_hours: Hours between release slots.
        items_per_slot: Maximum stories released per slot.
        window_start_hour: First UTC hour of the daily release window.
        window_end_hour: UTC hour at which the window closes (exclusive).
    """

    id: str
    name: str
    enabled: bool = True
    release_interval_hours: int = 4
    items_per_slot: int = 2
    window_start_hour: int = 6
    window_end_hour: int = 22

    @property
    def label(self) -> str:
        """Name used in reports; falls back to the id for unnamed topics."""
        return self.name or self.id

    @property
    def slots_per_day(self) -> int:
        """Number of full release intervals that fit in the window."""
        span = self.window_end_hour - self.window_start_hour
        return max(span // self.release_interval_hours, 0)

    @property
    def daily_capacity(self) -> int:
        """Stories the channel can release in one day at full slots."""
        return self.slots_per_day * self.items_per_slot

    def validate(self) -> None:
        """Check the drip-feed settings are usable.

        Raises:
            InvalidChannelConfigError: Listing every violated constraint.
        """
        not_integers = [
            f"{name} must be an integer, got {value!r}"
            for name, value in (
                ("release_interval_hours", self.release_interval_hours),
                ("items_per_slot", self.items_per_slot),
                ("window_start_hour", self.window_start_hour),
                ("window_end_hour", self.window_end_hour),
            )
            if not isinstance(value, int) or isinstance(value, bool)
        ]
        if not_integers:
            raise InvalidChannelConfigError(self.id, not_integers)

        issues: List[str] = []
        if self.release_interval_hours < 1:
            issues.append(
                f"release_interval_hours must be >= 1, got {self.release_interval_hours}"
            )
        if self.items_per_slot < 1:
            issues.append(f"items_per_slot must be >= 1, got {self.items_per_slot}")
        if not 0 <= self.window_start_hour < 24:
            issues.append(
                f"window_start_hour must be in [0, 24), got {self.window_start_hour}"
            )
        if not 0 <= self.window_end_hour < 24:
            issues.append(
                f"window_end_hour must be in [0, 24), got {self.window_end_hour}"
            )
        if self.window_start_hour >= self.window_end_hour:
            issues.append(
                f"window_start_hour ({self.window_start_hour}) must be before "
                f"window_end_hour ({self.window_end_hour})"
            )
        if issues:
            raise InvalidChannelConfigError(self.id, issues)

    @classmethod
    def from_row(
        cls, row: Dict[str, Any], defaults: Optional[DripFeedDefaults] = None
    ) -> "Channel":
        """Build a Channel from a ``topics`` row, filling NULL drip columns.

        Values that are not integers are kept as-is and rejected by
        :meth:`validate`, so one malformed row fails only its own channel.
        """
        defaults = defaults or DripFeedDefaults()

        def _pick(column: str, fallback: int) -> Any:
            value = row.get(column)
            if value is None:
                return fallback
            try:
                return int(value)
            except (TypeError, ValueError):
                return value

        return cls(
            id=row["id"],
            name=row.get("name") or "",
            enabled=bool(row.get("drip_feed_enabled", False)),
            release_interval_hours=_pick(
                "drip_release_interval_hours", defaults.release_interval_hours
            ),
            items_per_slot=_pick("drip_stories_per_release", defaults.items_per_slot),
            window_start_hour=_pick("drip_start_hour", defaults.window_start_hour),
            window_end_hour=_pick("drip_end_hour", defaults.window_end_hour),
        )


# =============================================================================
# CONTENT ITEM
# =============================================================================


@dataclass
class ContentItem:
    """A story eligible for timed release.

    Exactly one of ``topic_article_id`` (multi-tenant link) and
    ``article_id`` (legacy link) is normally set; the channel is resolved
    through :class:`~dripfeed.scheduling.channel_resolver.ChannelResolver`.
    """

    id: str
    title: str = ""
    status: StoryStatus = StoryStatus.READY
    created_at: Optional[datetime] = None
    scheduled_publish_at: Optional[datetime] = None
    queued_at: Optional[datetime] = None
    topic_article_id: Optional[str] = None
    article_id: Optional[str] = None

    @property
    def is_backlog_candidate(self) -> bool:
        """Ready and not yet given a release slot."""
        return self.status is StoryStatus.READY and self.scheduled_publish_at is None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ContentItem":
        """Build a ContentItem from a ``stories`` row."""
        return cls(
            id=row["id"],
            title=row.get("title") or "",
            status=StoryStatus(row.get("status", "ready")),
            created_at=parse_timestamp(row.get("created_at")),
            scheduled_publish_at=parse_timestamp(row.get("scheduled_publish_at")),
            queued_at=parse_timestamp(row.get("drip_queued_at")),
            topic_article_id=row.get("topic_article_id"),
            article_id=row.get("article_id"),
        )


# =============================================================================
# RUN RESULTS
# =============================================================================


@dataclass
class ChannelResult:
    """Outcome of one channel in a normal run."""

    channel: str
    channel_id: str
    scheduled: int = 0
    skipped: str = SkipReason.NONE
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "channel": self.channel,
            "channel_id": self.channel_id,
            "scheduled": self.scheduled,
            "skipped": self.skipped,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class RunReport:
    """Aggregated outcome of a normal run across all channels."""

    started_at: datetime
    trigger_source: str
    results: List[ChannelResult] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def total_scheduled(self) -> int:
        return sum(r.scheduled for r in self.results)

    @property
    def channels_processed(self) -> int:
        return sum(1 for r in self.results if r.scheduled > 0)

    @property
    def channels_skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def duration_ms(self) -> int:
        end = self.finished_at or utc_now()
        return int((end - self.started_at).total_seconds() * 1000)

    def summary(self) -> Dict[str, Any]:
        """Context payload for the run-summary audit record."""
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "total_stories_scheduled": self.total_scheduled,
                "topics_processed": self.channels_processed,
                "topics_skipped": self.channels_skipped,
                "trigger_source": self.trigger_source,
            },
            "duration_ms": self.duration_ms,
            "current_hour_utc": self.started_at.hour,
            "run_timestamp": to_iso(self.started_at),
        }


@dataclass
class ChannelPreview:
    """Would-be slot assignments for one channel in a dry run."""

    channel: str
    channel_id: str
    skipped: str = SkipReason.NONE
    daily_capacity: int = 0
    candidate_slots: Dict[datetime, List[str]] = field(default_factory=dict)
    error: Optional[str] = None

    def add(self, slot: datetime, item_id: str) -> None:
        self.candidate_slots.setdefault(slot, []).append(item_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "channel": self.channel,
            "channel_id": self.channel_id,
            "skipped": self.skipped,
            "daily_capacity": self.daily_capacity,
            "candidate_slots": [
                {"slot": to_iso(slot), "item_ids": list(ids)}
                for slot, ids in sorted(self.candidate_slots.items())
            ],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "StoryStatus",
    "SkipReason",
    "Channel",
    "ContentItem",
    "ChannelResult",
    "RunReport",
    "ChannelPreview",
]
