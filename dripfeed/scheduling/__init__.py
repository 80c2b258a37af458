"""Scheduling subsystem: drip-feed slot assignment, emergency release, preview."""

from dripfeed.scheduling.channel_resolver import ChannelResolver
from dripfeed.scheduling.drip_feed_scheduler import DripFeedScheduler
from dripfeed.scheduling.handler import DripFeedRequest, handle_drip_feed_request
from dripfeed.scheduling.models import (
    Channel,
    ChannelPreview,
    ChannelResult,
    ContentItem,
    RunReport,
    SkipReason,
    StoryStatus,
)
from dripfeed.scheduling.occupancy import SlotOccupancyIndex
from dripfeed.scheduling.rate_limiter import KeyedRateLimiter

__all__ = [
    "Channel",
    "ChannelPreview",
    "ChannelResolver",
    "ChannelResult",
    "ContentItem",
    "DripFeedRequest",
    "DripFeedScheduler",
    "KeyedRateLimiter",
    "RunReport",
    "SkipReason",
    "SlotOccupancyIndex",
    "StoryStatus",
    "handle_drip_feed_request",
]
