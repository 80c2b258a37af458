"""
Release-window arithmetic for drip-feed slots.

All functions are pure and work on timezone-aware UTC datetimes.  The day
boundary is explicit: a slot belongs to the calendar day it falls on, and
its window closes at ``window_end_hour`` of that same day.
"""

from datetime import datetime, timedelta

from dripfeed.utils import ensure_utc


def is_within_window(hour: int, window_start_hour: int, window_end_hour: int) -> bool:
    """Return True when *hour* lies in ``[window_start_hour, window_end_hour)``."""
    return window_start_hour <= hour < window_end_hour


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def next_slot_after(
    now: datetime,
    interval_hours: int,
    window_start_hour: int,
    window_end_hour: int,
) -> datetime:
    """Compute the first release slot a run at *now* may fill.

    The slot is the next multiple of *interval_hours* past midnight that is
    at least ``now.hour + 1``.  When that hour reaches or passes
    *window_end_hour* (including hour 24), the slot wraps to
    *window_start_hour* of the following day.

    Examples with ``interval_hours=4``, window 06-22::

        08:00 -> 12:00 same day
        11:59 -> 12:00 same day
        12:00 -> 16:00 same day
        21:10 -> 06:00 next day  (24 >= 22)

    Args:
        now: Current time (naive values are treated as UTC).
        interval_hours: Release cadence, >= 1.
        window_start_hour: First hour of the release window.
        window_end_hour: Hour at which the window closes (exclusive).

    Returns:
        Timezone-aware UTC datetime on an hour boundary.
    """
    now = ensure_utc(now)
    midnight = _midnight(now)
    # ceil((hour + 1) / interval) * interval, in integer arithmetic
    slot_hour = -(-(now.hour + 1) // interval_hours) * interval_hours

    if slot_hour >= window_end_hour:
        return midnight + timedelta(days=1, hours=window_start_hour)
    return midnight + timedelta(hours=slot_hour)


def advance_slot(slot: datetime, interval_hours: int) -> datetime:
    """Return the slot *interval_hours* after *slot*."""
    return slot + timedelta(hours=interval_hours)


def window_close_for(slot: datetime, window_end_hour: int) -> datetime:
    """Return the instant the release window containing *slot* closes.

    Advancing a slot past midnight lands on the next day, so callers compare
    against this value rather than ``slot.hour`` alone.
    """
    return _midnight(ensure_utc(slot)) + timedelta(hours=window_end_hour)


__all__ = [
    "is_within_window",
    "next_slot_after",
    "advance_slot",
    "window_close_for",
]
