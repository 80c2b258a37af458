"""Tests for release-window arithmetic in dripfeed.scheduling.slots."""

from datetime import datetime, timedelta, timezone

import pytest

from dripfeed.scheduling.slots import (
    advance_slot,
    is_within_window,
    next_slot_after,
    window_close_for,
)


def at(hour, minute=0, day=15):
    return datetime(2025, 6, day, hour, minute, tzinfo=timezone.utc)


# =============================================================================
# is_within_window
# =============================================================================


class TestIsWithinWindow:

    @pytest.mark.parametrize("hour, expected", [
        (5, False),
        (6, True),
        (14, True),
        (21, True),
        (22, False),
        (23, False),
    ])
    def test_half_open_window(self, hour, expected):
        """Start hour is inside, end hour is outside."""
        assert is_within_window(hour, 6, 22) is expected


# =============================================================================
# next_slot_after
# =============================================================================


class TestNextSlotAfter:

    @pytest.mark.parametrize("now, expected", [
        (at(8), at(12)),
        (at(11, 59), at(12)),
        (at(12), at(16)),
        (at(6), at(8)),
        (at(7, 30), at(8)),
    ])
    def test_next_multiple_of_interval(self, now, expected):
        assert next_slot_after(now, 4, 6, 22) == expected

    def test_slot_at_window_end_wraps_to_next_morning(self):
        # 20:00 -> ceil(21/4)*4 = 24 >= 22
        assert next_slot_after(at(20), 4, 6, 22) == at(6, day=16)

    def test_late_evening_wraps(self):
        assert next_slot_after(at(21, 10), 4, 6, 22) == at(6, day=16)

    def test_hourly_interval(self):
        assert next_slot_after(at(9, 45), 1, 6, 22) == at(10)

    def test_slot_equal_to_end_hour_wraps(self):
        """The end hour itself is outside the window."""
        assert next_slot_after(at(17), 3, 6, 18) == at(6, day=16)

    def test_wrap_across_month_end(self):
        now = datetime(2025, 6, 30, 23, 0, tzinfo=timezone.utc)
        assert next_slot_after(now, 4, 6, 22) == datetime(2025, 7, 1, 6, tzinfo=timezone.utc)

    def test_naive_input_is_treated_as_utc(self):
        assert next_slot_after(datetime(2025, 6, 15, 8), 4, 6, 22) == at(12)

    def test_result_is_on_hour_boundary(self):
        slot = next_slot_after(at(8, 37), 4, 6, 22)
        assert (slot.minute, slot.second, slot.microsecond) == (0, 0, 0)


# =============================================================================
# advance_slot / window_close_for
# =============================================================================


class TestWindowClose:

    def test_advance_slot_adds_interval(self):
        assert advance_slot(at(12), 4) == at(16)

    def test_close_is_end_hour_of_slot_day(self):
        assert window_close_for(at(12), 22) == at(22)

    def test_close_follows_slot_into_next_day(self):
        assert window_close_for(at(6, day=16), 22) == at(22, day=16)

    def test_advancing_past_midnight_is_past_close(self):
        """A slot pushed past midnight must not be read as an early-hour slot."""
        slot = at(20)
        close = window_close_for(slot, 23)
        later = advance_slot(slot, 4)
        assert later.hour == 0
        assert later >= close
        assert later - close == timedelta(hours=1)
