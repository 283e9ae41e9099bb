"""Unit tests for the event window calculator."""
from datetime import datetime, timedelta, timezone

import pytest

from processor.models import Frequency, TimeInterval
from processor.recurrence import ONGOING, PAST, UPCOMING, calculate_event_window, classify


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


NOW = utc(2025, 5, 20, 9, 0)


def single(start: datetime, end: datetime) -> TimeInterval:
    return TimeInterval(start=start, end=end)


class TestClassify:
    """Test cases for occurrence classification."""

    def test_upcoming(self):
        assert classify(utc(2025, 6, 1), utc(2025, 6, 2), NOW) == UPCOMING

    def test_ongoing(self):
        assert classify(utc(2025, 5, 20, 8), utc(2025, 5, 20, 10), NOW) == ONGOING

    def test_ongoing_without_end(self):
        assert classify(utc(2025, 5, 1), None, NOW) == ONGOING

    def test_end_is_exclusive(self):
        assert classify(utc(2025, 5, 20, 8), NOW, NOW) == PAST


class TestSingleIntervals:
    """Test cases for non-recurring intervals."""

    def test_upcoming_single_interval(self):
        window = calculate_event_window(
            [single(utc(2025, 6, 1, 20), utc(2025, 6, 1, 23))], now=utc(2025, 5, 20)
        )
        assert window.start == utc(2025, 6, 1, 20)
        assert window.end == utc(2025, 6, 1, 23)

    def test_no_intervals(self):
        window = calculate_event_window([], now=NOW)
        assert window.start is None
        assert window.end is None

    def test_only_past_intervals(self):
        intervals = [
            single(utc(2025, 1, 1, 10), utc(2025, 1, 1, 12)),
            single(utc(2025, 3, 1, 10), utc(2025, 3, 1, 12)),
        ]
        window = calculate_event_window(intervals, now=NOW)
        assert window.start is None
        assert window.end is None

    def test_ongoing_wins_over_upcoming(self):
        ongoing = single(utc(2025, 5, 19, 10), utc(2025, 5, 21, 18))
        upcoming = single(utc(2025, 5, 22, 10), utc(2025, 5, 22, 12))
        window = calculate_event_window([upcoming, ongoing], now=NOW)
        assert window.start == ongoing.start
        assert window.end == ongoing.end

    def test_multiple_ongoing_span_min_start_max_end(self):
        intervals = [
            single(utc(2025, 5, 18, 10), utc(2025, 5, 20, 12)),
            single(utc(2025, 5, 19, 10), utc(2025, 5, 25, 12)),
        ]
        window = calculate_event_window(intervals, now=NOW)
        assert window.start == utc(2025, 5, 18, 10)
        assert window.end == utc(2025, 5, 25, 12)

    def test_earliest_upcoming_is_chosen(self):
        intervals = [
            single(utc(2025, 7, 1, 10), utc(2025, 7, 1, 12)),
            single(utc(2025, 6, 1, 10), utc(2025, 6, 1, 12)),
            single(utc(2025, 1, 1, 10), utc(2025, 1, 1, 12)),
        ]
        window = calculate_event_window(intervals, now=NOW)
        assert window.start == utc(2025, 6, 1, 10)
        assert window.end == utc(2025, 6, 1, 12)


class TestPrecomputedWindow:
    """Test cases for provider-supplied interval_start/interval_end."""

    def test_valid_precomputed_window_is_used(self):
        intervals = [single(utc(2025, 6, 1, 20), utc(2025, 6, 1, 23))]
        hint = (utc(2025, 5, 30, 18), utc(2025, 5, 30, 20))
        window = calculate_event_window(intervals, now=NOW, precomputed=hint)
        assert window.start == hint[0]
        assert window.end == hint[1]

    def test_past_precomputed_window_falls_back(self):
        intervals = [single(utc(2025, 6, 1, 20), utc(2025, 6, 1, 23))]
        hint = (utc(2025, 4, 1, 18), utc(2025, 4, 1, 20))
        window = calculate_event_window(intervals, now=NOW, precomputed=hint)
        assert window.start == utc(2025, 6, 1, 20)
        assert window.end == utc(2025, 6, 1, 23)


class TestWeeklyRecurrence:
    """Test cases for weekly rules with explicit weekdays."""

    def weekly(self, **overrides) -> TimeInterval:
        values = {
            'start': utc(2025, 1, 6, 10),  # Monday
            'end': utc(2025, 1, 6, 12),
            'weekdays': frozenset({'Wednesday', 'Friday'}),
            'frequency': Frequency.WEEKLY,
            'interval': 1,
        }
        values.update(overrides)
        return TimeInterval(**values)

    def test_next_upcoming_weekday(self):
        window = calculate_event_window([self.weekly()], now=NOW)  # Tuesday
        assert window.start == utc(2025, 5, 21, 10)
        assert window.end == utc(2025, 5, 21, 12)

    def test_ongoing_occurrence(self):
        window = calculate_event_window([self.weekly()], now=utc(2025, 5, 21, 11))
        assert window.start == utc(2025, 5, 21, 10)
        assert window.end == utc(2025, 5, 21, 12)

    def test_every_second_week(self):
        interval = self.weekly(weekdays=frozenset({'Monday'}), interval=2)
        window = calculate_event_window([interval], now=NOW)
        assert window.start == utc(2025, 5, 26, 10)

    def test_expired_repeat_until_is_discarded(self):
        interval = self.weekly(repeat_until=utc(2025, 3, 31, 23, 59))
        window = calculate_event_window([interval], now=NOW)
        assert window.start is None
        assert window.end is None

    def test_repeat_until_bounds_occurrences(self):
        # Rule still valid at "now" but its last occurrence has already ended
        interval = self.weekly(repeat_until=utc(2025, 5, 20, 23, 59))
        window = calculate_event_window([interval], now=NOW)
        assert window.start is None

    def test_wall_clock_time_survives_dst(self):
        interval = TimeInterval(
            start=utc(2025, 3, 3, 18),  # 19:00 Europe/Berlin (CET)
            end=utc(2025, 3, 3, 20),
            weekdays=frozenset({'Monday'}),
            timezone='Europe/Berlin',
            frequency=Frequency.WEEKLY,
        )
        window = calculate_event_window([interval], now=utc(2025, 4, 1))
        # 19:00 CEST on Monday 7 April
        assert window.start == utc(2025, 4, 7, 17)
        assert window.end == utc(2025, 4, 7, 19)


class TestCadenceRecurrence:
    """Test cases for daily, monthly and yearly rules."""

    def test_daily_ongoing(self):
        interval = TimeInterval(
            start=utc(2025, 1, 1, 18), end=utc(2025, 1, 1, 20), frequency=Frequency.DAILY
        )
        window = calculate_event_window([interval], now=utc(2025, 5, 20, 19))
        assert window.start == utc(2025, 5, 20, 18)
        assert window.end == utc(2025, 5, 20, 20)

    def test_daily_anchor_far_in_the_past(self):
        interval = TimeInterval(
            start=utc(2015, 1, 1, 18), end=utc(2015, 1, 1, 20), frequency=Frequency.DAILY
        )
        window = calculate_event_window([interval], now=NOW)
        assert window.start == utc(2025, 5, 20, 18)

    def test_daily_every_third_day(self):
        interval = TimeInterval(
            start=utc(2025, 5, 1, 18), end=utc(2025, 5, 1, 20),
            frequency=Frequency.DAILY, interval=3,
        )
        window = calculate_event_window([interval], now=NOW)
        # May 1, 4, 7, 10, 13, 16, 19, 22
        assert window.start == utc(2025, 5, 22, 18)

    def test_monthly_clamps_to_month_end(self):
        interval = TimeInterval(
            start=utc(2025, 1, 31, 10), end=utc(2025, 1, 31, 11), frequency=Frequency.MONTHLY
        )
        window = calculate_event_window([interval], now=utc(2025, 2, 15))
        assert window.start == utc(2025, 2, 28, 10)
        assert window.end == utc(2025, 2, 28, 11)

    def test_yearly(self):
        interval = TimeInterval(
            start=utc(2020, 7, 4, 20), end=utc(2020, 7, 4, 22), frequency=Frequency.YEARLY
        )
        window = calculate_event_window([interval], now=NOW)
        assert window.start == utc(2025, 7, 4, 20)
        assert window.end == utc(2025, 7, 4, 22)

    def test_repeat_until_stops_search(self):
        interval = TimeInterval(
            start=utc(2025, 1, 1, 18), end=utc(2025, 1, 1, 20),
            frequency=Frequency.DAILY, repeat_until=utc(2025, 5, 20, 12),
        )
        window = calculate_event_window([interval], now=utc(2025, 5, 20, 10))
        assert window.start is None
        assert window.end is None

    @pytest.mark.parametrize('frequency', [Frequency.DAILY, Frequency.MONTHLY, Frequency.YEARLY])
    def test_upcoming_first_occurrence(self, frequency):
        start = NOW + timedelta(days=3)
        interval = TimeInterval(start=start, end=start + timedelta(hours=2), frequency=frequency)
        window = calculate_event_window([interval], now=NOW)
        assert window.start == start
