"""
Test suite for the logical calendar

Tests the 30-day logical-day arithmetic: the 31st collapsing onto the 30th,
month boundaries, February, and the skipped-date range helpers.
"""

import pytest
from datetime import date

from vehicle_finance.logical_calendar import (
    add_logical_days, logical_days_between, previous_logical_day,
    logical_ordinal, from_logical_ordinal, is_logical_day,
    count_skipped_in_range, count_skipped_between, effective_days_between
)


class TestLogicalDaysBetween:
    """Test logical-day differences"""

    def test_end_of_january_to_first_of_march(self):
        """Jan 31 is day 30, so one month plus one day reaches Mar 1"""
        assert logical_days_between(date(2024, 1, 31), date(2024, 3, 1)) == 30

    def test_thirty_first_equals_thirtieth(self):
        assert logical_days_between(date(2024, 1, 30), date(2024, 1, 31)) == 0
        assert logical_ordinal(date(2024, 1, 30)) == logical_ordinal(date(2024, 1, 31))

    def test_same_month(self):
        assert logical_days_between(date(2024, 1, 1), date(2024, 1, 10)) == 9

    def test_full_long_month(self):
        """A 31-day month counts as 30 logical days"""
        assert logical_days_between(date(2024, 1, 1), date(2024, 2, 1)) == 30

    def test_february_keeps_real_length(self):
        assert logical_days_between(date(2024, 2, 1), date(2024, 3, 1)) == 29
        assert logical_days_between(date(2023, 2, 1), date(2023, 3, 1)) == 28

    def test_negative_when_reversed(self):
        assert logical_days_between(date(2024, 1, 10), date(2024, 1, 1)) == -9

    def test_across_year_boundary(self):
        assert logical_days_between(date(2023, 12, 30), date(2024, 1, 1)) == 1
        assert logical_days_between(date(2023, 12, 31), date(2024, 1, 1)) == 1


class TestAddLogicalDays:
    """Test advancing dates by logical days"""

    def test_zero_returns_same_date(self):
        assert add_logical_days(date(2024, 1, 31), 0) == date(2024, 1, 31)

    def test_simple_add(self):
        assert add_logical_days(date(2024, 1, 1), 3) == date(2024, 1, 4)

    def test_thirtieth_plus_one_skips_thirty_first(self):
        assert add_logical_days(date(2024, 1, 30), 1) == date(2024, 2, 1)

    def test_thirty_first_behaves_as_thirtieth(self):
        assert add_logical_days(date(2024, 3, 31), 1) == date(2024, 4, 1)

    def test_february_end(self):
        assert add_logical_days(date(2024, 2, 28), 1) == date(2024, 2, 29)
        assert add_logical_days(date(2024, 2, 29), 1) == date(2024, 3, 1)
        assert add_logical_days(date(2023, 2, 28), 1) == date(2023, 3, 1)

    def test_never_lands_on_thirty_first(self):
        start = date(2024, 1, 1)
        for n in range(1, 400):
            assert is_logical_day(add_logical_days(start, n))

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            add_logical_days(date(2024, 1, 1), -1)

    def test_inverse_of_between(self):
        """Adding the logical difference reaches the target (31sts read as 30ths)"""
        start = date(2024, 1, 15)
        for target in (date(2024, 2, 29), date(2024, 3, 30), date(2024, 7, 1), date(2025, 1, 1)):
            assert add_logical_days(start, logical_days_between(start, target)) == target

    def test_from_ordinal_round_trip(self):
        d = date(2024, 5, 17)
        assert from_logical_ordinal(logical_ordinal(d)) == d


class TestPreviousLogicalDay:
    """Test stepping back one logical day"""

    def test_mid_month(self):
        assert previous_logical_day(date(2024, 1, 10)) == date(2024, 1, 9)

    def test_first_of_month_after_long_month(self):
        assert previous_logical_day(date(2024, 2, 1)) == date(2024, 1, 30)

    def test_first_of_march(self):
        assert previous_logical_day(date(2024, 3, 1)) == date(2024, 2, 29)


class TestSkippedRanges:
    """Test skipped-date counting helpers"""

    def setup_method(self):
        self.skipped = [date(2024, 1, 2), date(2024, 1, 5), date(2024, 1, 31), date(2024, 2, 3)]

    def test_half_open_range_excludes_lower_bound(self):
        assert count_skipped_in_range(self.skipped, date(2024, 1, 2), date(2024, 1, 5)) == 1
        assert count_skipped_in_range(self.skipped, date(2024, 1, 1), date(2024, 1, 5)) == 2

    def test_closed_range_includes_both_bounds(self):
        assert count_skipped_between(self.skipped, date(2024, 1, 2), date(2024, 1, 5)) == 2

    def test_thirty_first_never_counted(self):
        assert count_skipped_in_range(self.skipped, date(2024, 1, 29), date(2024, 2, 1)) == 0

    def test_empty_when_range_reversed(self):
        assert count_skipped_in_range(self.skipped, date(2024, 2, 1), date(2024, 1, 1)) == 0
        assert count_skipped_between(self.skipped, date(2024, 2, 1), date(2024, 1, 1)) == 0

    def test_effective_days_forward(self):
        # Jan 1 -> Jan 10 is 9 logical days, 2 of them skipped
        assert effective_days_between(date(2024, 1, 1), date(2024, 1, 10), self.skipped) == 7

    def test_effective_days_backward(self):
        assert effective_days_between(date(2024, 1, 10), date(2024, 1, 1), self.skipped) == -7

    def test_effective_days_zero(self):
        assert effective_days_between(date(2024, 1, 10), date(2024, 1, 10), self.skipped) == 0
