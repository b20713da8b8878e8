"""
Logical Calendar Module

Obligation accounting runs on a 30-day-month calendar. The 31st of a month is
not a separate logical day: it is the same logical day as the 30th, and adding
one day to the 30th lands on the 1st of the next month. Shorter months keep
their real length, so every logical date is also a real calendar date and
``add_logical_days`` / ``logical_days_between`` are exact inverses.

Example::

    logical_days_between(date(2024, 1, 31), date(2024, 3, 1)) == 30
"""

from datetime import date, timedelta
from typing import Iterable

# Months that carry a 31st
LONG_MONTHS = (1, 3, 5, 7, 8, 10, 12)


def _thirty_firsts_through(d: date) -> int:
    """Number of 31st days from 0001-01-01 up to and including ``d``"""
    count = len(LONG_MONTHS) * (d.year - 1)
    count += sum(1 for month in LONG_MONTHS if month < d.month)
    if d.day == 31:
        count += 1
    return count


def logical_ordinal(d: date) -> int:
    """Position of ``d`` on the logical-day axis (the 31st shares the 30th's)"""
    return d.toordinal() - _thirty_firsts_through(d)


def from_logical_ordinal(ordinal: int) -> date:
    """Real date for a logical ordinal; never returns a 31st"""
    guess = ordinal
    while True:
        candidate = date.fromordinal(guess)
        diff = ordinal - logical_ordinal(candidate)
        if diff == 0:
            return candidate - timedelta(days=1) if candidate.day == 31 else candidate
        guess += diff


def is_logical_day(d: date) -> bool:
    return d.day != 31


def add_logical_days(d: date, n: int) -> date:
    """
    Advance ``d`` by ``n`` logical days.

    Args:
        d: Starting date (a 31st behaves as the 30th)
        n: Non-negative number of logical days

    Returns:
        ``d`` itself when ``n == 0``, otherwise the date ``n`` logical days later

    Raises:
        ValueError: If ``n`` is negative
    """
    if n < 0:
        raise ValueError(f"Cannot add a negative number of logical days ({n})")
    if n == 0:
        return d
    return from_logical_ordinal(logical_ordinal(d) + n)


def logical_days_between(start: date, end: date) -> int:
    """Signed logical-day difference; negative when ``end`` precedes ``start``"""
    return logical_ordinal(end) - logical_ordinal(start)


def previous_logical_day(d: date) -> date:
    return from_logical_ordinal(logical_ordinal(d) - 1)


def count_skipped_in_range(skipped_dates: Iterable[date], after: date, through: date) -> int:
    """Skipped logical days in the half-open range ``(after, through]``"""
    low = logical_ordinal(after)
    high = logical_ordinal(through)
    if high <= low:
        return 0
    return sum(
        1 for s in skipped_dates
        if is_logical_day(s) and low < logical_ordinal(s) <= high
    )


def count_skipped_between(skipped_dates: Iterable[date], first: date, last: date) -> int:
    """Skipped logical days in the closed range ``[first, last]``"""
    low = logical_ordinal(first)
    high = logical_ordinal(last)
    if high < low:
        return 0
    return sum(
        1 for s in skipped_dates
        if is_logical_day(s) and low <= logical_ordinal(s) <= high
    )


def effective_days_between(start: date, end: date, skipped_dates: Iterable[date]) -> int:
    """
    Signed count of obligating logical days from ``start`` to ``end``.

    Positive when ``end`` is after ``start``: logical days in ``(start, end]``
    that are not skipped. Negative when ``end`` is before ``start``: minus the
    non-skipped logical days in ``(end, start]``.
    """
    skipped_dates = list(skipped_dates)
    span = logical_days_between(start, end)
    if span >= 0:
        return span - count_skipped_in_range(skipped_dates, start, end)
    return span + count_skipped_in_range(skipped_dates, end, start)
