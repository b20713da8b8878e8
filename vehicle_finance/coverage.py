"""
Payment Coverage Module

Works out which dates a new payment pays for and whether it arrives late or
in advance, plus the as-of-today status used by listings and dashboards.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
import logging

from .loans import Loan, ZERO
from .ledger import CoveragePosition, payment_days
from .logical_calendar import (
    add_logical_days, count_skipped_between, count_skipped_in_range,
    effective_days_between
)
from .logging_config import get_logger


default_logger = get_logger("vehicle_finance.coverage")


@dataclass(frozen=True)
class PaymentCoverage:
    """Date range one payment covers"""
    days_covered: Decimal
    coverage_start: date
    coverage_end: date
    is_late: bool
    late_payment_date: Optional[date]
    is_advance: bool
    advance_payment_date: Optional[date]


@dataclass(frozen=True)
class CoverageStatus:
    """Ahead/behind position of a loan on a given day"""
    last_covered_date: date
    as_of: date
    days_behind: int
    days_ahead: int
    amount_needed_to_catch_up: Decimal
    installments_behind: Decimal
    installments_ahead: Decimal
    skipped_dates_in_range: int
    skipped_dates_degraded: bool = False

    @property
    def is_up_to_date(self) -> bool:
        return self.days_behind == 0 and self.days_ahead == 0


def calculate_coverage(
    loan: Loan,
    amount_total: Decimal,
    position: CoveragePosition,
    as_of: date,
    skipped_dates: Iterable[date] = (),
    logger: Optional[logging.Logger] = None
) -> PaymentCoverage:
    """
    Coverage of a payment of ``amount_total`` (base plus add-on).

    ``is_late`` is inclusive of ``as_of``: the obligation for that day
    already existed when the payment arrived.
    """
    logger = logger or default_logger
    skipped = set(skipped_dates)

    days_covered = payment_days(loan, amount_total)

    coverage_start = add_logical_days(position.last_covered_date, 1)
    while coverage_start in skipped:
        coverage_start = add_logical_days(coverage_start, 1)

    full_days = int(days_covered) if days_covered > ZERO else 0
    if full_days >= 1:
        provisional_end = add_logical_days(coverage_start, full_days - 1)
        extension = count_skipped_between(skipped, coverage_start, provisional_end)
        coverage_end = add_logical_days(provisional_end, extension)
    else:
        # A sub-day payment still touches its start day
        coverage_end = coverage_start

    is_late = coverage_start <= as_of
    is_advance = coverage_end > as_of

    logger.debug(
        "Coverage for loan %s: %s days, %s..%s (late=%s, advance=%s)",
        loan.id, days_covered, coverage_start.isoformat(), coverage_end.isoformat(),
        is_late, is_advance
    )

    return PaymentCoverage(
        days_covered=days_covered,
        coverage_start=coverage_start,
        coverage_end=coverage_end,
        is_late=is_late,
        late_payment_date=coverage_start if is_late else None,
        is_advance=is_advance,
        advance_payment_date=coverage_end if is_advance else None
    )


def coverage_status(
    loan: Loan,
    position: CoveragePosition,
    today: date,
    skipped_dates: Iterable[date] = ()
) -> CoverageStatus:
    """
    Days behind or ahead of ``today`` based on the last covered date.

    Skipped dates between the last covered date and today do not count in
    either direction: ahead days exclude skipped dates in
    ``(today, last_covered]`` the same way behind days exclude those in
    ``(last_covered, today]``. The reversed range is counted, not treated
    as empty, so a skipped day already prepaid never inflates days ahead.
    Exactly one of ``days_behind``/``days_ahead`` is
    non-zero unless the loan is exactly current.
    """
    skipped_dates = list(skipped_dates)
    last_covered = position.last_covered_date

    signed = effective_days_between(last_covered, today, skipped_dates)
    days_behind = max(0, signed)
    days_ahead = max(0, -signed)

    if last_covered <= today:
        skipped_in_range = count_skipped_in_range(skipped_dates, last_covered, today)
    else:
        skipped_in_range = count_skipped_in_range(skipped_dates, today, last_covered)

    frequency = loan.payment_frequency
    return CoverageStatus(
        last_covered_date=last_covered,
        as_of=today,
        days_behind=days_behind,
        days_ahead=days_ahead,
        amount_needed_to_catch_up=Decimal(days_behind) * loan.daily_rate,
        installments_behind=frequency.to_installments(days_behind),
        installments_ahead=frequency.to_installments(days_ahead),
        skipped_dates_in_range=skipped_in_range
    )
