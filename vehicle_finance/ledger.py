"""
Coverage Ledger Module

Replays a loan's payment history (plus its down payment) into the current
coverage position: the fractional number of logical days paid for and the
last calendar date that coverage reaches.

Payments are applied in creation order, not payment-date order.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List, Optional
import logging

from .loans import Loan, ZERO
from .logical_calendar import add_logical_days, count_skipped_in_range
from .logging_config import get_logger


default_logger = get_logger("vehicle_finance.ledger")


@dataclass(frozen=True)
class CoveragePosition:
    """Where a loan's coverage stands after replaying its payments"""
    last_covered_date: date
    total_days_covered: Decimal     # Fractional; never truncated
    down_payment_days: Decimal
    payments_applied: int

    @property
    def full_days_covered(self) -> int:
        return int(self.total_days_covered)


def down_payment_days(loan: Loan) -> Decimal:
    """Fractional logical days prepaid by the loan's down payment"""
    return loan.down_payment_days


def payment_days(loan: Loan, amount_total: Decimal) -> Decimal:
    """Logical days bought by ``amount_total`` at the loan's daily rate"""
    return Decimal(amount_total) / loan.daily_rate


def replay_order(payments: Iterable[Any]) -> List[Any]:
    """Payments sorted by creation time, then per-loan sequence"""
    return sorted(payments, key=lambda p: (p.created_at, getattr(p, 'sequence', 0)))


def compute_position(
    loan: Loan,
    payments: Iterable[Any],
    skipped_dates: Iterable[date] = (),
    exclude_payment_id: Optional[str] = None,
    logger: Optional[logging.Logger] = None
) -> CoveragePosition:
    """
    Compute a loan's coverage position.

    Args:
        loan: Loan supplying start date, daily rate and down payment
        payments: The loan's payments; each exposes ``id``, ``amount``,
            ``gps_amount`` and ``created_at``
        skipped_dates: Resolved non-obligating dates for the loan
        exclude_payment_id: Payment to leave out (edit/delete previews)
        logger: Optional logger for the replay trace

    Returns:
        CoveragePosition

    The skipped-date extension is a single pass: the provisional end is
    pushed forward by the skipped dates it spans, and the extension itself
    is not re-checked for further skipped dates.
    """
    logger = logger or default_logger
    skipped_dates = list(skipped_dates)

    down_days = loan.down_payment_days
    total = down_days
    applied = 0
    for payment in replay_order(payments):
        if exclude_payment_id and payment.id == exclude_payment_id:
            continue
        total += payment_days(loan, payment.amount + payment.gps_amount)
        applied += 1

    if total <= ZERO:
        last_covered = loan.start_date
    else:
        provisional = add_logical_days(loan.start_date, int(total))
        skipped = count_skipped_in_range(skipped_dates, loan.start_date, provisional)
        last_covered = add_logical_days(provisional, skipped)

    logger.debug(
        "Ledger position for loan %s: %s days covered (%s from down payment, %d payments), last covered %s",
        loan.id, total, down_days, applied, last_covered.isoformat()
    )

    return CoveragePosition(
        last_covered_date=last_covered,
        total_days_covered=total,
        down_payment_days=down_days,
        payments_applied=applied
    )
