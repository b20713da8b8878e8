"""
Debt Snapshot Module

Freezes a loan's debt state onto each payment at the moment it is recorded:
what was owed just before the payment and where the loan stands right after.
Snapshots are written once and never recomputed.
"""

from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import logging

from .storage import StorageInterface, parse_date, parse_datetime, parse_decimal, to_storage_value
from .loans import Loan, LoanManager, ZERO
from .ledger import payment_days
from .logical_calendar import (
    logical_days_between, previous_logical_day, count_skipped_in_range
)
from .skipped_dates import SkippedDateResolver
from .clock import local_today
from .logging_config import get_logger, log_action


DEFAULT_TOLERANCE = Decimal('0.01')


@dataclass(frozen=True)
class DebtSnapshot:
    """Immutable pre/post payment debt state"""
    exact_installments_owed_before: Decimal
    remaining_amount_owed_before: Decimal
    days_behind_after: Decimal
    days_ahead_after: Decimal
    is_up_to_date_after: bool
    days_covered_by_this_payment: Decimal
    remaining_amount_owed_after: Decimal

    def to_fields(self) -> Dict[str, Any]:
        return asdict(self)


def days_owed_through_yesterday(loan: Loan, as_of: date, skipped_dates: Iterable[date] = ()) -> int:
    """
    Obligating logical days from the day after the start date through the
    logical day before ``as_of``. Today's obligation has not accrued yet.
    """
    yesterday = previous_logical_day(as_of)
    span = logical_days_between(loan.start_date, yesterday)
    if span <= 0:
        return 0
    return max(0, span - count_skipped_in_range(skipped_dates, loan.start_date, yesterday))


def take_snapshot(
    loan: Loan,
    covered_before: Decimal,
    amount_total: Decimal,
    as_of: date,
    skipped_dates: Iterable[date] = (),
    tolerance: Decimal = DEFAULT_TOLERANCE
) -> DebtSnapshot:
    """
    Snapshot for a payment of ``amount_total`` made on ``as_of``.

    Args:
        loan: Loan being paid
        covered_before: Fractional days covered before this payment
            (down payment included)
        amount_total: Base plus add-on amount of the payment
        as_of: Business date the payment is recorded for
        skipped_dates: Resolved skipped dates for the loan
        tolerance: Net-position band treated as exactly current
    """
    owed_days = Decimal(days_owed_through_yesterday(loan, as_of, skipped_dates))
    frequency = loan.payment_frequency

    owed_before = max(ZERO, owed_days - covered_before)

    this_payment = payment_days(loan, amount_total)
    net_position = covered_before + this_payment - owed_days
    days_behind_after = max(ZERO, -net_position)
    days_ahead_after = max(ZERO, net_position)

    return DebtSnapshot(
        exact_installments_owed_before=frequency.to_installments(owed_before),
        remaining_amount_owed_before=owed_before * loan.daily_rate,
        days_behind_after=days_behind_after,
        days_ahead_after=days_ahead_after,
        is_up_to_date_after=abs(net_position) < tolerance,
        days_covered_by_this_payment=this_payment,
        remaining_amount_owed_after=days_behind_after * loan.daily_rate
    )


def backfill_snapshots(
    storage: StorageInterface,
    loan_manager: LoanManager,
    resolver: SkippedDateResolver,
    timezone_name: str = "America/Bogota",
    tolerance: Decimal = DEFAULT_TOLERANCE,
    table: str = "installments",
    logger: Optional[logging.Logger] = None
) -> int:
    """
    Fill debt snapshots on stored installments that were recorded without one.

    Each loan is replayed in creation order so ``covered_before`` matches
    what the payment saw when it was made. The payment date is the as-of
    date; records without one fall back to their creation day. Existing
    snapshots are never overwritten.

    Returns:
        Number of installments updated
    """
    logger = logger or get_logger("vehicle_finance.snapshot")

    by_loan: Dict[str, List[Dict[str, Any]]] = {}
    for record in storage.load_all(table):
        by_loan.setdefault(record['loan_id'], []).append(record)

    filled = 0
    for loan_id, records in by_loan.items():
        loan = loan_manager.get_loan(loan_id)
        if loan is None:
            logger.warning("Skipping snapshot backfill for missing loan %s", loan_id)
            continue

        skipped = resolver.resolve(loan_id).dates
        records.sort(key=lambda r: (parse_datetime(r['created_at']), r.get('sequence', 0)))

        covered = loan.down_payment_days
        with storage.atomic():
            for record in records:
                amount_total = parse_decimal(record['amount']) + parse_decimal(record.get('gps_amount') or '0')
                if record.get('exact_installments_owed_before') is None:
                    as_of = parse_date(record.get('payment_date')) or \
                        local_today(parse_datetime(record['created_at']), timezone_name)
                    snapshot = take_snapshot(loan, covered, amount_total, as_of, skipped, tolerance)
                    record.update(to_storage_value(snapshot.to_fields()))
                    storage.save(table, record['id'], record)
                    filled += 1
                covered += payment_days(loan, amount_total)

    log_action(
        logger, "info", "Debt snapshot backfill finished",
        action="snapshot.backfilled", extra={"loans": len(by_loan), "filled": filled}
    )
    return filled
