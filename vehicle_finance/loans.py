"""
Loan Module

Loan aggregate for installment-financed vehicles: configuration (start date,
daily rates, down payment, cadence) plus the running totals that every
payment create/delete refreshes.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime, parse_decimal
from .logical_calendar import add_logical_days
from .exceptions import ArithmeticAnomalyError, LoanNotFoundError, ValidationError
from .logging_config import get_logger, log_action


ZERO = Decimal('0')


def to_decimal(value: Any, name: str = "amount") -> Decimal:
    """Coerce user input (int, str, float, Decimal) to a finite Decimal without float noise"""
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{name} must be a decimal amount, got {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{name} must be a finite amount, got {value!r}")
    return result


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "ACTIVE"          # Accepting payments
    COMPLETED = "COMPLETED"    # Debt or installments exhausted
    DEFAULTED = "DEFAULTED"    # Set by collections, never by the ledger


class PaymentFrequency(Enum):
    """Installment cadence; rates are always per logical day"""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"

    @property
    def period_days(self) -> int:
        """Logical days in one installment period"""
        return {
            PaymentFrequency.DAILY: 1,
            PaymentFrequency.WEEKLY: 7,
            PaymentFrequency.BIWEEKLY: 14,
            PaymentFrequency.MONTHLY: 30,
        }[self]

    def to_installments(self, days: Decimal) -> Decimal:
        """Express a logical-day count as fractional installments"""
        return to_decimal(days) / Decimal(self.period_days)


@dataclass
class Loan(StorageRecord):
    """Installment loan with cached ledger position and running aggregates"""
    store_id: str
    customer_id: str
    start_date: date                    # Day 0, never charged
    base_daily_rate: Decimal
    total_installments: Decimal
    financed_amount: Decimal            # Debt to be repaid by base amounts
    gps_daily_rate: Decimal = ZERO      # Device-tracking add-on
    down_payment: Decimal = ZERO
    payment_frequency: PaymentFrequency = PaymentFrequency.DAILY
    vehicle_type: Optional[str] = None
    status: LoanStatus = LoanStatus.ACTIVE

    # Running aggregates
    paid_installments: Decimal = ZERO
    remaining_installments: Optional[Decimal] = None
    total_paid: Decimal = ZERO
    total_gps_paid: Decimal = ZERO
    debt_remaining: Optional[Decimal] = None

    # Cached ledger position
    last_covered_date: Optional[date] = None
    payment_sequence: int = 0           # Tie-breaker for payments created in the same instant
    archived: bool = False

    def __post_init__(self):
        if self.remaining_installments is None:
            self.remaining_installments = self.total_installments - self.paid_installments
        if self.debt_remaining is None:
            self.debt_remaining = self.financed_amount - self.total_paid
        if self.last_covered_date is None:
            self.last_covered_date = self.start_date

    @property
    def daily_rate(self) -> Decimal:
        """Currency charged per logical day (base plus add-on)"""
        return self.base_daily_rate + self.gps_daily_rate

    @property
    def installment_amount(self) -> Decimal:
        return self.daily_rate * self.payment_frequency.period_days

    @property
    def down_payment_days(self) -> Decimal:
        """Fractional logical days prepaid by the down payment"""
        if self.down_payment <= ZERO or self.daily_rate <= ZERO:
            return ZERO
        return self.down_payment / self.daily_rate

    @property
    def accepts_payments(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            store_id=data['store_id'],
            customer_id=data['customer_id'],
            start_date=parse_date(data['start_date']),
            base_daily_rate=parse_decimal(data['base_daily_rate']),
            total_installments=parse_decimal(data['total_installments']),
            financed_amount=parse_decimal(data['financed_amount']),
            gps_daily_rate=parse_decimal(data.get('gps_daily_rate', '0')),
            down_payment=parse_decimal(data.get('down_payment', '0')),
            payment_frequency=PaymentFrequency(data.get('payment_frequency', 'DAILY')),
            vehicle_type=data.get('vehicle_type'),
            status=LoanStatus(data['status']),
            paid_installments=parse_decimal(data['paid_installments']),
            remaining_installments=parse_decimal(data['remaining_installments']),
            total_paid=parse_decimal(data['total_paid']),
            total_gps_paid=parse_decimal(data.get('total_gps_paid', '0')),
            debt_remaining=parse_decimal(data['debt_remaining']),
            last_covered_date=parse_date(data.get('last_covered_date')),
            payment_sequence=data.get('payment_sequence', 0),
            archived=data.get('archived', False),
        )


def refresh_aggregates(loan: Loan, payments: Iterable[Any]) -> Loan:
    """
    Recompute a loan's running totals from its surviving payments.

    Aggregates are rebuilt rather than incremented so a delete exactly
    reverses a create and clamping can never drift. DEFAULTED is preserved.
    """
    payments = list(payments)
    total_base = sum((p.amount for p in payments), ZERO)
    total_gps = sum((p.gps_amount for p in payments), ZERO)
    days_paid = (total_base + total_gps) / loan.daily_rate

    paid = min(loan.total_installments, loan.payment_frequency.to_installments(days_paid))
    loan.paid_installments = paid
    loan.remaining_installments = max(ZERO, loan.total_installments - paid)
    loan.total_paid = total_base
    loan.total_gps_paid = total_gps
    loan.debt_remaining = max(ZERO, loan.financed_amount - total_base)

    if loan.status != LoanStatus.DEFAULTED:
        if loan.debt_remaining <= ZERO or loan.remaining_installments <= ZERO:
            loan.status = LoanStatus.COMPLETED
        else:
            loan.status = LoanStatus.ACTIVE
    return loan


class LoanManager:
    """
    Creates, loads and persists loans
    """

    def __init__(
        self,
        storage: StorageInterface,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("vehicle_finance.loans")
        self.loans_table = "loans"

    def create_loan(
        self,
        store_id: str,
        customer_id: str,
        start_date: date,
        base_daily_rate: Any,
        total_installments: Any,
        financed_amount: Any = None,
        gps_daily_rate: Any = ZERO,
        down_payment: Any = ZERO,
        payment_frequency: PaymentFrequency = PaymentFrequency.DAILY,
        vehicle_type: Optional[str] = None
    ) -> Loan:
        """
        Create a loan after validating its rate configuration

        Args:
            store_id: Owning store
            customer_id: Borrower
            start_date: Day 0 of the obligation
            base_daily_rate: Installment rate per logical day
            total_installments: Number of installments (in cadence periods)
            financed_amount: Debt repaid by base amounts; defaults to
                base_daily_rate * period * total_installments
            gps_daily_rate: Add-on rate per logical day
            down_payment: Upfront amount converted to prepaid days
            payment_frequency: Installment cadence
            vehicle_type: Used to match store-wide calendar exceptions

        Returns:
            Created Loan
        """
        base_daily_rate = to_decimal(base_daily_rate, "base_daily_rate")
        gps_daily_rate = to_decimal(gps_daily_rate, "gps_daily_rate")
        down_payment = to_decimal(down_payment, "down_payment")
        total_installments = to_decimal(total_installments, "total_installments")

        if base_daily_rate < ZERO or gps_daily_rate < ZERO:
            raise ArithmeticAnomalyError("Daily rates cannot be negative")
        if base_daily_rate + gps_daily_rate <= ZERO:
            raise ArithmeticAnomalyError("Daily rate must be positive")
        if total_installments <= ZERO:
            raise ValidationError("Total installments must be positive")
        if down_payment < ZERO:
            raise ValidationError("Down payment cannot be negative")

        if financed_amount is None:
            financed_amount = base_daily_rate * payment_frequency.period_days * total_installments
        financed_amount = to_decimal(financed_amount, "financed_amount")
        if financed_amount <= ZERO:
            raise ValidationError("Financed amount must be positive")

        now = self.clock()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            store_id=store_id,
            customer_id=customer_id,
            start_date=start_date,
            base_daily_rate=base_daily_rate,
            total_installments=total_installments,
            financed_amount=financed_amount,
            gps_daily_rate=gps_daily_rate,
            down_payment=down_payment,
            payment_frequency=payment_frequency,
            vehicle_type=vehicle_type
        )
        # Skipped dates are applied on the first ledger recomputation
        loan.last_covered_date = add_logical_days(start_date, int(loan.down_payment_days))

        self.save_loan(loan)

        log_action(
            self.logger, "info", "Loan created",
            action="loan.created", resource=f"loan:{loan.id}",
            extra={
                "store_id": store_id,
                "daily_rate": str(loan.daily_rate),
                "down_payment_days": str(loan.down_payment_days),
                "start_date": start_date.isoformat()
            }
        )
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        return Loan.from_dict(data) if data else None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def list_loans(
        self,
        store_id: Optional[str] = None,
        status: Optional[LoanStatus] = None,
        include_archived: bool = False
    ) -> List[Loan]:
        filters: Dict[str, Any] = {}
        if store_id:
            filters['store_id'] = store_id
        if status:
            filters['status'] = status.value
        loans = [Loan.from_dict(d) for d in self.storage.find(self.loans_table, filters)]
        if not include_archived:
            loans = [loan for loan in loans if not loan.archived]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def mark_defaulted(self, loan_id: str) -> Loan:
        """Entry point for collections; the ledger itself never defaults a loan"""
        loan = self.require_loan(loan_id)
        loan.status = LoanStatus.DEFAULTED
        loan.updated_at = self.clock()
        self.save_loan(loan)
        log_action(self.logger, "warning", "Loan marked defaulted",
                   action="loan.defaulted", resource=f"loan:{loan.id}")
        return loan

    def archive_loan(self, loan_id: str) -> Loan:
        loan = self.require_loan(loan_id)
        loan.archived = True
        loan.updated_at = self.clock()
        self.save_loan(loan)
        return loan
