"""
Installment Service Module

Records, edits, deletes and lists installment payments against vehicle
loans. Each payment carries the coverage it bought (start/end dates, late
and advance flags) and a debt snapshot frozen at creation time.

Operations on one loan are serialized by a per-loan lock; the loan
aggregate and the installment record are written in a single storage
transaction.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
import threading
import uuid
import weakref

from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime, parse_decimal
from .loans import Loan, LoanManager, ZERO, to_decimal, refresh_aggregates
from .ledger import CoveragePosition, compute_position
from .coverage import PaymentCoverage, CoverageStatus, calculate_coverage, coverage_status
from .snapshot import DEFAULT_TOLERANCE, take_snapshot
from .skipped_dates import SkippedDateResolver, SkippedDateSet
from .clock import Clock, utc_now, local_today
from .exceptions import InstallmentNotFoundError, InvalidStateError, ValidationError
from .logging_config import get_logger, log_action


INSTALLMENTS_TABLE = "installments"


@dataclass
class Installment(StorageRecord):
    """One payment against a loan"""
    loan_id: str
    store_id: str
    amount: Decimal                     # Base portion, reduces the financed debt
    gps_amount: Decimal = ZERO          # Add-on portion
    payment_date: Optional[date] = None
    sequence: int = 0
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    attachment_url: Optional[str] = None
    created_by_id: Optional[str] = None

    # Coverage, computed once at creation
    days_covered: Decimal = ZERO
    coverage_start: Optional[date] = None
    coverage_end: Optional[date] = None
    is_late: bool = False
    late_payment_date: Optional[date] = None
    is_advance: bool = False
    advance_payment_date: Optional[date] = None
    skipped_dates_degraded: bool = False

    # Debt snapshot, written once; None only for records awaiting backfill
    exact_installments_owed_before: Optional[Decimal] = None
    remaining_amount_owed_before: Optional[Decimal] = None
    days_behind_after: Optional[Decimal] = None
    days_ahead_after: Optional[Decimal] = None
    is_up_to_date_after: Optional[bool] = None
    days_covered_by_this_payment: Optional[Decimal] = None
    remaining_amount_owed_after: Optional[Decimal] = None

    @property
    def total_amount(self) -> Decimal:
        return self.amount + self.gps_amount

    @property
    def has_snapshot(self) -> bool:
        return self.exact_installments_owed_before is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            store_id=data['store_id'],
            amount=parse_decimal(data['amount']),
            gps_amount=parse_decimal(data.get('gps_amount', '0')),
            payment_date=parse_date(data.get('payment_date')),
            sequence=data.get('sequence', 0),
            notes=data.get('notes'),
            payment_method=data.get('payment_method'),
            attachment_url=data.get('attachment_url'),
            created_by_id=data.get('created_by_id'),
            days_covered=parse_decimal(data.get('days_covered', '0')),
            coverage_start=parse_date(data.get('coverage_start')),
            coverage_end=parse_date(data.get('coverage_end')),
            is_late=data.get('is_late', False),
            late_payment_date=parse_date(data.get('late_payment_date')),
            is_advance=data.get('is_advance', False),
            advance_payment_date=parse_date(data.get('advance_payment_date')),
            skipped_dates_degraded=data.get('skipped_dates_degraded', False),
            exact_installments_owed_before=parse_decimal(data.get('exact_installments_owed_before')),
            remaining_amount_owed_before=parse_decimal(data.get('remaining_amount_owed_before')),
            days_behind_after=parse_decimal(data.get('days_behind_after')),
            days_ahead_after=parse_decimal(data.get('days_ahead_after')),
            is_up_to_date_after=data.get('is_up_to_date_after'),
            days_covered_by_this_payment=parse_decimal(data.get('days_covered_by_this_payment')),
            remaining_amount_owed_after=parse_decimal(data.get('remaining_amount_owed_after')),
        )


@dataclass(frozen=True)
class CoveragePreview:
    """What a payment would cover if recorded now"""
    loan_id: str
    amount_total: Decimal
    position: CoveragePosition
    coverage: PaymentCoverage
    status: CoverageStatus              # Position before this payment
    as_of: date
    skipped_dates: List[date]
    skipped_dates_degraded: bool = False

    @property
    def will_be_current_after_payment(self) -> bool:
        return self.amount_total >= self.status.amount_needed_to_catch_up

    @property
    def days_ahead_after_payment(self) -> Decimal:
        return self.coverage.days_covered - self.status.days_behind


@dataclass
class PaymentFilters:
    """Listing filters; ``visible_to`` is an already-resolved access predicate"""
    loan_id: Optional[str] = None
    store_id: Optional[str] = None
    customer_id: Optional[str] = None       # Matched against the loan
    vehicle_type: Optional[str] = None      # Matched against the loan
    visible_to: Optional[Callable[[Installment], bool]] = None
    payment_method: Optional[str] = None
    is_late: Optional[bool] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    page: int = 1
    page_size: Optional[int] = None


@dataclass
class PaymentWithStatus:
    payment: Installment
    status: Optional[CoverageStatus] = None   # Only on the loan's latest payment


@dataclass
class PaymentPage:
    items: List[PaymentWithStatus] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 50

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


class InstallmentService:
    """
    Payment recording and coverage queries for installment loans
    """

    UPDATABLE_FIELDS = {
        'notes', 'payment_method', 'attachment_url',
        'payment_date', 'late_payment_date', 'advance_payment_date'
    }
    DATE_FIELDS = {'payment_date', 'late_payment_date', 'advance_payment_date'}

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        resolver: SkippedDateResolver,
        clock: Optional[Clock] = None,
        timezone_name: str = "America/Bogota",
        tolerance: Decimal = DEFAULT_TOLERANCE,
        default_page_size: int = 50,
        max_page_size: int = 500
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.resolver = resolver
        self.clock = clock or utc_now
        self.timezone_name = timezone_name
        self.tolerance = to_decimal(tolerance)
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.logger = get_logger("vehicle_finance.installments")

        # Entries vanish once no caller holds the loan's lock
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def today(self) -> date:
        """Business date in the configured timezone"""
        return local_today(self.clock(), self.timezone_name)

    def _loan_lock(self, loan_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = self._locks[loan_id] = threading.Lock()
            return lock

    def _payments_for(self, loan_id: str) -> List[Installment]:
        return [Installment.from_dict(d) for d in self.storage.find(INSTALLMENTS_TABLE, {'loan_id': loan_id})]

    def _save(self, installment: Installment) -> None:
        self.storage.save(INSTALLMENTS_TABLE, installment.id, installment.to_dict())

    def get_payment(self, payment_id: str) -> Optional[Installment]:
        data = self.storage.load(INSTALLMENTS_TABLE, payment_id)
        return Installment.from_dict(data) if data else None

    def require_payment(self, payment_id: str) -> Installment:
        payment = self.get_payment(payment_id)
        if not payment:
            raise InstallmentNotFoundError(f"Installment {payment_id} not found")
        return payment

    def preview_coverage(
        self,
        loan_id: str,
        amount_total: Any,
        exclude_payment_id: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> CoveragePreview:
        """Coverage a payment would buy, without writing anything"""
        loan = self.loan_manager.require_loan(loan_id)
        amount_total = to_decimal(amount_total)
        skipped = self.resolver.resolve(loan_id)
        as_of = as_of or self.today()

        position = compute_position(loan, self._payments_for(loan_id), skipped.dates,
                                    exclude_payment_id=exclude_payment_id)
        coverage = calculate_coverage(loan, amount_total, position, as_of, skipped.dates)
        status = coverage_status(loan, position, as_of, skipped.dates)
        return CoveragePreview(
            loan_id=loan_id,
            amount_total=amount_total,
            position=position,
            coverage=coverage,
            status=replace(status, skipped_dates_degraded=skipped.degraded),
            as_of=as_of,
            skipped_dates=list(skipped.dates),
            skipped_dates_degraded=skipped.degraded
        )

    def record_payment(
        self,
        loan_id: str,
        amount_base: Any,
        amount_addon: Any = ZERO,
        payment_date: Optional[date] = None,
        store_id: Optional[str] = None,
        created_by_id: Optional[str] = None,
        notes: Optional[str] = None,
        payment_method: Optional[str] = None,
        attachment_url: Optional[str] = None
    ) -> Installment:
        """
        Record a payment

        Args:
            loan_id: Loan being paid
            amount_base: Portion applied to the financed debt
            amount_addon: Device-tracking add-on portion
            payment_date: Business date of the payment; defaults to today
            store_id: Receiving store; defaults to the loan's store
            created_by_id: Operator recording the payment
            notes: Free-form notes
            payment_method: e.g. "cash", "transfer"
            attachment_url: Receipt location

        Returns:
            Stored Installment with coverage and debt snapshot
        """
        amount_base = to_decimal(amount_base)
        amount_addon = to_decimal(amount_addon)
        if amount_base <= ZERO:
            raise ValidationError("Payment amount must be positive")
        if amount_addon < ZERO:
            raise ValidationError("Add-on amount cannot be negative")
        amount_total = amount_base + amount_addon

        with self._loan_lock(loan_id):
            self.loan_manager.require_loan(loan_id)
            skipped = self.resolver.resolve(loan_id)

            with self.storage.atomic():
                loan = self.loan_manager.require_loan(loan_id)
                store_id = store_id or loan.store_id
                if not store_id:
                    raise ValidationError("A receiving store is required")
                if store_id != loan.store_id:
                    raise ValidationError("Payment store does not match the loan's store")
                if not loan.accepts_payments:
                    raise InvalidStateError(f"Loan {loan_id} is {loan.status.value} and cannot take payments")
                if amount_base > loan.debt_remaining:
                    raise ValidationError(
                        f"Payment of {amount_base} exceeds remaining debt {loan.debt_remaining}"
                    )

                payments = self._payments_for(loan_id)
                as_of = payment_date or self.today()
                position = compute_position(loan, payments, skipped.dates)
                coverage = calculate_coverage(loan, amount_total, position, as_of, skipped.dates)
                snapshot = take_snapshot(loan, position.total_days_covered, amount_total, as_of,
                                         skipped.dates, self.tolerance)

                now = self.clock()
                loan.payment_sequence += 1
                installment = Installment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan_id,
                    store_id=store_id,
                    amount=amount_base,
                    gps_amount=amount_addon,
                    payment_date=as_of,
                    sequence=loan.payment_sequence,
                    notes=notes,
                    payment_method=payment_method,
                    attachment_url=attachment_url,
                    created_by_id=created_by_id,
                    days_covered=coverage.days_covered,
                    coverage_start=coverage.coverage_start,
                    coverage_end=coverage.coverage_end,
                    is_late=coverage.is_late,
                    late_payment_date=coverage.late_payment_date,
                    is_advance=coverage.is_advance,
                    advance_payment_date=coverage.advance_payment_date,
                    skipped_dates_degraded=skipped.degraded,
                    **snapshot.to_fields()
                )
                self._save(installment)

                payments.append(installment)
                refresh_aggregates(loan, payments)
                loan.last_covered_date = compute_position(loan, payments, skipped.dates).last_covered_date
                loan.updated_at = now
                self.loan_manager.save_loan(loan)

        log_action(
            self.logger, "info", "Installment recorded",
            user_id=created_by_id, action="installment.recorded",
            resource=f"installment:{installment.id}",
            extra={
                "loan_id": loan_id,
                "amount": str(amount_total),
                "coverage_start": installment.coverage_start.isoformat(),
                "coverage_end": installment.coverage_end.isoformat(),
                "is_late": installment.is_late,
                "loan_status": loan.status.value,
                "skipped_dates_degraded": skipped.degraded
            }
        )
        return installment

    def update_payment(self, payment_id: str, updated_by_id: Optional[str] = None, **changes) -> Installment:
        """
        Edit administrative fields of a payment.

        Amounts, coverage and the debt snapshot cannot be edited.
        """
        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        payment = self.require_payment(payment_id)
        with self._loan_lock(payment.loan_id):
            with self.storage.atomic():
                payment = self.require_payment(payment_id)
                for name, value in changes.items():
                    if name in self.DATE_FIELDS:
                        value = parse_date(value)
                    setattr(payment, name, value)
                payment.updated_at = self.clock()
                self._save(payment)

        log_action(
            self.logger, "info", "Installment updated",
            user_id=updated_by_id, action="installment.updated",
            resource=f"installment:{payment_id}",
            extra={"fields": sorted(changes)}
        )
        return payment

    def delete_payment(self, payment_id: str, deleted_by_id: Optional[str] = None) -> Installment:
        """
        Delete a payment and rebuild the loan's aggregates and coverage
        from the payments that remain. Other payments' snapshots are kept.
        """
        payment = self.require_payment(payment_id)
        loan_id = payment.loan_id

        with self._loan_lock(loan_id):
            skipped = self.resolver.resolve(loan_id)
            with self.storage.atomic():
                payment = self.require_payment(payment_id)
                loan = self.loan_manager.require_loan(loan_id)
                self.storage.delete(INSTALLMENTS_TABLE, payment_id)

                remaining = [p for p in self._payments_for(loan_id) if p.id != payment_id]
                refresh_aggregates(loan, remaining)
                loan.last_covered_date = compute_position(loan, remaining, skipped.dates).last_covered_date
                loan.updated_at = self.clock()
                self.loan_manager.save_loan(loan)

        log_action(
            self.logger, "info", "Installment deleted",
            user_id=deleted_by_id, action="installment.deleted",
            resource=f"installment:{payment_id}",
            extra={"loan_id": loan_id, "amount": str(payment.total_amount),
                   "loan_status": loan.status.value}
        )
        return payment

    def recompute_position(self, loan_id: str, persist: bool = True) -> CoveragePosition:
        """
        Rebuild a loan's coverage position and aggregates from its payments.

        Used after calendar exceptions change and to apply skipped dates to a
        newly created loan.
        """
        with self._loan_lock(loan_id):
            skipped = self.resolver.resolve(loan_id)
            with self.storage.atomic():
                loan = self.loan_manager.require_loan(loan_id)
                payments = self._payments_for(loan_id)
                position = compute_position(loan, payments, skipped.dates)
                if persist:
                    refresh_aggregates(loan, payments)
                    loan.last_covered_date = position.last_covered_date
                    loan.updated_at = self.clock()
                    self.loan_manager.save_loan(loan)
        return position

    def loan_status(self, loan_id: str, today: Optional[date] = None) -> CoverageStatus:
        """Live days behind/ahead for a loan"""
        loan = self.loan_manager.require_loan(loan_id)
        skipped = self.resolver.resolve(loan_id)
        return self._status_for(loan, self._payments_for(loan_id), skipped, today or self.today())

    def _status_for(self, loan: Loan, payments: List[Installment], skipped: SkippedDateSet,
                    today: date) -> CoverageStatus:
        position = compute_position(loan, payments, skipped.dates)
        status = coverage_status(loan, position, today, skipped.dates)
        return replace(status, skipped_dates_degraded=skipped.degraded)

    def list_payments_with_status(self, filters: Optional[PaymentFilters] = None) -> PaymentPage:
        """
        Filtered, paginated payments, newest first.

        Payments of archived loans are excluded. Only each loan's
        most-recently-created payment carries a live coverage status.
        """
        filters = filters or PaymentFilters()
        if filters.page < 1:
            raise ValidationError("page must be 1 or greater")
        page_size = filters.page_size or self.default_page_size
        if page_size < 1:
            raise ValidationError("page_size must be 1 or greater")
        page_size = min(page_size, self.max_page_size)

        query: Dict[str, Any] = {}
        if filters.loan_id:
            query['loan_id'] = filters.loan_id
        if filters.store_id:
            query['store_id'] = filters.store_id
        if filters.payment_method:
            query['payment_method'] = filters.payment_method

        payments = [p for p in (Installment.from_dict(d) for d in self.storage.find(INSTALLMENTS_TABLE, query))
                    if self._matches_filters(p, filters)]

        loans: Dict[str, Optional[Loan]] = {}
        for loan_id in {p.loan_id for p in payments}:
            loans[loan_id] = self.loan_manager.get_loan(loan_id)
        payments = [p for p in payments if self._loan_matches(loans[p.loan_id], filters)]

        payments.sort(key=lambda p: (p.created_at, p.sequence), reverse=True)
        total = len(payments)
        start = (filters.page - 1) * page_size
        page_items = payments[start:start + page_size]

        today = self.today()
        items = []
        for payment in page_items:
            items.append(PaymentWithStatus(payment=payment))

        for loan_id in {p.loan_id for p in page_items}:
            loan_payments = self._payments_for(loan_id)
            latest = max(loan_payments, key=lambda p: (p.created_at, p.sequence))
            for item in items:
                if item.payment.id == latest.id:
                    skipped = self.resolver.resolve(loan_id)
                    item.status = self._status_for(loans[loan_id], loan_payments, skipped, today)

        return PaymentPage(items=items, total=total, page=filters.page, page_size=page_size)

    def _loan_matches(self, loan: Optional[Loan], filters: PaymentFilters) -> bool:
        if loan is None or loan.archived:
            return False
        if filters.customer_id and loan.customer_id != filters.customer_id:
            return False
        if filters.vehicle_type and loan.vehicle_type != filters.vehicle_type:
            return False
        return True

    def _matches_filters(self, payment: Installment, filters: PaymentFilters) -> bool:
        if filters.visible_to is not None and not filters.visible_to(payment):
            return False
        if filters.is_late is not None and payment.is_late != filters.is_late:
            return False
        if filters.date_from and (payment.payment_date is None or payment.payment_date < filters.date_from):
            return False
        if filters.date_to and (payment.payment_date is None or payment.payment_date > filters.date_to):
            return False
        if filters.min_amount is not None and payment.amount < to_decimal(filters.min_amount):
            return False
        if filters.max_amount is not None and payment.amount > to_decimal(filters.max_amount):
            return False
        return True
