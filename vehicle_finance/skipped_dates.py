"""
Skipped Dates Module

Calendar exceptions (holidays, store closures, loan-specific pauses) and the
resolver that turns them into the per-loan set of non-obligating dates.

Sources:
    * loan-specific exceptions attached to one loan
    * store-wide exceptions, optionally restricted to a vehicle type
    * recurring rules ``{recurring_day, recurring_months}`` expanded month by
      month up to a horizon past today

The resolver never lets a provider failure reach the payment flow: it
degrades to an empty set and flags the result.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import calendar
import logging
import uuid

import httpx

from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime
from .loans import LoanManager, Loan, to_decimal
from .clock import Clock, utc_now, local_today
from .exceptions import (
    CalendarExceptionNotFoundError, DegradedDependencyError, ValidationError
)
from .logging_config import get_logger, log_action


@dataclass
class SkippedDateSet:
    """Resolved non-obligating dates for one loan"""
    dates: List[date]
    source_descriptions: List[Dict[str, Any]] = field(default_factory=list)
    degraded: bool = False
    error: Optional[str] = None

    @classmethod
    def empty(cls, error: Optional[str] = None) -> 'SkippedDateSet':
        return cls(dates=[], degraded=error is not None, error=error)

    def __contains__(self, d: date) -> bool:
        return d in self.dates


def normalize_dates(values: Iterable[Any]) -> List[date]:
    """Sorted unique calendar dates; datetimes and ISO strings are truncated to the day"""
    return sorted({parse_date(v) for v in values if v is not None})


class SkippedDateProvider(ABC):
    """Source of skipped dates for a loan"""

    @abstractmethod
    def get_skipped_dates(self, loan_id: str) -> SkippedDateSet:
        """Return the loan's skipped dates; may raise on failure"""


class SkippedDateResolver:
    """
    Wraps a provider so failures degrade to "every day obligates"
    """

    def __init__(self, provider: SkippedDateProvider, logger: Optional[logging.Logger] = None):
        self.provider = provider
        self.logger = logger or get_logger("vehicle_finance.skipped_dates")

    def resolve(self, loan_id: str) -> SkippedDateSet:
        try:
            result = self.provider.get_skipped_dates(loan_id)
            return SkippedDateSet(
                dates=normalize_dates(result.dates),
                source_descriptions=list(result.source_descriptions),
                degraded=result.degraded,
                error=result.error
            )
        except Exception as e:
            log_action(
                self.logger, "warning",
                f"Skipped-date resolution failed, continuing without skipped dates: {e}",
                action="skipped_dates.degraded", resource=f"loan:{loan_id}",
                extra={"error_type": type(e).__name__}
            )
            return SkippedDateSet.empty(error=str(e) or type(e).__name__)


class ExceptionScope(Enum):
    LOAN_SPECIFIC = "LOAN_SPECIFIC"
    STORE_WIDE = "STORE_WIDE"


@dataclass
class CalendarException(StorageRecord):
    """A holiday, closure or loan-specific pause"""
    store_id: str
    scope: ExceptionScope
    title: str
    start_date: date
    category: str = "HOLIDAY"
    description: Optional[str] = None
    loan_id: Optional[str] = None
    vehicle_type: Optional[str] = None  # None = every vehicle type
    end_date: Optional[date] = None
    skipped_dates: List[date] = field(default_factory=list)
    days_unavailable: int = 0
    installments_to_subtract: Optional[float] = None  # Display only
    is_active: bool = True
    is_recurring: bool = False
    recurring_day: Optional[int] = None
    recurring_months: List[int] = field(default_factory=list)  # Empty = every month
    created_by_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalendarException':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            store_id=data['store_id'],
            scope=ExceptionScope(data['scope']),
            title=data['title'],
            start_date=parse_date(data['start_date']),
            category=data.get('category', 'HOLIDAY'),
            description=data.get('description'),
            loan_id=data.get('loan_id'),
            vehicle_type=data.get('vehicle_type'),
            end_date=parse_date(data.get('end_date')),
            skipped_dates=[parse_date(d) for d in data.get('skipped_dates', [])],
            days_unavailable=data.get('days_unavailable', 0),
            installments_to_subtract=data.get('installments_to_subtract'),
            is_active=data.get('is_active', True),
            is_recurring=data.get('is_recurring', False),
            recurring_day=data.get('recurring_day'),
            recurring_months=list(data.get('recurring_months', [])),
            created_by_id=data.get('created_by_id'),
        )

    def applies_to(self, loan: Loan) -> bool:
        if not self.is_active:
            return False
        if self.scope == ExceptionScope.LOAN_SPECIFIC:
            return self.loan_id == loan.id
        if self.store_id != loan.store_id:
            return False
        return self.vehicle_type is None or self.vehicle_type == loan.vehicle_type


@dataclass
class ExceptionSummary:
    """Per-loan totals over loan-specific exceptions"""
    total_exceptions: int = 0
    active_exceptions: int = 0
    installments_excluded: Decimal = Decimal('0')
    skipped_dates_count: int = 0


def date_range(start: date, end: date) -> List[date]:
    """Every calendar date from ``start`` to ``end`` inclusive"""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the target month's last day"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def expand_recurring(recurring_day: int, recurring_months: List[int],
                     effective_start: date, horizon_end: date) -> List[date]:
    """
    Dates matching a day-of-month rule between ``effective_start`` and ``horizon_end``.

    Months where the day does not exist (e.g. the 31st of April) contribute nothing.
    """
    dates = []
    cursor = date(effective_start.year, effective_start.month, 1)
    while cursor <= horizon_end:
        if not recurring_months or cursor.month in recurring_months:
            if recurring_day <= calendar.monthrange(cursor.year, cursor.month)[1]:
                candidate = cursor.replace(day=recurring_day)
                if effective_start <= candidate <= horizon_end:
                    dates.append(candidate)
        cursor = add_months(cursor, 1)
    return dates


class CalendarExceptionManager(SkippedDateProvider):
    """
    Stores calendar exceptions and resolves them into per-loan skipped dates
    """

    UPDATABLE_FIELDS = {
        'title', 'description', 'category', 'start_date', 'end_date', 'skipped_dates',
        'days_unavailable', 'installments_to_subtract', 'is_active', 'is_recurring',
        'recurring_day', 'recurring_months', 'vehicle_type'
    }

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        clock: Optional[Clock] = None,
        timezone_name: str = "America/Bogota",
        horizon_months: int = 12
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.clock = clock or utc_now
        self.timezone_name = timezone_name
        self.horizon_months = horizon_months
        self.logger = get_logger("vehicle_finance.calendar_exceptions")
        self.table = "calendar_exceptions"

    def create_exception(
        self,
        store_id: str,
        scope: ExceptionScope,
        title: str,
        start_date: date,
        end_date: Optional[date] = None,
        loan_id: Optional[str] = None,
        vehicle_type: Optional[str] = None,
        category: str = "HOLIDAY",
        description: Optional[str] = None,
        skipped_dates: Optional[List[date]] = None,
        auto_generate: bool = False,
        days_unavailable: Optional[int] = None,
        installments_to_subtract: Optional[float] = None,
        is_active: bool = True,
        is_recurring: bool = False,
        recurring_day: Optional[int] = None,
        recurring_months: Optional[List[int]] = None,
        created_by_id: Optional[str] = None
    ) -> CalendarException:
        """
        Create a calendar exception

        Skipped dates come from, in priority order: the explicit list, the
        ``start_date..end_date`` range when ``auto_generate`` is set, or
        ``days_unavailable`` consecutive days from ``start_date``.
        """
        if scope == ExceptionScope.LOAN_SPECIFIC and not loan_id:
            raise ValidationError("loan_id is required for loan-specific exceptions")
        if scope == ExceptionScope.STORE_WIDE and loan_id:
            raise ValidationError("loan_id must not be set for store-wide exceptions")
        if loan_id:
            loan = self.loan_manager.require_loan(loan_id)
            if loan.store_id != store_id:
                raise ValidationError("Loan does not belong to the specified store")
        self._validate_recurrence(is_recurring, recurring_day, recurring_months or [])

        if not days_unavailable and end_date:
            days_unavailable = max(0, (end_date - start_date).days + 1)

        dates = self._generate_dates(start_date, end_date, skipped_dates, auto_generate, days_unavailable)

        now = self.clock()
        exception = CalendarException(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            store_id=store_id,
            scope=scope,
            title=title,
            start_date=start_date,
            category=category,
            description=description,
            loan_id=loan_id,
            vehicle_type=vehicle_type,
            end_date=end_date,
            skipped_dates=dates,
            days_unavailable=days_unavailable or len(dates),
            installments_to_subtract=installments_to_subtract if installments_to_subtract is not None else len(dates),
            is_active=is_active,
            is_recurring=is_recurring,
            recurring_day=recurring_day,
            recurring_months=list(recurring_months or []),
            created_by_id=created_by_id
        )
        self._save(exception)

        log_action(
            self.logger, "info", "Calendar exception created",
            user_id=created_by_id, action="calendar_exception.created",
            resource=f"calendar_exception:{exception.id}",
            extra={"scope": scope.value, "store_id": store_id, "loan_id": loan_id,
                   "skipped_dates": len(dates), "is_recurring": is_recurring}
        )
        return exception

    def update_exception(self, exception_id: str, **changes) -> CalendarException:
        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        exception = self.require_exception(exception_id)
        for name, value in changes.items():
            setattr(exception, name, value)
        if 'skipped_dates' in changes:
            exception.skipped_dates = normalize_dates(exception.skipped_dates)
            if 'installments_to_subtract' not in changes:
                exception.installments_to_subtract = len(exception.skipped_dates)
        self._validate_recurrence(exception.is_recurring, exception.recurring_day,
                                  exception.recurring_months)
        exception.updated_at = self.clock()
        self._save(exception)
        return exception

    def deactivate_exception(self, exception_id: str) -> CalendarException:
        return self.update_exception(exception_id, is_active=False)

    def delete_exception(self, exception_id: str) -> CalendarException:
        exception = self.require_exception(exception_id)
        self.storage.delete(self.table, exception_id)
        return exception

    def get_exception(self, exception_id: str) -> Optional[CalendarException]:
        data = self.storage.load(self.table, exception_id)
        return CalendarException.from_dict(data) if data else None

    def require_exception(self, exception_id: str) -> CalendarException:
        exception = self.get_exception(exception_id)
        if not exception:
            raise CalendarExceptionNotFoundError(f"Calendar exception {exception_id} not found")
        return exception

    def list_exceptions(
        self,
        store_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        scope: Optional[ExceptionScope] = None,
        is_active: Optional[bool] = None
    ) -> List[CalendarException]:
        filters: Dict[str, Any] = {}
        if store_id:
            filters['store_id'] = store_id
        if loan_id:
            filters['loan_id'] = loan_id
        if scope:
            filters['scope'] = scope.value
        if is_active is not None:
            filters['is_active'] = is_active
        exceptions = [CalendarException.from_dict(d) for d in self.storage.find(self.table, filters)]
        exceptions.sort(key=lambda e: e.created_at, reverse=True)
        return exceptions

    def get_skipped_dates(self, loan_id: str) -> SkippedDateSet:
        """Union of every active exception that applies to the loan, sorted"""
        loan = self.loan_manager.require_loan(loan_id)
        return self._resolve_for_loan(loan, self._candidate_exceptions([loan]))

    def get_skipped_dates_batch(self, loan_ids: List[str]) -> Dict[str, List[date]]:
        loans = [loan for loan in (self.loan_manager.get_loan(i) for i in loan_ids) if loan]
        candidates = self._candidate_exceptions(loans)
        result: Dict[str, List[date]] = {loan_id: [] for loan_id in loan_ids}
        for loan in loans:
            result[loan.id] = self._resolve_for_loan(loan, candidates).dates
        return result

    def summary_for_loans(self, loan_ids: List[str], today: Optional[date] = None) -> Dict[str, ExceptionSummary]:
        """
        Loan-specific exception counts for each loan id

        An exception is current when it is active and its end date, if any,
        is not before today. Only current exceptions contribute installments
        and skipped dates. Unknown loan ids get an empty summary.
        """
        today = today or local_today(self.clock(), self.timezone_name)
        summaries = {loan_id: ExceptionSummary() for loan_id in loan_ids}
        wanted = set(loan_ids)

        for data in self.storage.find(self.table, {'scope': ExceptionScope.LOAN_SPECIFIC.value}):
            if data.get('loan_id') not in wanted:
                continue
            exception = CalendarException.from_dict(data)
            summary = summaries[exception.loan_id]
            summary.total_exceptions += 1
            if exception.is_active and (exception.end_date is None or exception.end_date >= today):
                summary.active_exceptions += 1
                summary.skipped_dates_count += len(exception.skipped_dates)
                if exception.installments_to_subtract:
                    summary.installments_excluded += to_decimal(exception.installments_to_subtract)
        return summaries

    def installments_excluded(self, exception: CalendarException, loan: Loan) -> Dict[str, Any]:
        """Installments and amount an exception keeps off a loan's obligation"""
        days = len(exception.skipped_dates) or exception.days_unavailable
        installments = loan.payment_frequency.to_installments(days)
        return {
            "days": days,
            "installments": installments,
            "amount": installments * loan.installment_amount
        }

    def _candidate_exceptions(self, loans: List[Loan]) -> List[CalendarException]:
        store_ids = {loan.store_id for loan in loans}
        loan_ids = {loan.id for loan in loans}
        candidates = []
        for data in self.storage.find(self.table, {'is_active': True}):
            if data.get('loan_id') in loan_ids or (
                data.get('scope') == ExceptionScope.STORE_WIDE.value and data.get('store_id') in store_ids
            ):
                candidates.append(CalendarException.from_dict(data))
        return candidates

    def _resolve_for_loan(self, loan: Loan, candidates: List[CalendarException]) -> SkippedDateSet:
        horizon_end = add_months(local_today(self.clock(), self.timezone_name), self.horizon_months)
        all_dates: List[date] = []
        sources: List[Dict[str, Any]] = []

        for exception in candidates:
            if not exception.applies_to(loan):
                continue
            dates = list(exception.skipped_dates)
            if exception.is_recurring and exception.recurring_day:
                # Store-wide rules apply retroactively from the loan start
                if exception.scope == ExceptionScope.STORE_WIDE:
                    effective_start = loan.start_date
                else:
                    effective_start = exception.start_date
                dates.extend(expand_recurring(exception.recurring_day, exception.recurring_months,
                                              effective_start, horizon_end))
            if dates:
                all_dates.extend(dates)
                sources.append({
                    "id": exception.id,
                    "title": exception.title,
                    "category": exception.category,
                    "is_recurring": exception.is_recurring,
                    "dates": normalize_dates(dates)
                })

        return SkippedDateSet(dates=normalize_dates(all_dates), source_descriptions=sources)

    def _generate_dates(self, start_date, end_date, skipped_dates, auto_generate, days_unavailable) -> List[date]:
        if skipped_dates:
            return normalize_dates(skipped_dates)
        if auto_generate and end_date:
            if end_date < start_date:
                raise ValidationError("end_date must not precede start_date")
            return date_range(start_date, end_date)
        if days_unavailable and days_unavailable > 0:
            return date_range(start_date, start_date + timedelta(days=days_unavailable - 1))
        return []

    def _validate_recurrence(self, is_recurring: bool, recurring_day: Optional[int],
                             recurring_months: List[int]) -> None:
        if not is_recurring:
            return
        if recurring_day is None or not 1 <= recurring_day <= 31:
            raise ValidationError("recurring_day must be between 1 and 31")
        if any(not 1 <= m <= 12 for m in recurring_months):
            raise ValidationError("recurring_months must contain months 1-12")

    def _save(self, exception: CalendarException) -> None:
        self.storage.save(self.table, exception.id, exception.to_dict())


class HttpSkippedDateProvider(SkippedDateProvider):
    """REST client for a remote calendar-exceptions service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,  # Payment submission must not hang on the calendar service
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def get_skipped_dates(self, loan_id: str) -> SkippedDateSet:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self._client.get(
                f"{self.base_url}/loans/{loan_id}/skipped-dates",
                headers=headers
            )
        except httpx.HTTPError as e:
            raise DegradedDependencyError(f"Calendar service unreachable: {e}") from e

        if response.status_code != 200:
            raise DegradedDependencyError(
                f"Calendar service returned {response.status_code}: {response.text}"
            )

        data = response.json()
        return SkippedDateSet(
            dates=normalize_dates(data.get("dates", [])),
            source_descriptions=data.get("news", data.get("sources", []))
        )

    def close(self) -> None:
        self._client.close()
