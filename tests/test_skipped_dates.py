"""
Test suite for skipped dates

Tests calendar exceptions (explicit, ranged and recurring), per-loan
resolution, the degrading resolver and the HTTP calendar provider.
"""

import pytest
import httpx
from unittest.mock import Mock, patch
from decimal import Decimal
from datetime import datetime, timezone, date

from vehicle_finance.storage import InMemoryStorage
from vehicle_finance.loans import LoanManager, PaymentFrequency
from vehicle_finance.skipped_dates import (
    CalendarExceptionManager, ExceptionScope, HttpSkippedDateProvider, SkippedDateProvider,
    SkippedDateResolver, SkippedDateSet, add_months, expand_recurring, normalize_dates
)
from vehicle_finance.exceptions import (
    CalendarExceptionNotFoundError, DegradedDependencyError, LoanNotFoundError, ValidationError
)

from factories import MutableClock


class TestHelpers:
    """Test date helpers"""

    def test_normalize_dates(self):
        values = ["2024-01-05T05:00:00.000Z", date(2024, 1, 2), datetime(2024, 1, 5, 9, 0), None]
        assert normalize_dates(values) == [date(2024, 1, 2), date(2024, 1, 5)]

    def test_add_months_clamps(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_expand_recurring_every_month(self):
        dates = expand_recurring(15, [], date(2024, 1, 20), date(2024, 4, 30))
        assert dates == [date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)]

    def test_expand_recurring_selected_months(self):
        dates = expand_recurring(1, [1, 5], date(2024, 1, 1), date(2025, 1, 31))
        assert dates == [date(2024, 1, 1), date(2024, 5, 1), date(2025, 1, 1)]

    def test_expand_recurring_skips_missing_days(self):
        dates = expand_recurring(31, [], date(2024, 1, 1), date(2024, 4, 30))
        assert dates == [date(2024, 1, 31), date(2024, 3, 31)]


class TestCalendarExceptionManager:
    """Test exception storage and per-loan resolution"""

    def setup_method(self):
        self.clock = MutableClock(datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc))
        self.storage = InMemoryStorage()
        self.loan_manager = LoanManager(self.storage, clock=self.clock)
        self.manager = CalendarExceptionManager(self.storage, self.loan_manager, clock=self.clock,
                                                horizon_months=2)
        self.loan = self.loan_manager.create_loan(
            store_id="store-1", customer_id="customer-1", start_date=date(2024, 1, 1),
            base_daily_rate="10000", total_installments="100", vehicle_type="motorcycle"
        )

    def test_explicit_dates(self):
        exception = self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC, title="Repair",
            start_date=date(2024, 1, 5), loan_id=self.loan.id,
            skipped_dates=[date(2024, 1, 6), date(2024, 1, 5), date(2024, 1, 6)]
        )
        assert exception.skipped_dates == [date(2024, 1, 5), date(2024, 1, 6)]
        assert exception.installments_to_subtract == 2

    def test_auto_generated_range(self):
        exception = self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Closure",
            start_date=date(2024, 1, 10), end_date=date(2024, 1, 12), auto_generate=True
        )
        assert exception.skipped_dates == [date(2024, 1, 10), date(2024, 1, 11), date(2024, 1, 12)]
        assert exception.days_unavailable == 3

    def test_days_unavailable(self):
        exception = self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Inventory",
            start_date=date(2024, 2, 28), days_unavailable=3
        )
        assert exception.skipped_dates == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]

    def test_loan_specific_requires_loan(self):
        with pytest.raises(ValidationError):
            self.manager.create_exception(store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC,
                                          title="Pause", start_date=date(2024, 1, 5))

    def test_store_wide_rejects_loan(self):
        with pytest.raises(ValidationError):
            self.manager.create_exception(store_id="store-1", scope=ExceptionScope.STORE_WIDE,
                                          title="Pause", start_date=date(2024, 1, 5), loan_id=self.loan.id)

    def test_loan_must_belong_to_store(self):
        with pytest.raises(ValidationError):
            self.manager.create_exception(store_id="store-2", scope=ExceptionScope.LOAN_SPECIFIC,
                                          title="Pause", start_date=date(2024, 1, 5), loan_id=self.loan.id)

    def test_unknown_loan(self):
        with pytest.raises(LoanNotFoundError):
            self.manager.create_exception(store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC,
                                          title="Pause", start_date=date(2024, 1, 5), loan_id="missing")

    def test_invalid_recurrence(self):
        with pytest.raises(ValidationError):
            self.manager.create_exception(store_id="store-1", scope=ExceptionScope.STORE_WIDE,
                                          title="Monthly", start_date=date(2024, 1, 1),
                                          is_recurring=True, recurring_day=32)

    def test_union_of_applicable_exceptions(self):
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC, title="Repair",
            start_date=date(2024, 1, 5), loan_id=self.loan.id, skipped_dates=[date(2024, 1, 5)]
        )
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Holiday",
            start_date=date(2024, 1, 8), skipped_dates=[date(2024, 1, 8), date(2024, 1, 5)]
        )
        self.manager.create_exception(
            store_id="store-2", scope=ExceptionScope.STORE_WIDE, title="Other store",
            start_date=date(2024, 1, 9), skipped_dates=[date(2024, 1, 9)]
        )
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Cars only",
            start_date=date(2024, 1, 10), skipped_dates=[date(2024, 1, 10)], vehicle_type="car"
        )

        result = self.manager.get_skipped_dates(self.loan.id)
        assert result.dates == [date(2024, 1, 5), date(2024, 1, 8)]
        assert {s["title"] for s in result.source_descriptions} == {"Repair", "Holiday"}
        assert result.degraded is False

    def test_inactive_exceptions_ignored(self):
        exception = self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Holiday",
            start_date=date(2024, 1, 8), skipped_dates=[date(2024, 1, 8)]
        )
        self.manager.deactivate_exception(exception.id)
        assert self.manager.get_skipped_dates(self.loan.id).dates == []

    def test_store_wide_recurrence_from_loan_start(self):
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Monthly maintenance",
            start_date=date(2024, 3, 1), is_recurring=True, recurring_day=15
        )
        # Loan started Jan 1, horizon is two months past Mar 1
        assert self.manager.get_skipped_dates(self.loan.id).dates == [
            date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)
        ]

    def test_loan_specific_recurrence_from_exception_start(self):
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC, title="Monthly rest",
            start_date=date(2024, 3, 1), loan_id=self.loan.id, is_recurring=True, recurring_day=15
        )
        assert self.manager.get_skipped_dates(self.loan.id).dates == [date(2024, 3, 15), date(2024, 4, 15)]

    def test_batch_resolution(self):
        other = self.loan_manager.create_loan(
            store_id="store-1", customer_id="customer-2", start_date=date(2024, 1, 1),
            base_daily_rate="10000", total_installments="100"
        )
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC, title="Repair",
            start_date=date(2024, 1, 5), loan_id=other.id, skipped_dates=[date(2024, 1, 5)]
        )
        result = self.manager.get_skipped_dates_batch([self.loan.id, other.id, "missing"])
        assert result == {self.loan.id: [], other.id: [date(2024, 1, 5)], "missing": []}

    def test_update_and_delete(self):
        exception = self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Holiday",
            start_date=date(2024, 1, 8), skipped_dates=[date(2024, 1, 8)]
        )
        updated = self.manager.update_exception(exception.id, skipped_dates=[date(2024, 1, 9), date(2024, 1, 8)])
        assert updated.skipped_dates == [date(2024, 1, 8), date(2024, 1, 9)]
        assert updated.installments_to_subtract == 2

        with pytest.raises(ValidationError):
            self.manager.update_exception(exception.id, store_id="store-2")

        self.manager.delete_exception(exception.id)
        with pytest.raises(CalendarExceptionNotFoundError):
            self.manager.require_exception(exception.id)

    def test_installments_excluded(self):
        loan = self.loan_manager.create_loan(
            store_id="store-1", customer_id="customer-3", start_date=date(2024, 1, 1),
            base_daily_rate="10000", total_installments="10", payment_frequency=PaymentFrequency.WEEKLY
        )
        exception = self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Closure",
            start_date=date(2024, 1, 1), days_unavailable=14
        )
        excluded = self.manager.installments_excluded(exception, loan)
        assert excluded["installments"] == Decimal('2')
        assert excluded["amount"] == Decimal('140000')

    def test_summary_for_loans(self):
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC, title="Workshop",
            start_date=date(2024, 3, 5), loan_id=self.loan.id,
            skipped_dates=[date(2024, 3, 5), date(2024, 3, 6)]
        )
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC, title="Past repair",
            start_date=date(2024, 2, 1), end_date=date(2024, 2, 3), loan_id=self.loan.id,
            auto_generate=True
        )
        paused = self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.LOAN_SPECIFIC, title="Paused",
            start_date=date(2024, 3, 10), loan_id=self.loan.id, days_unavailable=1
        )
        self.manager.deactivate_exception(paused.id)
        self.manager.create_exception(
            store_id="store-1", scope=ExceptionScope.STORE_WIDE, title="Holiday",
            start_date=date(2024, 3, 20), days_unavailable=1
        )

        summaries = self.manager.summary_for_loans([self.loan.id, "missing"])

        summary = summaries[self.loan.id]
        assert summary.total_exceptions == 3
        assert summary.active_exceptions == 1
        assert summary.installments_excluded == Decimal('2')
        assert summary.skipped_dates_count == 2
        assert summaries["missing"].total_exceptions == 0

    def test_list_exceptions(self):
        self.manager.create_exception(store_id="store-1", scope=ExceptionScope.STORE_WIDE,
                                      title="A", start_date=date(2024, 1, 8), days_unavailable=1)
        self.manager.create_exception(store_id="store-2", scope=ExceptionScope.STORE_WIDE,
                                      title="B", start_date=date(2024, 1, 8), days_unavailable=1)
        assert [e.title for e in self.manager.list_exceptions(store_id="store-1")] == ["A"]
        assert len(self.manager.list_exceptions(scope=ExceptionScope.STORE_WIDE)) == 2


class BrokenProvider(SkippedDateProvider):
    def get_skipped_dates(self, loan_id):
        raise DegradedDependencyError("timed out")


class StaticProvider(SkippedDateProvider):
    def get_skipped_dates(self, loan_id):
        return SkippedDateSet(dates=["2024-01-03", date(2024, 1, 2)])


class TestSkippedDateResolver:
    """Test resolver normalization and degradation"""

    def test_normalizes_provider_dates(self):
        result = SkippedDateResolver(StaticProvider()).resolve("loan-1")
        assert result.dates == [date(2024, 1, 2), date(2024, 1, 3)]
        assert date(2024, 1, 3) in result

    def test_failure_degrades_to_empty(self):
        result = SkippedDateResolver(BrokenProvider()).resolve("loan-1")
        assert result.dates == []
        assert result.degraded is True
        assert "timed out" in result.error

    def test_failure_logged(self, caplog):
        import logging
        logger = logging.getLogger("resolver_test")
        with caplog.at_level(logging.WARNING, logger="resolver_test"):
            SkippedDateResolver(BrokenProvider(), logger=logger).resolve("loan-1")
        assert any(getattr(r, "action", None) == "skipped_dates.degraded" for r in caplog.records)


class TestHttpSkippedDateProvider:
    """Test the remote calendar service client"""

    def setup_method(self):
        self.provider = HttpSkippedDateProvider("http://calendar.local/api/", timeout=1.0, api_key="secret")

    def teardown_method(self):
        self.provider.close()

    @patch('httpx.Client.get')
    def test_success(self, mock_get):
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "dates": ["2024-01-05T05:00:00.000Z", "2024-01-02"],
            "news": [{"title": "Holiday"}]
        }
        mock_get.return_value = mock_response

        result = self.provider.get_skipped_dates("loan-1")

        assert result.dates == [date(2024, 1, 2), date(2024, 1, 5)]
        assert result.source_descriptions == [{"title": "Holiday"}]
        args, kwargs = mock_get.call_args
        assert args[0] == "http://calendar.local/api/loans/loan-1/skipped-dates"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @patch('httpx.Client.get')
    def test_error_status(self, mock_get):
        mock_response = Mock()
        mock_response.status_code = 503
        mock_response.text = "unavailable"
        mock_get.return_value = mock_response

        with pytest.raises(DegradedDependencyError):
            self.provider.get_skipped_dates("loan-1")

    @patch('httpx.Client.get')
    def test_connection_error(self, mock_get):
        mock_get.side_effect = httpx.ConnectError("refused")

        with pytest.raises(DegradedDependencyError):
            self.provider.get_skipped_dates("loan-1")

    @patch('httpx.Client.get')
    def test_resolver_degrades_on_timeout(self, mock_get):
        mock_get.side_effect = httpx.ReadTimeout("slow")

        result = SkippedDateResolver(self.provider).resolve("loan-1")
        assert result.degraded is True
        assert result.dates == []
