"""
Ledger system wiring and the FastAPI dependency that exposes it
"""

from typing import Optional

from ..config import LedgerConfig, get_config
from ..storage import StorageInterface, InMemoryStorage, SQLiteStorage
from ..loans import LoanManager
from ..skipped_dates import (
    CalendarExceptionManager, HttpSkippedDateProvider, SkippedDateProvider, SkippedDateResolver
)
from ..installments import InstallmentService
from ..clock import Clock, utc_now


class LedgerSystem:
    """Installment ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None,
        provider: Optional[SkippedDateProvider] = None
    ):
        self.config = config or get_config()
        self.clock = clock or utc_now

        if storage is not None:
            self.storage = storage
        elif self.config.use_sqlite:
            self.storage = SQLiteStorage(self.config.sqlite_path)
        else:
            self.storage = InMemoryStorage()

        self.loan_manager = LoanManager(self.storage, clock=self.clock)
        self.exception_manager = CalendarExceptionManager(
            self.storage, self.loan_manager, clock=self.clock,
            timezone_name=self.config.timezone,
            horizon_months=self.config.skipped_dates_horizon_months
        )
        self.resolver = SkippedDateResolver(provider or self._create_provider())
        self.installment_service = InstallmentService(
            self.storage, self.loan_manager, self.resolver,
            clock=self.clock,
            timezone_name=self.config.timezone,
            tolerance=self.config.up_to_date_tolerance,
            default_page_size=self.config.default_page_size,
            max_page_size=self.config.max_page_size
        )

    def _create_provider(self) -> SkippedDateProvider:
        """Remote calendar service when configured, local exceptions otherwise"""
        if not self.config.calendar_service_url:
            return self.exception_manager
        return HttpSkippedDateProvider(
            base_url=self.config.calendar_service_url,
            timeout=self.config.calendar_service_timeout,
            api_key=self.config.calendar_service_api_key or None
        )

    def close(self) -> None:
        self.storage.close()


_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    """Dependency returning the process-wide ledger system, created on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system
