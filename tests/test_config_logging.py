"""
Tests for configuration and structured logging
"""

import json
import logging
from decimal import Decimal

from vehicle_finance.config import LedgerConfig, reload_config, get_config
from vehicle_finance.logging_config import JSONFormatter, get_logger, log_action, setup_logging
from vehicle_finance.exceptions import (
    LedgerError, NotFoundError, LoanNotFoundError, ValidationError, ArithmeticAnomalyError
)


class TestLedgerConfig:
    """Test environment-driven settings"""

    def test_defaults(self):
        config = LedgerConfig()
        assert config.timezone == "America/Bogota"
        assert config.skipped_dates_horizon_months == 12
        assert Decimal(config.up_to_date_tolerance) == Decimal('0.01')
        assert config.default_page_size == 50

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("VF_TIMEZONE", "UTC")
        monkeypatch.setenv("VF_DEFAULT_PAGE_SIZE", "20")
        config = reload_config()
        try:
            assert config.timezone == "UTC"
            assert config.default_page_size == 20
            assert get_config() is config
        finally:
            monkeypatch.delenv("VF_TIMEZONE")
            monkeypatch.delenv("VF_DEFAULT_PAGE_SIZE")
            reload_config()

    def test_sqlite_path(self):
        assert LedgerConfig(database_url="sqlite:///data/ledger.db").sqlite_path == "data/ledger.db"
        assert LedgerConfig(database_url="sqlite:///").sqlite_path == ":memory:"


class TestExceptionHierarchy:
    """Test error taxonomy"""

    def test_all_errors_are_value_errors(self):
        assert issubclass(LedgerError, ValueError)
        assert issubclass(LoanNotFoundError, NotFoundError)
        assert issubclass(ValidationError, LedgerError)
        assert issubclass(ArithmeticAnomalyError, LedgerError)


class TestStructuredLogging:
    """Test JSON log output"""

    def test_json_formatter_includes_action_fields(self):
        logger = logging.getLogger("json_formatter_test")
        record = logger.makeRecord(logger.name, logging.INFO, __name__, 0, "Installment recorded", (), None)
        record.action = "installment.recorded"
        record.resource = "installment:1"
        record.extra = {"loan_id": "loan-1"}

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Installment recorded"
        assert entry["action"] == "installment.recorded"
        assert entry["extra"] == {"loan_id": "loan-1"}
        assert "user_id" not in entry

    def test_get_logger_namespaced(self):
        assert get_logger("ledger").name == "vehicle_finance.ledger"
        assert get_logger("vehicle_finance.coverage").name == "vehicle_finance.coverage"

    def test_log_action_respects_level(self, caplog):
        logger = logging.getLogger("log_action_test")
        with caplog.at_level(logging.WARNING, logger="log_action_test"):
            log_action(logger, "info", "ignored", action="noop")
            log_action(logger, "warning", "kept", action="skipped_dates.degraded", resource="loan:1")

        assert [r.getMessage() for r in caplog.records] == ["kept"]
        assert caplog.records[0].resource == "loan:1"

    def test_setup_logging_writes_json_file(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        root = setup_logging("INFO", "json", str(log_file))
        try:
            log_action(get_logger("installments"), "info", "Installment recorded",
                       action="installment.recorded")
            for handler in root.handlers:
                handler.flush()
            entry = json.loads(log_file.read_text().strip().splitlines()[-1])
            assert entry["logger"] == "vehicle_finance.installments"
            assert entry["action"] == "installment.recorded"
        finally:
            for handler in root.handlers[:]:
                handler.close()
                root.removeHandler(handler)
            root.propagate = True
            root.setLevel(logging.NOTSET)
