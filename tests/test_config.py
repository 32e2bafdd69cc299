"""
Tests for configuration and structured logging
"""

import io
import json
import logging

from balance_ledger.config import BalanceLedgerConfig, get_config, reload_config
from balance_ledger.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class TestConfig:
    """Test environment-driven settings"""

    def test_defaults(self, monkeypatch):
        """Test default values"""
        for name in ("DATABASE_URL", "LOCK_TIMEOUT_SECONDS", "DATABASE_POOL_MAX", "API_PORT", "LOG_FORMAT"):
            monkeypatch.delenv(f"BALANCE_LEDGER_{name}", raising=False)

        config = BalanceLedgerConfig(_env_file=None)
        assert config.database_url == "sqlite:///balance_ledger.db"
        assert config.lock_timeout_seconds is None
        assert config.sqlite_busy_timeout_seconds == 60.0
        assert config.database_pool_min == 1
        assert config.database_pool_max == 40
        assert config.api_prefix == "/api"
        assert config.api_port == 8000
        assert config.log_format == "json"
        assert config.history_page_size == 50

    def test_environment_override(self, monkeypatch):
        """Test BALANCE_LEDGER_ variables override defaults"""
        monkeypatch.setenv("BALANCE_LEDGER_DATABASE_URL", "memory://")
        monkeypatch.setenv("BALANCE_LEDGER_LOCK_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("balance_ledger_api_port", "9001")
        monkeypatch.setenv("BALANCE_LEDGER_DATABASE_POOL_MAX", "64")

        try:
            config = reload_config()
            assert config is get_config()
            assert config.database_url == "memory://"
            assert config.lock_timeout_seconds == 2.5
            assert config.api_port == 9001
            assert config.database_pool_max == 64
        finally:
            monkeypatch.undo()
            reload_config()


class TestLogging:
    """Test structured logging helpers"""

    def _capture(self, logger_name, formatter):
        stream = io.StringIO()
        logger = logging.getLogger(logger_name)
        logger.handlers = []
        handler = logging.StreamHandler(stream)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        return logger, stream

    def test_log_action_json(self):
        """Test log_action emits structured fields as JSON"""
        logger, stream = self._capture("balance_ledger.test_json", JSONFormatter())

        log_action(
            logger, "info", "Deposit committed",
            user_id=7, action="deposit", resource="balance:7",
            correlation_id="req-1", extra={"amount": "10.00"}
        )

        entry = json.loads(stream.getvalue().strip())
        assert entry["message"] == "Deposit committed"
        assert entry["level"] == "INFO"
        assert entry["user_id"] == 7
        assert entry["action"] == "deposit"
        assert entry["resource"] == "balance:7"
        assert entry["correlation_id"] == "req-1"
        assert entry["extra"] == {"amount": "10.00"}

    def test_log_action_respects_level(self):
        """Test records below the logger level are dropped"""
        logger, stream = self._capture("balance_ledger.test_level", JSONFormatter())
        logger.setLevel(logging.WARNING)

        log_action(logger, "info", "ignored")
        assert stream.getvalue() == ""

    def test_exception_is_formatted(self):
        """Test exception tracebacks are included"""
        logger, stream = self._capture("balance_ledger.test_exc", JSONFormatter())

        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.exception("failed")

        entry = json.loads(stream.getvalue().strip())
        assert "RuntimeError: boom" in entry["exception"]

    def test_setup_logging(self):
        """Test setup_logging installs a single handler in the requested format"""
        logger = setup_logging("DEBUG", "balance_ledger.test_setup", log_format="text")
        setup_logging("DEBUG", "balance_ledger.test_setup", log_format="text")

        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.DEBUG
        assert not logger.propagate

        logger = setup_logging("WARNING", "balance_ledger.test_setup")
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert get_logger("balance_ledger.test_setup") is logger
