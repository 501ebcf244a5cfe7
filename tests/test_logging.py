"""
Tests for structured JSON logging
"""

import json
import logging

from retail_banking.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class CapturingHandler(logging.Handler):

    def __init__(self):
        super().__init__()
        self.lines = []
        self.setFormatter(JSONFormatter())

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))


class TestStructuredLogging:

    def setup_method(self):
        self.logger = setup_logging("DEBUG", "retail_banking_test")
        self.handler = CapturingHandler()
        self.logger.addHandler(self.handler)

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_log_action_fields(self):
        log_action(
            get_logger("retail_banking_test.money_movement"), "info", "Transfer completed",
            user_id="CUST001", action="transfer", resource="account:1001234567",
            correlation_id="TXN20240115000001", extra={"amount": "INR 100.00"}
        )

        entry = self.handler.lines[-1]
        assert entry["message"] == "Transfer completed"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "retail_banking_test.money_movement"
        assert entry["user_id"] == "CUST001"
        assert entry["correlation_id"] == "TXN20240115000001"
        assert entry["extra"] == {"amount": "INR 100.00"}

    def test_missing_fields_are_omitted(self):
        log_action(self.logger, "warning", "Lock timeout")
        entry = self.handler.lines[-1]
        assert "user_id" not in entry
        assert "action" not in entry

    def test_level_filtering(self):
        setup_logging("ERROR", "retail_banking_test")
        self.logger.addHandler(self.handler)
        log_action(self.logger, "info", "ignored")
        assert self.handler.lines == []

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging("INFO", "retail_banking_test")
        logger = setup_logging("INFO", "retail_banking_test")
        assert len(logger.handlers) == 1
