"""
Unit tests for structured logging utility (crm_automation/utils/logger.py)

Tests covering:
- JSON log formatting with required fields
- Webhook URL masking
- Log level configuration
- Log operation decorator
"""

import json
import logging
from datetime import datetime
from io import StringIO
from uuid import UUID

import pytest

from crm_automation.utils.logger import (
    NullLogger,
    StructuredLogger,
    get_logger,
    log_operation,
    mask_url,
)


class TestMaskUrl:
    """Tests for URL masking utility."""

    def test_keeps_scheme_and_host(self):
        result = mask_url("https://hooks.example.com/services/T000/B000/secret")
        assert result == "https://hooks.example.com/***"
        assert "secret" not in result

    def test_empty(self):
        assert mask_url("") == "unknown"
        assert mask_url(None) == "unknown"

    def test_not_a_url(self):
        assert mask_url("hooks.example.com") == "invalid"


class TestStructuredLogger:
    """Tests for StructuredLogger class."""

    @pytest.fixture
    def logger_with_handler(self):
        """Fixture providing logger with string stream handler."""
        logger = StructuredLogger("test_crm_logger")
        logger.logger.handlers.clear()

        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.logger.addHandler(handler)
        logger.logger.setLevel(logging.DEBUG)

        return logger, stream

    def test_format_log_basic_fields(self, logger_with_handler):
        logger, _ = logger_with_handler

        parsed = json.loads(logger._format_log("INFO", "Test message"))

        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Test message"
        assert parsed["timestamp"].endswith("Z")
        datetime.fromisoformat(parsed["timestamp"].replace("Z", "+00:00"))

    def test_format_log_all_fields(self, logger_with_handler):
        """Test log formatting with all optional fields."""
        logger, _ = logger_with_handler

        parsed = json.loads(
            logger._format_log(
                "ERROR",
                "Rule failed",
                operation="evaluate_and_execute",
                context={"rule_id": "r-1"},
                duration_ms=45.678,
                error="boom",
            )
        )

        assert parsed["operation"] == "evaluate_and_execute"
        assert parsed["context"] == {"rule_id": "r-1"}
        assert parsed["duration_ms"] == 45.68
        assert parsed["error"] == "boom"

    def test_context_values_are_stringified(self, logger_with_handler):
        """UUIDs in context must not break JSON encoding"""
        logger, _ = logger_with_handler
        rule_id = UUID("12345678-1234-5678-1234-567812345678")

        parsed = json.loads(logger._format_log("INFO", "x", context={"rule_id": rule_id}))

        assert parsed["context"]["rule_id"] == str(rule_id)

    def test_methods_write_json_lines(self, logger_with_handler):
        logger, stream = logger_with_handler

        logger.debug("d")
        logger.info("i", duration_ms=1.0)
        logger.warning("w", error="careful")
        logger.error("e", error="bad")

        lines = [json.loads(line) for line in stream.getvalue().strip().splitlines()]
        assert [line["level"] for line in lines] == ["DEBUG", "INFO", "WARNING", "ERROR"]
        assert lines[2]["error"] == "careful"

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        logger = StructuredLogger("test_crm_logger_env")
        assert logger.logger.level == logging.WARNING

    def test_explicit_level(self):
        logger = StructuredLogger("test_crm_logger_explicit", level="error")
        assert logger.logger.level == logging.ERROR


class TestNullLogger:
    def test_discards_everything(self, capsys):
        logger = NullLogger()
        logger.debug("d")
        logger.info("i")
        logger.warning("w")
        logger.error("e", error="x")
        captured = capsys.readouterr()
        assert captured.err == ""
        assert captured.out == ""


class TestLogOperation:
    def test_returns_result(self):
        @log_operation("add_numbers")
        def add(a, b):
            return a + b

        assert add(2, 3) == 5
        assert add.__name__ == "add"

    def test_reraises(self):
        @log_operation("explode")
        def explode():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            explode()


def test_get_logger_returns_structured_logger():
    logger = get_logger("crm_automation.tests")
    assert isinstance(logger, StructuredLogger)
    assert logger.logger.name == "crm_automation.tests"
