"""
Unit tests for structured JSON logging configuration.
"""
import io
import json
import logging
import sys

import pytest

from keyvault_exporter.common.correlation import CycleContext
from keyvault_exporter.common.logging_config import (
    PACKAGE_LOGGER,
    JSONFormatter,
    TextFormatter,
    get_logger,
    setup_logging,
)


def _record(**attrs):
    record = logging.LogRecord(
        name="test", level=logging.INFO,
        pathname="", lineno=1, msg="msg", args=(), exc_info=None
    )
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    setup_logging("INFO", "json")


class TestJSONFormatter:
    """Test JSONFormatter output"""

    def setup_method(self):
        self.formatter = JSONFormatter()

    def test_format_basic_fields(self):
        """Test that basic log fields are present in JSON output"""
        record = logging.LogRecord(
            name="test.logger",
            level=logging.INFO,
            pathname="test.py",
            lineno=42,
            msg="Hello %s",
            args=("world",),
            exc_info=None
        )
        data = json.loads(self.formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test.logger"
        assert data["message"] == "Hello world"
        assert data["line"] == 42
        assert data["timestamp"].endswith("Z")

    def test_format_includes_cycle_id(self):
        data = json.loads(self.formatter.format(_record(cycle_id="abc123")))
        assert data["cycle_id"] == "abc123"

    def test_format_excludes_empty_cycle_id(self):
        data = json.loads(self.formatter.format(_record(cycle_id="")))
        assert "cycle_id" not in data

    def test_format_includes_extras(self):
        data = json.loads(self.formatter.format(
            _record(subscription="sub-1", vault="kv-a", scope="secrets", component="collector")
        ))
        assert data["subscription"] == "sub-1"
        assert data["vault"] == "kv-a"
        assert data["scope"] == "secrets"
        assert data["component"] == "collector"

    def test_format_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                name="test", level=logging.ERROR, pathname="", lineno=1,
                msg="failed", args=(), exc_info=sys.exc_info()
            )
        data = json.loads(self.formatter.format(record))
        assert "ValueError: boom" in data["exception"]


class TestTextFormatter:

    def test_appends_cycle_id(self):
        line = TextFormatter().format(_record(cycle_id="abc123"))
        assert line.endswith("[cycle=abc123]")

    def test_plain_without_cycle(self):
        line = TextFormatter().format(_record())
        assert "cycle=" not in line
        assert "msg" in line


class TestSetupLogging:

    def test_configures_package_logger(self):
        logger = setup_logging("DEBUG", "text")

        assert logger.name == PACKAGE_LOGGER
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, TextFormatter)
        assert logger.propagate is False

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging("INFO")
        logger = setup_logging("INFO")
        assert len(logger.handlers) == 1

    def test_rejects_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logging("LOUD")

    def test_rejects_unknown_format(self):
        with pytest.raises(ValueError):
            setup_logging("INFO", "xml")

    def test_records_carry_cycle_id(self):
        stream = io.StringIO()
        setup_logging("INFO", "json", stream=stream)
        logger = get_logger("keyvault_exporter.tests")

        with CycleContext("cycle42"):
            logger.info("inside", extra={"vault": "kv-a"})
        logger.info("outside")

        first, second = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert first["cycle_id"] == "cycle42"
        assert first["vault"] == "kv-a"
        assert "cycle_id" not in second


class TestGetLogger:

    def test_nests_foreign_names(self):
        assert get_logger("exporter").name == "keyvault_exporter.exporter"

    def test_keeps_package_names(self):
        assert get_logger("keyvault_exporter.collector").name == "keyvault_exporter.collector"

    def test_level_override(self):
        logger = get_logger("keyvault_exporter.noisy", level="WARNING")
        assert logger.level == logging.WARNING
