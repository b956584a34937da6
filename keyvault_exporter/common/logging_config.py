"""
Structured logging configuration.
All exporter modules log through children of the ``keyvault_exporter``
logger, which carries a single stdout handler (JSON or plain text) and the
cycle correlation filter.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Optional

from keyvault_exporter.common.correlation import CycleFilter

PACKAGE_LOGGER = "keyvault_exporter"

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"

# Extra record attributes copied into JSON output when present
_EXTRA_FIELDS = ("subscription", "vault", "scope")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging with cycle tracking"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        cycle_id = getattr(record, "cycle_id", None)
        if cycle_id:
            log_data["cycle_id"] = cycle_id

        component = getattr(record, "component", None)
        if component:
            log_data["component"] = component

        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter; appends the cycle ID when one is active."""

    def __init__(self):
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        cycle_id = getattr(record, "cycle_id", None)
        if cycle_id:
            line = f"{line} [cycle={cycle_id}]"
        return line


def setup_logging(level: str = "INFO", fmt: str = "json", stream=None) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: Output format, ``json`` or ``text``
        stream: Output stream, stdout by default

    Returns:
        The configured ``keyvault_exporter`` logger
    """
    level_value = getattr(logging, level.upper(), None)
    if not isinstance(level_value, int):
        raise ValueError(f"Unknown log level: {level}")
    if fmt not in ("json", "text"):
        raise ValueError(f"Unknown log format: {fmt}")

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level_value)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    # Filter on the handler so records from child loggers are enriched too
    handler.addFilter(CycleFilter())
    logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger below the package logger.

    Args:
        name: Logger name (usually __name__); names outside the package are
              nested under it
        level: Optional level override for this logger only

    Returns:
        Logger instance
    """
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if not package_logger.handlers:
        setup_logging("INFO")

    logger = logging.getLogger(name)
    if level:
        logger.setLevel(getattr(logging, level.upper()))
    return logger
