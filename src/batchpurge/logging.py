"""JSON logging for batchpurge (one JSON object per line, container friendly)."""

import json
import logging
import sys
from typing import Any, Dict, Optional

ROOT_LOGGER = "batchpurge"


class JsonFormatter(logging.Formatter):
    """Render a LogRecord as a single-line JSON document."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_obj["error"] = self.formatException(record.exc_info)
            log_obj["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_obj["extra_fields"] = extra_fields

        # Paths and other non-JSON values are rendered with str()
        return json.dumps(log_obj, default=str)


def setup_logging(logger_name: str = ROOT_LOGGER, level: str = "INFO") -> logging.Logger:
    """
    Configure the package logger.

    Module loggers (``batchpurge.finder``, ``batchpurge.retention``, ...) propagate
    to the handler installed here, so this only needs to run once per process.

    Args:
        logger_name: Name of the logger to configure
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    return logger


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    extra: Optional[Dict[str, Any]] = None,
    exc_info: bool = False,
) -> None:
    """
    Log a message with structured context fields.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, error, ...)
        message: Log message
        extra: Context fields emitted under ``extra_fields``
        exc_info: Attach the exception currently being handled
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"extra_fields": extra or {}}, exc_info=exc_info)
