"""
Structured logging for storage components.

All modules log through ``logging``. This module adds:
- ``StructuredJsonFormatter``: one JSON object per line, for log collectors
- ``configure_structured_logging``: installs that formatter on the package logger
- ``StorageLoggerAdapter``: stamps storage context (component, backend, key) on records
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

PACKAGE_LOGGER = "workflow_context_storage"


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    Render records as single-line JSON.

    Fields: ``timestamp`` (UTC, ISO 8601, from the record's creation time),
    ``level``, ``logger``, ``message``, ``exception`` when present, and any
    ``extra`` values. Values that cannot be serialized are stringified.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload.update(
            (name, _jsonable(value))
            for name, value in record.__dict__.items()
            if name not in _RECORD_ATTRS and not name.startswith("_")
        )
        return json.dumps(payload, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = PACKAGE_LOGGER,
) -> logging.Logger:
    """
    Send a logger's output to stdout as JSON.

    Replaces any handlers already on the logger, so calling it twice leaves
    a single handler.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_storage_logger(name: str) -> logging.Logger:
    """Logger for a storage component, e.g. ``cache`` -> ``workflow_context_storage.cache``."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Adds fixed storage context to every record.

    Values passed as ``extra`` at the call site take precedence over the
    adapter's own.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
