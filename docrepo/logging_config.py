"""Logging configuration for docrepo.

Provides a JSON formatted logger named ``docrepo`` and request-charge
statistics. Modules log through ``logging.getLogger(__name__)`` so their
records reach the handlers installed by :func:`get_logger`.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_NAME = "docrepo"
LOG_FILE = Path("logs/docrepo.log")
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5

# Attributes present on every LogRecord. Anything else is considered an extra field.
DEFAULT_LOG_RECORD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


class JsonFormatter(logging.Formatter):
    """Formatter returning log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="seconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in DEFAULT_LOG_RECORD_ATTRS
        }
        operation = extras.pop("operation", None)
        if operation is not None:
            base["operation"] = operation
        if extras:
            base["extra"] = extras
        if record.exc_info:
            base["exception"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def get_logger() -> logging.Logger:
    """Return the configured ``docrepo`` logger."""
    logger = logging.getLogger(LOG_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)

    formatter = JsonFormatter()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)

    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    logger.addHandler(stream_handler)
    logger.addHandler(file_handler)
    logger.propagate = False
    return logger


class RequestChargeStats:
    """Per-operation request-charge totals reported by the store."""

    def __init__(self, name: str = LOG_NAME) -> None:
        self._totals: dict[str, float] = defaultdict(float)
        self._counts: dict[str, int] = defaultdict(int)
        self._logger = logging.getLogger(name)

    def record(self, operation: str, charge: float) -> None:
        self._totals[operation] += float(charge)
        self._counts[operation] += 1

    def total(self, operation: str | None = None) -> float:
        if operation is None:
            return sum(self._totals.values())
        return self._totals.get(operation, 0.0)

    def count(self, operation: str) -> int:
        return self._counts.get(operation, 0)

    def log_summary(self) -> None:
        """Log the accumulated charges."""
        self._logger.info(
            "Request charge summary",
            extra={
                "total_charge": round(self.total(), 2),
                "by_operation": {k: round(v, 2) for k, v in self._totals.items()},
            },
        )
