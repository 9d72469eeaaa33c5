"""
Structured JSON logging.

Each record is written as one JSON object per line. The queue item being
handled travels in ``correlation_id_var`` and is stamped on every record
emitted while it is set, including records from worker threads started by
``anyio.to_thread.run_sync`` (the context is copied into the thread).
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

from callqueue.config import get_settings

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes present on every LogRecord; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "extra_data",
}

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self._service:
            entry["service"] = self._service

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            entry.update(extra_data)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            # Never shadow the base keys.
            entry[f"extra_{key}" if key in entry else key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` (usually ``__name__``).

    Until ``setup_logging`` installs a root handler, the logger writes JSON
    to stdout on its own so that import-time and test logging stay readable.
    """
    logger = logging.getLogger(name)

    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    logger.setLevel(_level(get_settings().log_level))
    return logger


def setup_logging(level: str | None = None) -> None:
    """Install the JSON handler on the root logger."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(service=settings.app_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(_level(level or settings.log_level))
    root_logger.handlers = [handler]

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def correlation_context(correlation_id: str) -> Iterator[None]:
    """Stamp ``correlation_id`` on every record logged inside the block."""
    token = correlation_id_var.set(correlation_id)
    try:
        yield
    finally:
        correlation_id_var.reset(token)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **context: Any,
) -> None:
    """Log ``message`` with ``context`` merged into the JSON entry."""
    logger.log(level, message, extra={"extra_data": context})
