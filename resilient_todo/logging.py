"""
Logging configuration for the resilient todo sandbox.

Every record passing through the sandbox handlers is stamped with an ISO UTC
timestamp and, while a queued command is being applied, that command's id.
Records are written to stdout and kept in a bounded in-memory buffer that
backs ``GET /diagnostics/logs``.
"""

import logging
import sys
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Id of the command currently being applied
current_command_id: ContextVar[str | None] = ContextVar("current_command_id", default=None)

LOG_FORMAT = "%(timestamp)s | %(levelname)-8s | %(name)s | %(command_tag)s%(message)s"

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "websockets")


class CommandContextFilter(logging.Filter):
    """Stamps ``timestamp``, ``command_id`` and ``command_tag`` onto records."""

    def filter(self, record: logging.LogRecord) -> bool:
        command_id = current_command_id.get()
        record.timestamp = datetime.now(UTC).isoformat()
        record.command_id = command_id
        record.command_tag = f"[{command_id}] " if command_id else ""
        return True


class InMemoryHandler(logging.Handler):
    """Ring buffer of recent records for the diagnostics log view."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self.logs: deque[dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.logs.append(
                {
                    "timestamp": getattr(record, "timestamp", None),
                    "level": record.levelname,
                    "level_no": record.levelno,
                    "logger": record.name,
                    "command_id": getattr(record, "command_id", None),
                    "message": record.getMessage(),
                }
            )
        except Exception:
            self.handleError(record)

    def clear(self) -> None:
        self.logs.clear()


_in_memory_handler = InMemoryHandler()


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured root logger
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    context_filter = CommandContextFilter()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(numeric_level)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    stream_handler.addFilter(context_filter)
    root.addHandler(stream_handler)

    _in_memory_handler.setLevel(numeric_level)
    _in_memory_handler.filters.clear()
    _in_memory_handler.addFilter(context_filter)
    root.addHandler(_in_memory_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module (typically ``__name__``)."""
    return logging.getLogger(name)


def get_in_memory_logs(level: str = "INFO", limit: int = 50) -> list[dict[str, Any]]:
    """Recent buffered records at or above ``level``, oldest first."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    filtered = [log for log in _in_memory_handler.logs if log["level_no"] >= numeric_level]
    return filtered[-limit:]


def clear_in_memory_logs() -> None:
    _in_memory_handler.clear()


@contextmanager
def command_context(command_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``command_id``."""
    token = current_command_id.set(command_id)
    try:
        yield
    finally:
        current_command_id.reset(token)
