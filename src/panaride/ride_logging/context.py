"""Task-local logging context for adding fields to log records.

Each matching process runs as its own asyncio task, so the context lives
in a ContextVar: fields set inside one task never show up in another.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_log_fields: ContextVar[dict[str, Any] | None] = ContextVar("log_fields", default=None)


class LogContext:
    """ContextVar-backed storage for log context fields."""

    @classmethod
    def set(cls, **kwargs: Any) -> None:
        _log_fields.set({**cls.get(), **kwargs})

    @classmethod
    def get(cls) -> dict[str, Any]:
        return _log_fields.get() or {}

    @classmethod
    def clear(cls) -> None:
        _log_fields.set(None)


class ContextFilter(logging.Filter):
    """Injects LogContext fields into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in LogContext.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Context manager that sets logging context fields.

    Fields are injected into log records via ContextFilter, which must
    be attached to the handler (see setup_logging). The previous fields
    are restored on exit, so contexts nest.
    """
    token = _log_fields.set({**LogContext.get(), **kwargs})
    try:
        yield
    finally:
        _log_fields.reset(token)


@contextmanager
def log_trip_context(trip_id: str, **kwargs: Any) -> Iterator[None]:
    """Convenience context manager for trip operations."""
    correlation_id = kwargs.pop("correlation_id", trip_id)
    with log_context(trip_id=trip_id, correlation_id=correlation_id, **kwargs):
        yield
