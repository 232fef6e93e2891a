"""Logging utilities for the Takealot sync engine.

Centralised logging configuration plus helpers for contextual logging. Sync
runs wrap their work in ``log_context(integration_id=..., run_id=...)`` so
every line emitted during a run can be correlated.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator


# ---------------------------------------------------------------------------
# Context variables for structured logging
# ---------------------------------------------------------------------------

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ContextualFormatter(logging.Formatter):
    """Formatter that appends the active context fields to log messages."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        ctx = getattr(record, "log_context", None) or _log_context.get()
        if ctx:
            ctx_str = " ".join(f"{k}={v}" for k, v in ctx.items())
            message = f"{message} [{ctx_str}]"
        return message


class _ContextCaptureFilter(logging.Filter):
    """Snapshot the context on the emitting thread.

    Page fetches run on worker threads that do not inherit the caller's
    context, so the snapshot is taken where the record is created.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "log_context"):
            record.log_context = dict(_log_context.get())
        return True


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Temporarily add context fields to all log messages.

    Usage::

        with log_context(integration_id=3, run_id=42):
            logger.info("Starting sync")  # message includes context

    Fields are merged with any existing context and restored on exit.
    """
    current = _log_context.get()
    merged = {**current, **fields}
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


def current_log_context() -> dict[str, Any]:
    """Return a copy of the active context, for handing to worker threads."""
    return dict(_log_context.get())


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_configured = False


def configure_logging(
    level: int = logging.INFO,
    third_party_level: int = logging.WARNING,
) -> None:
    """Configure application-wide logging.

    Call this once at startup (CLI main, FastAPI startup) to set up
    consistent logging across the application.

    Args:
        level: Log level for application loggers (default INFO).
        third_party_level: Log level for third-party libraries (default WARNING).
    """
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ContextualFormatter(DEFAULT_FORMAT))
    handler.addFilter(_ContextCaptureFilter())
    root.addHandler(handler)

    for name in ("httpx", "httpcore", "urllib3", "requests", "uvicorn.access"):
        logging.getLogger(name).setLevel(third_party_level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given name.

    If configure_logging() has not been called, a basic fallback configuration
    is applied so the logger is usable.

    Args:
        name: Name of the logger (typically __name__).

    Returns:
        A logging.Logger instance.
    """
    logger = logging.getLogger(name)
    if not _configured and not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(ContextualFormatter(DEFAULT_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def log_exception(
    logger: logging.Logger,
    message: str,
    exc: BaseException,
    **context: Any,
) -> None:
    """Log an exception with context fields.

    Args:
        logger: Logger instance.
        message: Human-readable message describing the error.
        exc: The exception that was raised.
        **context: Additional context fields to include.
    """
    with log_context(**context):
        logger.error("%s: %s", message, exc, exc_info=exc)
