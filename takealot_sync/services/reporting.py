"""Result reporting: turn any outcome into a :class:`TakealotApiResponse`.

This is the single boundary where exceptions become envelopes. Everything
below it raises typed :class:`SyncError` subclasses; everything above it
(API routes, CLI commands) only ever sees envelopes.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from ..domain.errors import SyncError
from ..domain.models import TakealotApiResponse
from ..infrastructure.observability import get_logger, log_exception, record_exception

logger = get_logger(__name__)

T = TypeVar("T")

INTERNAL_ERROR = "InternalError"


def describe_error(error: BaseException | str) -> str:
    """Render an error as ``"<Kind>: <message>"``."""
    if isinstance(error, str):
        return error
    if isinstance(error, SyncError):
        return error.describe()
    return f"{INTERNAL_ERROR}: {error}"


def error_kind(error: str | None) -> str | None:
    """Return the kind prefix of a rendered error string."""
    if not error:
        return None
    return error.split(":", 1)[0].strip()


def ok(data: T | None = None) -> TakealotApiResponse[T]:
    return TakealotApiResponse.ok(data)


def fail(error: BaseException | str, data: T | None = None) -> TakealotApiResponse[T]:
    return TakealotApiResponse.fail(describe_error(error), data)


def report(operation: Callable[[], T | TakealotApiResponse[T]]) -> TakealotApiResponse[T]:
    """Run ``operation`` and wrap its result or error; never raises.

    An operation that already returns an envelope is passed through.
    """
    try:
        value = operation()
    except SyncError as exc:
        logger.info("Operation failed: %s", exc.describe())
        return fail(exc)
    except Exception as exc:
        log_exception(logger, "Unexpected error", exc)
        record_exception(exc)
        return fail(exc)
    if isinstance(value, TakealotApiResponse):
        return value
    return ok(value)
