"""Error kinds raised by the sync engine.

Every error carries a ``kind`` used when it is rendered into a
``TakealotApiResponse.error`` string (``"<kind>: <message>"``). Raise these
from infrastructure and service code; only the result reporter turns them
into envelopes.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all errors that may cross the reporting boundary."""

    kind = "SyncError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def describe(self) -> str:
        return f"{self.kind}: {self.message}"


class InvalidRequest(SyncError):
    """Raised when trigger input is malformed (bad limit, unknown schedule)."""

    kind = "InvalidRequest"


class Unauthenticated(SyncError):
    """Raised when no user context is available."""

    kind = "Unauthenticated"


class Unauthorized(SyncError):
    """Raised when the caller does not own the integration being used."""

    kind = "Unauthorized"


class NotFound(SyncError):
    """Raised when an integration or its API key does not exist."""

    kind = "NotFound"


class UpstreamError(SyncError):
    """Base class for marketplace-side failures."""

    kind = "UpstreamError"

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UpstreamRateLimited(UpstreamError):
    """The marketplace throttled a request; rotate to another egress point."""

    kind = "UpstreamRateLimited"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status)
        self.retry_after = retry_after


class UpstreamUnavailable(UpstreamError):
    """The marketplace could not be reached after retries."""

    kind = "UpstreamUnavailable"


class ProxyPoolExhausted(UpstreamUnavailable):
    """No proxy endpoint is available and direct egress is not allowed."""


class InvalidResponse(UpstreamError):
    """The marketplace answered with a payload we cannot interpret."""

    kind = "InvalidResponse"


class StorageFailure(SyncError):
    """A local store write kept failing after retries."""

    kind = "StorageFailure"


class SyncInProgress(SyncError):
    """Another sync run already holds the lease for this integration."""

    kind = "SyncInProgress"


class DeadlineExceeded(SyncError):
    """The overall run deadline elapsed before all pages were processed."""

    kind = "DeadlineExceeded"


__all__ = [
    "DeadlineExceeded",
    "InvalidRequest",
    "InvalidResponse",
    "NotFound",
    "ProxyPoolExhausted",
    "StorageFailure",
    "SyncError",
    "SyncInProgress",
    "Unauthenticated",
    "Unauthorized",
    "UpstreamError",
    "UpstreamRateLimited",
    "UpstreamUnavailable",
]
