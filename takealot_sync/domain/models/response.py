"""Uniform result envelope returned by every sync operation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, is_dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class TakealotApiResponse(Generic[T]):
    """Outcome of an operation.

    ``error`` is set whenever ``success`` is false. A failed response may
    still carry ``data``, e.g. the counters of a partially completed sync.
    """

    success: bool
    data: T | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            raise ValueError("a failed response must carry an error message")

    @classmethod
    def ok(cls, data: T | None = None) -> "TakealotApiResponse[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: T | None = None) -> "TakealotApiResponse[T]":
        return cls(success=False, data=data, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: Any = self.data
        if is_dataclass(data) and not isinstance(data, type):
            data = asdict(data)
        return {"success": self.success, "data": data, "error": self.error}
