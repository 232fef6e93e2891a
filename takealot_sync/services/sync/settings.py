"""Tunables for sync runs, read from the ``sync`` section of config.json."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from ...infrastructure.db import get_sync_config
from ...infrastructure.http import MAX_PAGE_SIZE, TAKEALOT_BASE_URL


@dataclass(frozen=True)
class SyncSettings:
    """Limits and timeouts applied to every sync run.

    ``default_limit`` caps items per run when the trigger gives no limit
    (50 pages of 100). ``run_deadline_seconds`` bounds a whole run; a
    ``running`` lease older than the deadline plus ``lease_grace_seconds`` is
    treated as abandoned. Finished runs older than ``run_retention_days`` are
    removed by the run-log cleanup.
    """

    base_url: str = TAKEALOT_BASE_URL
    page_size: int = MAX_PAGE_SIZE
    default_limit: int = 5000
    request_timeout_seconds: float = 30.0
    run_deadline_seconds: float = 600.0
    max_concurrent_pages: int = 4
    throttle_per_second: float | None = None
    proxy_failure_threshold: int = 3
    proxy_cooldown_seconds: float = 300.0
    proxy_max_attempts: int = 3
    retry_backoff_base: float = 0.5
    allow_direct: bool = False
    storage_retry_attempts: int = 3
    lease_grace_seconds: float = 60.0
    run_retention_days: int = 7
    cleanup_batch_size: int = 500

    def __post_init__(self) -> None:
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        if self.default_limit < 1:
            raise ValueError("default_limit must be positive")
        if self.max_concurrent_pages < 1:
            raise ValueError("max_concurrent_pages must be at least 1")
        if self.run_deadline_seconds <= 0 or self.request_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.run_retention_days < 1 or self.cleanup_batch_size < 1:
            raise ValueError("run_retention_days and cleanup_batch_size must be positive")

    @property
    def lease_ttl_seconds(self) -> float:
        return self.run_deadline_seconds + self.lease_grace_seconds

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "SyncSettings":
        """Build settings from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})

    @classmethod
    def from_config(cls, config_path: Path | str | None = None) -> "SyncSettings":
        return cls.from_mapping(get_sync_config(config_path))

    def with_overrides(self, **overrides: Any) -> "SyncSettings":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
