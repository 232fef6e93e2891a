"""Sync trigger options, run states and counters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SyncType(str, Enum):
    MANUAL = "manual"
    CRON = "cron"


class SyncRunStatus(str, Enum):
    """Lifecycle states of a row in ``sync_runs``."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncRunStatus.RUNNING


@dataclass(frozen=True)
class TakealotSyncOptions:
    """Input to a sync trigger.

    ``limit`` caps the number of items fetched in one run. Without an
    ``integration_id`` the user's single Takealot integration is used.
    """

    user_id: str
    sync_type: SyncType = SyncType.MANUAL
    limit: int | None = None
    integration_id: int | None = None

    def __post_init__(self) -> None:
        # accept plain strings from API and CLI callers
        if not isinstance(self.sync_type, SyncType):
            object.__setattr__(self, "sync_type", SyncType(self.sync_type))


@dataclass(frozen=True)
class SyncCounts:
    """Payload of a sync envelope.

    ``imported + updated`` equals the number of distinct product ids written
    during the run.
    """

    imported: int = 0
    updated: int = 0


# Cron schedule slugs mapped to the labels stored on sync strategies.
SCHEDULE_LABELS: dict[str, str] = {
    "hourly": "Every 1 hr",
    "three-hourly": "Every 3 hr",
    "six-hourly": "Every 6 hr",
    "twelve-hourly": "Every 12 hr",
    "nightly": "Every Night",
    "weekly": "Every Sunday",
}
