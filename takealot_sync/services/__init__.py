"""Service layer: credential store, sync orchestration, reporting and scheduling."""

from .credentials import CredentialStore
from .reporting import describe_error, error_kind, fail, ok, report
from .scheduler import ScheduleConfig, ScheduledSyncRunner
from .sync import SyncSettings
from .sync_service import SyncService, build_proxy_pool

__all__ = [
    "CredentialStore",
    "ScheduleConfig",
    "ScheduledSyncRunner",
    "SyncService",
    "SyncSettings",
    "build_proxy_pool",
    "describe_error",
    "error_kind",
    "fail",
    "ok",
    "report",
]
