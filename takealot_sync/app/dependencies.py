"""Shared FastAPI dependencies for the sync API."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header

from ..infrastructure.db import get_path_config
from ..services import (
    CredentialStore,
    ScheduledSyncRunner,
    SyncService,
    SyncSettings,
)

__all__ = [
    "get_credential_store",
    "get_scheduler",
    "get_sync_service",
    "get_user_id",
    "reset_services",
    "CredentialStoreDep",
    "SchedulerDep",
    "SyncServiceDep",
    "UserIdDep",
]

_sync_service: SyncService | None = None
_scheduler: ScheduledSyncRunner | None = None


def get_sync_service() -> SyncService:
    """Process-wide sync service; the proxy pool lives as long as it does."""
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService.from_sqlite_path(
            str(get_path_config()["db_path"]),
            settings=SyncSettings.from_config(),
        )
    return _sync_service


def get_credential_store(
    service: SyncService = Depends(get_sync_service),
) -> CredentialStore:
    return service.credentials


def get_scheduler(
    service: SyncService = Depends(get_sync_service),
) -> ScheduledSyncRunner:
    global _scheduler
    if _scheduler is None:
        _scheduler = ScheduledSyncRunner(schedule_callable=service.run_scheduled)
    return _scheduler


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Caller identity, taken from the ``X-User-Id`` header."""
    return (x_user_id or "").strip()


def reset_services() -> None:
    global _sync_service, _scheduler
    _sync_service = None
    _scheduler = None


SyncServiceDep = Annotated[SyncService, Depends(get_sync_service)]
CredentialStoreDep = Annotated[CredentialStore, Depends(get_credential_store)]
SchedulerDep = Annotated[ScheduledSyncRunner, Depends(get_scheduler)]
UserIdDep = Annotated[str, Depends(get_user_id)]
