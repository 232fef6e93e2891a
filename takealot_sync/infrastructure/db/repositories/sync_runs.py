from __future__ import annotations

import sqlite3
from typing import Any

from ....domain.errors import SyncInProgress
from ....domain.models import SyncRunStatus
from ..connection import iso_utcnow, transaction
from ..schema import ensure_schema
from .base import BaseRepository

_RUN_COLUMNS = (
    "id, integration_id, user_id, sync_type, status, started_at, finished_at, "
    "pages_fetched, items_fetched, imported, updated, skipped, error_count, notes"
)


class SyncRunRepository(BaseRepository):
    """Run log for sync triggers; a ``running`` row doubles as the run lease."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        ensure_schema(self.conn)

    def acquire_lease(
        self,
        user_id: str,
        integration_id: int,
        sync_type: str,
        *,
        stale_before: str,
    ) -> int:
        """Start a run for ``(user_id, integration_id)`` and return its id.

        Runs still marked ``running`` that started before ``stale_before``
        are marked ``abandoned`` first. If a live run remains, a ``rejected``
        row is recorded and :class:`SyncInProgress` is raised.
        """
        now = iso_utcnow()
        held_by: int | None = None
        with transaction(self.conn, immediate=True):
            self._execute(
                "UPDATE sync_runs SET status = ?, finished_at = ?, "
                "notes = 'lease expired' "
                "WHERE status = ? AND user_id = ? AND integration_id = ? "
                "AND started_at < ?",
                (
                    SyncRunStatus.ABANDONED.value,
                    now,
                    SyncRunStatus.RUNNING.value,
                    user_id,
                    integration_id,
                    stale_before,
                ),
            )
            held_by = self._fetch_scalar(
                "SELECT id FROM sync_runs WHERE status = ? AND user_id = ? "
                "AND integration_id = ? ORDER BY id LIMIT 1",
                (SyncRunStatus.RUNNING.value, user_id, integration_id),
            )
            status = SyncRunStatus.REJECTED if held_by is not None else SyncRunStatus.RUNNING
            run_id = self._execute_insert(
                "INSERT INTO sync_runs (integration_id, user_id, sync_type, status, "
                "started_at, finished_at, notes) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    integration_id,
                    user_id,
                    sync_type,
                    status.value,
                    now,
                    now if held_by is not None else None,
                    f"sync in progress (run {held_by})" if held_by is not None else None,
                ),
            )
        if held_by is not None:
            raise SyncInProgress("sync in progress")
        return run_id

    def record_failed(
        self,
        user_id: str,
        integration_id: int | None,
        sync_type: str,
        notes: str,
    ) -> int:
        """Log a trigger that failed before it could take the lease."""
        now = iso_utcnow()
        return self._execute_insert(
            "INSERT INTO sync_runs (integration_id, user_id, sync_type, status, "
            "started_at, finished_at, error_count, notes) "
            "VALUES (?, ?, ?, ?, ?, ?, 1, ?)",
            (
                integration_id,
                user_id,
                sync_type,
                SyncRunStatus.FAILED.value,
                now,
                now,
                notes,
            ),
        )

    def update_progress(self, run_id: int, pages_fetched: int, items_fetched: int) -> None:
        self._execute(
            "UPDATE sync_runs SET pages_fetched = ?, items_fetched = ? WHERE id = ?",
            (pages_fetched, items_fetched, run_id),
        )

    def finish(
        self,
        run_id: int,
        status: SyncRunStatus,
        *,
        pages_fetched: int,
        items_fetched: int,
        imported: int,
        updated: int,
        skipped: int,
        error_count: int,
        notes: str | None = None,
    ) -> None:
        """Close a run, releasing its lease."""
        self._execute(
            "UPDATE sync_runs SET status = ?, finished_at = ?, pages_fetched = ?, "
            "items_fetched = ?, imported = ?, updated = ?, skipped = ?, "
            "error_count = ?, notes = ? WHERE id = ?",
            (
                status.value,
                iso_utcnow(),
                pages_fetched,
                items_fetched,
                imported,
                updated,
                skipped,
                error_count,
                notes,
                run_id,
            ),
        )

    def get(self, run_id: int) -> dict[str, Any] | None:
        return self._fetch_one_as_dict(
            f"SELECT {_RUN_COLUMNS} FROM sync_runs WHERE id = ?", (run_id,)
        )

    def list_recent(
        self, *, limit: int = 20, integration_id: int | None = None
    ) -> list[dict[str, Any]]:
        if integration_id is None:
            return self._fetch_all_as_dicts(
                f"SELECT {_RUN_COLUMNS} FROM sync_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        return self._fetch_all_as_dicts(
            f"SELECT {_RUN_COLUMNS} FROM sync_runs WHERE integration_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (integration_id, limit),
        )

    def list_active(self) -> list[dict[str, Any]]:
        return self._fetch_all_as_dicts(
            f"SELECT {_RUN_COLUMNS} FROM sync_runs WHERE status = ? ORDER BY id",
            (SyncRunStatus.RUNNING.value,),
        )

    def latest_per_integration(self) -> list[dict[str, Any]]:
        """Most recent finished or running run for every integration."""
        return self._fetch_all_as_dicts(
            f"SELECT {_RUN_COLUMNS} FROM sync_runs WHERE id IN ("
            "SELECT MAX(id) FROM sync_runs WHERE integration_id IS NOT NULL "
            "AND status != ? GROUP BY integration_id) ORDER BY integration_id",
            (SyncRunStatus.REJECTED.value,),
        )

    def stats_since(self, since: str) -> dict[str, int]:
        """Aggregate run counts and product totals for runs started after ``since``."""
        row = self._fetch_one_as_dict(
            "SELECT COUNT(*) AS total_runs, "
            "SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successful_runs, "
            "SUM(CASE WHEN status IN ('failed', 'partial', 'timeout') "
            "THEN 1 ELSE 0 END) AS failed_runs, "
            "SUM(CASE WHEN status = 'rejected' THEN 1 ELSE 0 END) AS rejected_runs, "
            "COALESCE(SUM(imported), 0) AS imported, "
            "COALESCE(SUM(updated), 0) AS updated "
            "FROM sync_runs WHERE started_at >= ?",
            (since,),
        ) or {}
        return {key: int(value or 0) for key, value in row.items()}

    def count(self) -> int:
        return int(self._fetch_scalar("SELECT COUNT(*) FROM sync_runs") or 0)

    def delete_finished_before(self, cutoff: str, *, batch_size: int = 500) -> int:
        """Delete runs started before ``cutoff`` that no longer hold a lease.

        Rows are removed ``batch_size`` at a time, one transaction per batch,
        so a long backlog never holds the write lock for the whole cleanup.
        Returns the number of rows deleted.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        total = 0
        while True:
            with transaction(self.conn, immediate=True):
                deleted = self._execute(
                    "DELETE FROM sync_runs WHERE id IN ("
                    "SELECT id FROM sync_runs WHERE status != ? AND started_at < ? "
                    "ORDER BY id LIMIT ?)",
                    (SyncRunStatus.RUNNING.value, cutoff, batch_size),
                ).rowcount
            total += deleted
            if deleted < batch_size:
                return total
