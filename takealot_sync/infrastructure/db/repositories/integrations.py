from __future__ import annotations

import sqlite3
from typing import Any, Iterable

from ....domain.models import MARKETPLACE_TAKEALOT, SyncStrategy
from ..connection import iso_utcnow, transaction
from ..schema import ensure_schema
from .base import BaseRepository

_INTEGRATION_COLUMNS = (
    "id, user_id, marketplace, name, api_key, status, created_at, updated_at"
)


class DuplicateIntegrationError(ValueError):
    """Raised when a user already has an integration for the marketplace."""


class IntegrationRepository(BaseRepository):
    """Integrations and the sync strategies attached to them."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        ensure_schema(self.conn)

    def create(
        self,
        user_id: str,
        name: str,
        api_key: str | None,
        *,
        marketplace: str = MARKETPLACE_TAKEALOT,
        status: str = "active",
    ) -> int:
        now = iso_utcnow()
        try:
            return self._execute_insert(
                "INSERT INTO integrations "
                "(user_id, marketplace, name, api_key, status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user_id, marketplace, name, api_key, status, now, now),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateIntegrationError(
                f"User '{user_id}' already has a {marketplace} integration"
            ) from exc

    def get(self, integration_id: int) -> dict[str, Any] | None:
        return self._fetch_one_as_dict(
            f"SELECT {_INTEGRATION_COLUMNS} FROM integrations WHERE id = ?",
            (integration_id,),
        )

    def get_for_user(
        self, user_id: str, marketplace: str = MARKETPLACE_TAKEALOT
    ) -> dict[str, Any] | None:
        return self._fetch_one_as_dict(
            f"SELECT {_INTEGRATION_COLUMNS} FROM integrations "
            "WHERE user_id = ? AND marketplace = ?",
            (user_id, marketplace),
        )

    def list(self, user_id: str | None = None) -> list[dict[str, Any]]:
        if user_id is None:
            return self._fetch_all_as_dicts(
                f"SELECT {_INTEGRATION_COLUMNS} FROM integrations ORDER BY id"
            )
        return self._fetch_all_as_dicts(
            f"SELECT {_INTEGRATION_COLUMNS} FROM integrations "
            "WHERE user_id = ? ORDER BY id",
            (user_id,),
        )

    def update(
        self,
        integration_id: int,
        *,
        name: str | None = None,
        api_key: str | None = None,
        status: str | None = None,
    ) -> bool:
        """Update the given fields; returns False when the row does not exist."""
        assignments: list[str] = []
        params: list[Any] = []
        for column, value in (("name", name), ("api_key", api_key), ("status", status)):
            if value is not None:
                assignments.append(f"{column} = ?")
                params.append(value)
        assignments.append("updated_at = ?")
        params.append(iso_utcnow())
        params.append(integration_id)
        cur = self._execute(
            f"UPDATE integrations SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )
        return cur.rowcount > 0

    def delete(self, integration_id: int) -> bool:
        cur = self._execute("DELETE FROM integrations WHERE id = ?", (integration_id,))
        return cur.rowcount > 0

    # -------------------------------------------------------------------------
    # Sync strategies
    # -------------------------------------------------------------------------

    def list_strategies(self, integration_id: int) -> list[SyncStrategy]:
        rows = self._fetch_all_as_dicts(
            "SELECT strategy_id, description, cron_label, cron_enabled, max_items "
            "FROM sync_strategies WHERE integration_id = ? ORDER BY id",
            (integration_id,),
        )
        return [SyncStrategy.from_row(row) for row in rows]

    def replace_strategies(
        self, integration_id: int, strategies: Iterable[SyncStrategy]
    ) -> None:
        with transaction(self.conn):
            self._execute(
                "DELETE FROM sync_strategies WHERE integration_id = ?",
                (integration_id,),
            )
            for strategy in strategies:
                self._execute(
                    "INSERT INTO sync_strategies "
                    "(integration_id, strategy_id, description, cron_label, "
                    "cron_enabled, max_items) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        integration_id,
                        strategy.strategy_id,
                        strategy.description,
                        strategy.cron_label,
                        int(strategy.cron_enabled),
                        strategy.max_items,
                    ),
                )

    def list_scheduled(self, cron_label: str) -> list[dict[str, Any]]:
        """Return enabled strategies with ``cron_label`` on active integrations."""
        return self._fetch_all_as_dicts(
            "SELECT s.strategy_id, s.max_items, i.id AS integration_id, "
            "i.user_id, i.api_key "
            "FROM sync_strategies s JOIN integrations i ON i.id = s.integration_id "
            "WHERE s.cron_label = ? AND s.cron_enabled = 1 AND i.status = 'active' "
            "ORDER BY i.id, s.id",
            (cron_label,),
        )
