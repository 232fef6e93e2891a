from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Callable, Iterable

from ..connection import iso_utcnow, transaction
from .tables import SCHEMA_MIGRATIONS_SQL, SCHEMA_VERSION_SQL

# Bump together with a new entry in MIGRATIONS.
CURRENT_SCHEMA_VERSION = 2


@dataclass(frozen=True)
class Migration:
    """A named, idempotent change to an existing store.

    ``apply`` runs inside the migrator's write transaction, so it must only
    use ``conn.execute`` (``executescript`` would commit early).
    """

    name: str
    apply: Callable[[sqlite3.Connection], str | None]


def _index_products_by_run(conn: sqlite3.Connection) -> str | None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_products_last_sync_run "
        "ON products (integration_id, last_sync_run_id)"
    )
    return "idx_products_last_sync_run"


MIGRATIONS: tuple[Migration, ...] = (
    Migration("index_products_by_sync_run_v2", _index_products_by_run),
)


class SchemaMigrator:
    """Apply :data:`MIGRATIONS` once each and track the store version.

    Applied migrations are recorded by name in ``schema_migrations``;
    ``schema_version`` holds the single integer the store was last brought
    up to.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def ensure_tables(self) -> None:
        self.conn.executescript(SCHEMA_MIGRATIONS_SQL)
        self.conn.executescript(SCHEMA_VERSION_SQL)

    def get_version(self) -> int | None:
        self.ensure_tables()
        return self._read_version()

    def set_version(self, version: int) -> None:
        with transaction(self.conn):
            self._write_version(version)

    def has_migration(self, name: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM schema_migrations WHERE name = ?", (name,)
        ).fetchone()
        return row is not None

    def _read_version(self) -> int | None:
        row = self.conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        return row[0] if row else None

    def _write_version(self, version: int) -> None:
        self.conn.execute("DELETE FROM schema_version")
        self.conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (version, iso_utcnow()),
        )

    def _is_current(self, migrations: tuple[Migration, ...]) -> bool:
        version = self._read_version()
        if version is None or version < CURRENT_SCHEMA_VERSION:
            return False
        return all(self.has_migration(m.name) for m in migrations)

    def run(self, migrations: Iterable[Migration] = MIGRATIONS) -> list[str]:
        """Apply pending migrations in order; returns the names applied.

        The work happens under ``BEGIN IMMEDIATE`` and pending migrations are
        re-read once the write lock is held, so connections opening a fresh
        store at the same time apply each migration exactly once.
        """
        pending = tuple(migrations)
        self.ensure_tables()
        if self._is_current(pending):
            return []

        applied: list[str] = []
        with transaction(self.conn, immediate=True):
            for migration in pending:
                if self.has_migration(migration.name):
                    continue
                notes = migration.apply(self.conn)
                self.conn.execute(
                    "INSERT INTO schema_migrations (name, applied_at, notes) VALUES (?, ?, ?)",
                    (migration.name, iso_utcnow(), notes),
                )
                applied.append(migration.name)
            current = self._read_version()
            if current is None or current < CURRENT_SCHEMA_VERSION:
                self._write_version(CURRENT_SCHEMA_VERSION)
        return applied
