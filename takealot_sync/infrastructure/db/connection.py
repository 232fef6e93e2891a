from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ...domain.errors import StorageFailure
from .config import get_db_options, get_default_timeout, get_path_config


class DatabaseError(StorageFailure):
    """The store could not be opened or configured."""


def iso_utcnow() -> str:
    """Return an ISO-8601 timestamp in UTC with ``Z`` suffix.

    Microseconds are always written so timestamps compare correctly as
    strings.
    """

    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def iso_utc_ago(seconds: float) -> str:
    """Return the ISO-8601 UTC timestamp ``seconds`` in the past.

    Uses the same format as :func:`iso_utcnow` so stored timestamps compare
    correctly as strings.
    """

    moment = datetime.now(timezone.utc) - timedelta(seconds=seconds)
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def apply_pragmas(
    conn: sqlite3.Connection,
    *,
    enable_wal: bool = True,
    foreign_keys: bool = True,
    busy_timeout_ms: int | None = None,
) -> None:
    """Apply the SQLite PRAGMAs the sync store relies on."""

    try:
        if enable_wal:
            conn.execute("PRAGMA journal_mode=WAL;")
        if foreign_keys:
            conn.execute("PRAGMA foreign_keys=ON;")
        if busy_timeout_ms is not None:
            conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)};")
    except sqlite3.Error as exc:
        raise DatabaseError(f"Failed to apply PRAGMAs: {exc}") from exc


@contextmanager
def get_connection(
    db_path: str | Path | None = None,
    *,
    timeout: float | None = None,
    enable_wal: bool | None = None,
    foreign_keys: bool | None = None,
    check_same_thread: bool = True,
) -> Iterator[sqlite3.Connection]:
    """Yield a configured SQLite connection.

    The connection runs with ``isolation_level=None`` so callers control
    transactions explicitly (``BEGIN IMMEDIATE`` for leases, one commit per
    page for upserts).
    """

    resolved_db_path = (
        Path(db_path) if db_path is not None else get_path_config()["db_path"]
    )
    resolved_db_path.parent.mkdir(parents=True, exist_ok=True)
    timeout_value = timeout if timeout is not None else get_default_timeout()
    try:
        conn = sqlite3.connect(
            resolved_db_path,
            timeout=timeout_value,
            check_same_thread=check_same_thread,
            isolation_level=None,
        )
    except sqlite3.Error as exc:
        raise DatabaseError(f"Failed to connect to database: {exc}") from exc
    try:
        db_cfg = get_db_options()
        apply_pragmas(
            conn,
            enable_wal=(
                enable_wal
                if enable_wal is not None
                else bool(db_cfg.get("enable_wal", True))
            ),
            foreign_keys=(
                foreign_keys
                if foreign_keys is not None
                else bool(db_cfg.get("foreign_keys", True))
            ),
            busy_timeout_ms=int(timeout_value * 1000),
        )
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Run a block inside an explicit transaction on an autocommit connection.

    A failed ``COMMIT`` (for instance a deferred foreign key violation) is
    rolled back so the connection can start the next transaction.
    """

    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    try:
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
