from __future__ import annotations

import sqlite3

from ...observability import get_logger
from .migrations import SchemaMigrator
from .tables import (
    SCHEMA_INTEGRATIONS_SQL,
    SCHEMA_PRODUCTS_SQL,
    SCHEMA_SYNC_RUNS_SQL,
    SCHEMA_SYNC_STRATEGIES_SQL,
)

logger = get_logger(__name__)

_TABLES = (
    SCHEMA_INTEGRATIONS_SQL,
    SCHEMA_SYNC_STRATEGIES_SQL,
    SCHEMA_PRODUCTS_SQL,
    SCHEMA_SYNC_RUNS_SQL,
)


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create every table the sync engine uses and apply pending migrations."""

    for script in _TABLES:
        conn.executescript(script)
    applied = SchemaMigrator(conn).run()
    if applied:
        logger.info("Applied schema migrations: %s", ", ".join(applied))
