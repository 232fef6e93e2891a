from __future__ import annotations

SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);
"""

SCHEMA_MIGRATIONS_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    applied_at TEXT NOT NULL,
    notes TEXT
);
"""

SCHEMA_INTEGRATIONS_SQL = """
CREATE TABLE IF NOT EXISTS integrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    marketplace TEXT NOT NULL DEFAULT 'takealot',
    name TEXT NOT NULL,
    api_key TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, marketplace)
);
"""

SCHEMA_SYNC_STRATEGIES_SQL = """
CREATE TABLE IF NOT EXISTS sync_strategies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    integration_id INTEGER NOT NULL,
    strategy_id TEXT NOT NULL,
    description TEXT,
    cron_label TEXT,
    cron_enabled INTEGER NOT NULL DEFAULT 0,
    max_items INTEGER,
    FOREIGN KEY (integration_id) REFERENCES integrations (id) ON DELETE CASCADE,
    UNIQUE (integration_id, strategy_id)
);
CREATE INDEX IF NOT EXISTS idx_sync_strategies_cron
    ON sync_strategies (cron_label, cron_enabled);
"""

SCHEMA_PRODUCTS_SQL = """
CREATE TABLE IF NOT EXISTS products (
    integration_id INTEGER NOT NULL,
    product_id TEXT NOT NULL,
    title TEXT NOT NULL,
    price REAL NOT NULL,
    currency TEXT NOT NULL,
    availability TEXT NOT NULL,
    url TEXT NOT NULL,
    first_seen_at TEXT NOT NULL,
    last_synced_at TEXT NOT NULL,
    last_sync_run_id INTEGER,
    PRIMARY KEY (integration_id, product_id),
    FOREIGN KEY (integration_id) REFERENCES integrations (id) ON DELETE CASCADE
);
"""

SCHEMA_SYNC_RUNS_SQL = """
CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    integration_id INTEGER,
    user_id TEXT NOT NULL,
    sync_type TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    pages_fetched INTEGER NOT NULL DEFAULT 0,
    items_fetched INTEGER NOT NULL DEFAULT 0,
    imported INTEGER NOT NULL DEFAULT 0,
    updated INTEGER NOT NULL DEFAULT 0,
    skipped INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    notes TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_runs_lease
    ON sync_runs (user_id, integration_id, status);
CREATE INDEX IF NOT EXISTS idx_sync_runs_started_at ON sync_runs (started_at);
"""

__all__ = [
    "SCHEMA_INTEGRATIONS_SQL",
    "SCHEMA_MIGRATIONS_SQL",
    "SCHEMA_PRODUCTS_SQL",
    "SCHEMA_SYNC_RUNS_SQL",
    "SCHEMA_SYNC_STRATEGIES_SQL",
    "SCHEMA_VERSION_SQL",
]
