from .config import (
    DEFAULT_DB_TIMEOUT,
    get_db_options,
    get_default_timeout,
    get_path_config,
    get_sync_config,
    load_config,
)
from .connection import (
    DatabaseError,
    apply_pragmas,
    get_connection,
    iso_utc_ago,
    iso_utcnow,
    transaction,
)
from .schema import SchemaMigrator, ensure_schema

__all__ = [
    "DEFAULT_DB_TIMEOUT",
    "DatabaseError",
    "SchemaMigrator",
    "apply_pragmas",
    "ensure_schema",
    "get_connection",
    "get_db_options",
    "get_default_timeout",
    "get_path_config",
    "get_sync_config",
    "iso_utc_ago",
    "iso_utcnow",
    "load_config",
    "transaction",
]
