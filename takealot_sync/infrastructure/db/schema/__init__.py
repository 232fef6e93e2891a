"""Table definitions and migrations for the sync store."""

from .manager import ensure_schema
from .migrations import CURRENT_SCHEMA_VERSION, MIGRATIONS, Migration, SchemaMigrator

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "MIGRATIONS",
    "Migration",
    "SchemaMigrator",
    "ensure_schema",
]
