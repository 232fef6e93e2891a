"""Base service class with shared connection handling."""

from __future__ import annotations

import sqlite3
from contextlib import AbstractContextManager
from typing import Callable, TypeVar

from ..infrastructure.db import ensure_schema, get_connection
from ..infrastructure.observability import get_logger

ConnectionFactory = Callable[[], AbstractContextManager[sqlite3.Connection]]
T = TypeVar("T")


def sqlite_connection_factory(db_path: str) -> ConnectionFactory:
    def connection_factory() -> AbstractContextManager[sqlite3.Connection]:
        return get_connection(db_path)

    return connection_factory


class BaseService:
    """Base class for services that work against the SQLite store.

    Services receive a connection factory so tests can point them at a
    temporary database::

        service = CredentialStore.from_sqlite_path(str(tmp_path / "sync.db"))
    """

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        self._connection_factory = connection_factory
        self._logger = get_logger(self.__class__.__module__)

    @classmethod
    def from_sqlite_path(cls, db_path: str, **kwargs):
        return cls(sqlite_connection_factory(db_path), **kwargs)

    def _with_connection(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``fn`` with a fresh connection after ensuring the schema exists."""
        with self._connection_factory() as conn:
            ensure_schema(conn)
            return fn(conn)
