"""Shared helpers for composing CLI command contexts.

This module centralises common CLI wiring such as resolving the database
path and building services with the project defaults applied.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, ContextManager, Iterator

import click

from takealot_sync.domain.errors import SyncError
from takealot_sync.infrastructure.db import ensure_schema, get_connection, get_path_config
from takealot_sync.infrastructure.proxy import WebshareClient
from takealot_sync.services import CredentialStore, SyncService, SyncSettings


@dataclass(frozen=True)
class CLIContext:
    """Container for CLI dependencies and configuration paths."""

    db_path: Path
    connection_factory: Callable[[], ContextManager[sqlite3.Connection]]

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured SQLite connection and ensure the schema exists."""

        with self.connection_factory() as connection:
            ensure_schema(connection)
            yield connection

    def credential_store(self) -> CredentialStore:
        return CredentialStore(self.connection_factory)

    def sync_service(self, settings: SyncSettings | None = None) -> SyncService:
        return SyncService(
            self.connection_factory,
            settings=settings or SyncSettings.from_config(),
        )


def build_cli_context(db_path: str | Path | None = None) -> CLIContext:
    """Build the CLI context with the resolved database path."""

    resolved_db_path = (
        Path(db_path).expanduser() if db_path is not None else get_path_config()["db_path"]
    )

    def connection_factory() -> ContextManager[sqlite3.Connection]:
        return get_connection(resolved_db_path)

    return CLIContext(db_path=resolved_db_path, connection_factory=connection_factory)


def build_sync_service(
    cli_context: CLIContext,
    *,
    allow_direct: bool = False,
    webshare_token: str | None = None,
    countries: tuple[str, ...] = (),
) -> SyncService:
    """Compose a sync service and, when a token is given, load its proxy pool."""

    settings = SyncSettings.from_config()
    if allow_direct:
        settings = settings.with_overrides(allow_direct=True)
    service = cli_context.sync_service(settings)
    if webshare_token:
        try:
            endpoints = WebshareClient(webshare_token).list_proxies(
                countries=countries or None
            )
        except SyncError as exc:
            raise click.ClickException(f"Could not load proxies: {exc.describe()}") from exc
        service.load_proxies(endpoints)
    return service
