"""Manage marketplace integrations and their scheduled strategies."""

from __future__ import annotations

import json
from typing import NoReturn

import click
from rich.console import Console
from rich.table import Table

from takealot_sync.domain.errors import SyncError
from takealot_sync.domain.models import (
    SCHEDULE_LABELS,
    Integration,
    IntegrationStatus,
    SyncStrategy,
)
from takealot_sync.interfaces.cli.context import build_cli_context

console = Console()


def _fail(exc: SyncError) -> NoReturn:
    console.print(f"[red]{exc.describe()}[/red]")
    raise click.exceptions.Exit(1)


def _print_integration(integration: Integration) -> None:
    data = integration.to_public_dict()
    console.print(
        f"[bold]#{data['id']}[/bold] {data['name']} ({data['marketplace']}, {data['status']}) "
        f"owner={data['user_id']} key={data['api_key_masked'] or '-'}"
    )
    for strategy in integration.strategies:
        label = strategy.cron_label or "-"
        enabled = "on" if strategy.cron_enabled else "off"
        limit = strategy.max_items if strategy.max_items is not None else "default"
        console.print(f"    {strategy.strategy_id}: {label} ({enabled}) max_items={limit}")


@click.group(name="integration")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database.")
@click.pass_context
def integration(ctx: click.Context, db_path: str | None) -> None:
    """Add, inspect and change Takealot integrations."""
    ctx.obj = build_cli_context(db_path)


@integration.command(name="add")
@click.option("--user", "user_id", required=True)
@click.option("--name", required=True, help="Display name for the integration.")
@click.option("--api-key", prompt=True, hide_input=True, help="Takealot seller API key.")
@click.option(
    "--inactive", is_flag=True, help="Create the integration without enabling it."
)
@click.pass_obj
def add_integration(
    cli_context, user_id: str, name: str, api_key: str, inactive: bool
) -> None:
    """Register a Takealot API key for USER."""
    store = cli_context.credential_store()
    status = IntegrationStatus.INACTIVE if inactive else IntegrationStatus.ACTIVE
    try:
        created = store.create_integration(user_id, name, api_key, status=status)
    except SyncError as exc:
        _fail(exc)
    console.print("[green]Integration created[/green]")
    _print_integration(created)


@integration.command(name="list")
@click.option("--user", "user_id", default=None, help="Only show this user's integrations.")
@click.option("--json-output", is_flag=True, help="Output the results as JSON.")
@click.pass_obj
def list_integrations(cli_context, user_id: str | None, json_output: bool) -> None:
    """List integrations with masked API keys."""
    integrations = cli_context.credential_store().list_integrations(user_id)
    if json_output:
        click.echo(json.dumps([i.to_public_dict() for i in integrations], indent=2))
        return
    if not integrations:
        console.print("No integrations found.")
        return
    table = Table(title="Integrations")
    table.add_column("ID", justify="right")
    table.add_column("User")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("API key")
    table.add_column("Strategies", justify="right")
    for item in integrations:
        data = item.to_public_dict()
        table.add_row(
            str(data["id"]),
            data["user_id"],
            data["name"],
            data["status"],
            data["api_key_masked"] or "-",
            str(len(item.strategies)),
        )
    console.print(table)


@integration.command(name="update")
@click.argument("integration_id", type=int)
@click.option("--user", "user_id", required=True)
@click.option("--name", default=None)
@click.option("--api-key", default=None, help="Replace the stored API key.")
@click.option(
    "--status",
    type=click.Choice([s.value for s in IntegrationStatus]),
    default=None,
)
@click.pass_obj
def update_integration(
    cli_context,
    integration_id: int,
    user_id: str,
    name: str | None,
    api_key: str | None,
    status: str | None,
) -> None:
    """Change the name, key or status of an integration."""
    store = cli_context.credential_store()
    try:
        updated = store.update_integration(
            user_id, integration_id, name=name, api_key=api_key, status=status
        )
    except SyncError as exc:
        _fail(exc)
    console.print("[green]Integration updated[/green]")
    _print_integration(updated)


@integration.command(name="remove")
@click.argument("integration_id", type=int)
@click.option("--user", "user_id", required=True)
@click.confirmation_option(prompt="Delete this integration and its products?")
@click.pass_obj
def remove_integration(cli_context, integration_id: int, user_id: str) -> None:
    """Delete an integration together with its strategies and products."""
    try:
        cli_context.credential_store().delete_integration(user_id, integration_id)
    except SyncError as exc:
        _fail(exc)
    console.print(f"[green]Integration {integration_id} removed[/green]")


@integration.command(name="strategy")
@click.argument("integration_id", type=int)
@click.option("--user", "user_id", required=True)
@click.option(
    "--set",
    "entries",
    multiple=True,
    metavar="ID:SCHEDULE[:MAX_ITEMS]",
    help=(
        "Strategy to keep, e.g. 'nightly-full:nightly:5000'. Repeatable; "
        "strategies not listed are removed."
    ),
)
@click.option("--disabled", "disabled", multiple=True, help="Strategy ids to store disabled.")
@click.pass_obj
def set_strategy(
    cli_context,
    integration_id: int,
    user_id: str,
    entries: tuple[str, ...],
    disabled: tuple[str, ...],
) -> None:
    """Replace the scheduled strategies of an integration."""
    strategies: list[SyncStrategy] = []
    for entry in entries:
        parts = entry.split(":")
        if len(parts) not in (2, 3) or parts[1] not in SCHEDULE_LABELS:
            raise click.BadParameter(
                f"'{entry}' is not ID:SCHEDULE[:MAX_ITEMS] with SCHEDULE one of "
                + ", ".join(SCHEDULE_LABELS),
                param_hint="--set",
            )
        try:
            max_items = int(parts[2]) if len(parts) == 3 else None
        except ValueError as exc:
            raise click.BadParameter(f"'{parts[2]}' is not a number", param_hint="--set") from exc
        strategies.append(
            SyncStrategy(
                strategy_id=parts[0],
                cron_label=SCHEDULE_LABELS[parts[1]],
                cron_enabled=parts[0] not in disabled,
                max_items=max_items,
            )
        )
    try:
        updated = cli_context.credential_store().set_strategies(
            user_id, integration_id, strategies
        )
    except SyncError as exc:
        _fail(exc)
    _print_integration(updated)
