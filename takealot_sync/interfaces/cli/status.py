"""Read-only views: sync run history and the synced product store."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from takealot_sync.domain.errors import SyncError
from takealot_sync.interfaces.cli.context import build_cli_context

console = Console()

_STATUS_STYLE = {
    "success": "green",
    "partial": "yellow",
    "running": "cyan",
    "failed": "red",
    "timeout": "red",
    "rejected": "magenta",
    "abandoned": "dim",
}


@click.command(name="status")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database.")
@click.option("--integration-id", type=int, default=None, help="Only show this integration.")
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True)
@click.option("--json-output", is_flag=True, help="Output the status as JSON.")
def status(
    db_path: str | None, integration_id: int | None, limit: int, json_output: bool
) -> None:
    """Show active runs, 24h totals and the most recent sync runs."""

    service = build_cli_context(db_path).sync_service()
    overview = service.sync_status()
    runs = service.recent_runs(limit=limit, integration_id=integration_id)

    if json_output:
        click.echo(json.dumps({**overview, "recent_runs": runs}, indent=2))
        return

    totals = overview["last_24h"]
    console.print(
        f"[bold]Last 24h[/bold]: {totals['total_runs']} runs, "
        f"{totals['successful_runs']} succeeded, {totals['failed_runs']} failed, "
        f"{totals['rejected_runs']} rejected; "
        f"{totals['imported']} imported, {totals['updated']} updated"
    )
    console.print(f"Active runs: {len(overview['active_runs'])}")

    table = Table(title="Recent sync runs")
    for column in ("Run", "Integration", "Type", "Status", "Started", "Pages", "Imported", "Updated", "Notes"):
        table.add_column(column)
    for run in runs:
        style = _STATUS_STYLE.get(run["status"], "white")
        table.add_row(
            str(run["id"]),
            str(run["integration_id"] if run["integration_id"] is not None else "-"),
            run["sync_type"],
            f"[{style}]{run['status']}[/{style}]",
            run["started_at"],
            str(run["pages_fetched"]),
            str(run["imported"]),
            str(run["updated"]),
            (run["notes"] or "")[:60],
        )
    console.print(table)


@click.command(name="products")
@click.argument("integration_id", type=int)
@click.option("--user", "user_id", required=True)
@click.option("--db", "db_path", default=None, help="Path to the SQLite database.")
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
@click.option("--offset", type=click.IntRange(min=0), default=0)
@click.option("--json-output", is_flag=True, help="Output the products as JSON.")
def products(
    integration_id: int,
    user_id: str,
    db_path: str | None,
    limit: int,
    offset: int,
    json_output: bool,
) -> None:
    """List products stored for an integration."""

    service = build_cli_context(db_path).sync_service()
    try:
        page = service.list_products(user_id, integration_id, limit=limit, offset=offset)
    except SyncError as exc:
        console.print(f"[red]{exc.describe()}[/red]")
        raise click.exceptions.Exit(1)

    if json_output:
        click.echo(json.dumps(page, indent=2))
        return
    table = Table(title=f"Products ({page['total']} stored)")
    for column in ("ID", "Title", "Price", "Availability"):
        table.add_column(column)
    for product in page["products"]:
        table.add_row(
            product["id"],
            product["title"],
            f"{product['currency']} {product['price']:.2f}",
            product["availability"],
        )
    console.print(table)


@click.command(name="cleanup-runs")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database.")
@click.option(
    "--older-than-days",
    type=click.IntRange(min=1),
    default=None,
    help="Retention window in days (defaults to the configured run_retention_days).",
)
def cleanup_runs(db_path: str | None, older_than_days: int | None) -> None:
    """Delete finished sync runs older than the retention window."""

    response = build_cli_context(db_path).sync_service().cleanup_runs(
        older_than_days=older_than_days
    )
    if not response.success:
        console.print(f"[red]{response.error}[/red]")
        raise click.exceptions.Exit(1)
    summary = response.data or {}
    console.print(
        f"[green]Deleted {summary['deleted']} runs[/green] started before "
        f"{summary['cutoff']}; {summary['remaining']} remain"
    )
