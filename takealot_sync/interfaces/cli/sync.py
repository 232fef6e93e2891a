"""Sync commands: trigger a manual run, a whole cron schedule or a connection check."""

from __future__ import annotations

import json

import click
from rich.console import Console

from takealot_sync.domain.models import SCHEDULE_LABELS, SyncType, TakealotSyncOptions
from takealot_sync.interfaces.cli.context import build_cli_context, build_sync_service

console = Console()

_db_option = click.option(
    "--db",
    "db_path",
    default=None,
    help="Path to the SQLite database file. Will be created if it does not exist.",
)
_direct_option = click.option(
    "--direct/--proxies-only",
    "allow_direct",
    default=False,
    help="Allow requests without a proxy when the pool is empty.",
)
_token_option = click.option(
    "--webshare-token",
    envvar="WEBSHARE_API_TOKEN",
    default=None,
    help="Webshare API token used to load the proxy pool before syncing.",
)
_country_option = click.option(
    "--country",
    "countries",
    multiple=True,
    help="Only use proxies in this country (repeatable).",
)


@click.command(name="sync")
@_db_option
@click.option("--user", "user_id", required=True, help="User that owns the integration.")
@click.option(
    "--integration-id",
    type=int,
    default=None,
    help="Integration to sync. Defaults to the user's Takealot integration.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of offers to fetch.",
)
@_direct_option
@_token_option
@_country_option
@click.option("--json-output", is_flag=True, help="Print the result envelope as JSON.")
@click.pass_context
def sync(
    ctx: click.Context,
    db_path: str | None,
    user_id: str,
    integration_id: int | None,
    limit: int | None,
    allow_direct: bool,
    webshare_token: str | None,
    countries: tuple[str, ...],
    json_output: bool,
) -> None:
    """Pull a Takealot catalogue into the local product store."""

    cli_context = build_cli_context(db_path)
    service = build_sync_service(
        cli_context,
        allow_direct=allow_direct,
        webshare_token=webshare_token,
        countries=countries,
    )

    with console.status(f"Syncing catalogue for {user_id}..."):
        response = service.run_sync(
            TakealotSyncOptions(
                user_id=user_id,
                sync_type=SyncType.MANUAL,
                limit=limit,
                integration_id=integration_id,
            )
        )

    if json_output:
        click.echo(json.dumps(response.to_dict(), indent=2))
    else:
        data = response.data
        counts = (
            f"imported={data.imported}, updated={data.updated}" if data is not None else ""
        )
        if response.success:
            console.print(f"[green]Sync complete[/green]: {counts}")
        else:
            console.print(f"[red]Sync failed: {response.error}[/red]")
            if counts:
                console.print(f"[yellow]Written before the failure[/yellow]: {counts}")
    if not response.success:
        ctx.exit(1)


@click.command(name="cron")
@click.argument("schedule", type=click.Choice(sorted(SCHEDULE_LABELS)))
@_db_option
@_direct_option
@_token_option
@_country_option
@click.option("--json-output", is_flag=True, help="Print the summary as JSON.")
@click.pass_context
def cron(
    ctx: click.Context,
    schedule: str,
    db_path: str | None,
    allow_direct: bool,
    webshare_token: str | None,
    countries: tuple[str, ...],
    json_output: bool,
) -> None:
    """Run every enabled strategy labelled with SCHEDULE."""

    cli_context = build_cli_context(db_path)
    service = build_sync_service(
        cli_context,
        allow_direct=allow_direct,
        webshare_token=webshare_token,
        countries=countries,
    )
    with console.status(f"Running '{SCHEDULE_LABELS[schedule]}' syncs..."):
        response = service.run_scheduled(schedule)

    if json_output:
        click.echo(json.dumps(response.to_dict(), indent=2))
    else:
        summary = response.data or {}
        for run in summary.get("runs", []):
            data = run.get("data") or {}
            marker = "[green]ok[/green]" if run["success"] else f"[red]{run['error']}[/red]"
            console.print(
                f"- integration {run['integration_id']}: {marker} "
                f"(imported={data.get('imported', 0)}, updated={data.get('updated', 0)})"
            )
        for skipped in summary.get("skipped_integrations", []):
            console.print(f"- integration {skipped}: [yellow]skipped, no API key[/yellow]")
        if response.success:
            console.print(
                f"[green]{summary.get('succeeded', 0)} scheduled syncs succeeded[/green]"
            )
        else:
            console.print(f"[red]{response.error}[/red]")
    if not response.success:
        ctx.exit(1)


@click.command(name="check-connection")
@click.argument("integration_id", type=int)
@click.option("--user", "user_id", required=True, help="User that owns the integration.")
@_db_option
@_direct_option
@_token_option
@_country_option
@click.option("--json-output", is_flag=True, help="Print the result envelope as JSON.")
@click.pass_context
def check_connection(
    ctx: click.Context,
    integration_id: int,
    user_id: str,
    db_path: str | None,
    allow_direct: bool,
    webshare_token: str | None,
    countries: tuple[str, ...],
    json_output: bool,
) -> None:
    """Test an integration's stored API key with a one-offer request."""

    service = build_sync_service(
        build_cli_context(db_path),
        allow_direct=allow_direct,
        webshare_token=webshare_token,
        countries=countries,
    )
    response = service.check_connection(user_id, integration_id)

    if json_output:
        click.echo(json.dumps(response.to_dict(), indent=2))
    elif response.success:
        total = (response.data or {}).get("total_offers")
        console.print(
            f"[green]Connection OK[/green]: {total if total is not None else 'unknown'} offers"
        )
    else:
        console.print(f"[red]Connection failed: {response.error}[/red]")
    if not response.success:
        ctx.exit(1)
