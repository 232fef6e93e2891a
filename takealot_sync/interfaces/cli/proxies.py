"""Inspect the Webshare proxy list used for outbound marketplace calls."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from takealot_sync.domain.errors import SyncError
from takealot_sync.infrastructure.proxy import WebshareClient

console = Console()


@click.group(name="proxies")
def proxies() -> None:
    """Proxy pool commands."""


@proxies.command(name="list")
@click.option(
    "--webshare-token",
    envvar="WEBSHARE_API_TOKEN",
    required=True,
    help="Webshare API token (defaults to $WEBSHARE_API_TOKEN).",
)
@click.option("--country", "countries", multiple=True, help="Filter by country code.")
@click.option("--json-output", is_flag=True, help="Output the endpoints as JSON.")
def list_proxies(
    webshare_token: str, countries: tuple[str, ...], json_output: bool
) -> None:
    """Show the proxies a sync would load, with credentials hidden."""
    try:
        endpoints = WebshareClient(webshare_token).list_proxies(
            countries=countries or None
        )
    except SyncError as exc:
        console.print(f"[red]{exc.describe()}[/red]")
        raise click.exceptions.Exit(1)

    rows = [
        {
            "label": e.label,
            "host": e.url.rsplit("@", 1)[-1],
            "country_code": e.country_code,
        }
        for e in endpoints
    ]
    if json_output:
        click.echo(json.dumps(rows, indent=2))
        return
    table = Table(title=f"Webshare proxies ({len(rows)})")
    table.add_column("Label")
    table.add_column("Host")
    table.add_column("Country")
    for row in rows:
        table.add_row(row["label"], row["host"], row["country_code"] or "-")
    console.print(table)
