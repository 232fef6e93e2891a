"""Entry point for running the takealot-sync CLI.

``python -m takealot_sync.interfaces.cli`` and the ``takealot-sync`` console
script both invoke the :func:`cli` group defined here.
"""

import click

from takealot_sync.infrastructure.observability import (
    configure_logging,
    configure_tracing_from_env,
)

from .integration import integration
from .proxies import proxies
from .status import cleanup_runs, products, status
from .sync import check_connection, cron, sync


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level for application loggers.",
)
def cli(log_level: str) -> None:
    """Takealot catalogue sync command-line interface."""
    configure_logging(level=log_level.upper())
    configure_tracing_from_env(service_name="takealot-sync-cli")


cli.add_command(sync)
cli.add_command(cron)
cli.add_command(status)
cli.add_command(products)
cli.add_command(cleanup_runs)
cli.add_command(check_connection)
cli.add_command(integration)
cli.add_command(proxies)


if __name__ == "__main__":
    cli()
