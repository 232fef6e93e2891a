"""Click commands for the takealot-sync CLI."""

from .__main__ import cli
from .integration import integration
from .proxies import proxies
from .status import cleanup_runs, products, status
from .sync import check_connection, cron, sync

__all__ = [
    "check_connection",
    "cleanup_runs",
    "cli",
    "cron",
    "integration",
    "products",
    "proxies",
    "status",
    "sync",
]
