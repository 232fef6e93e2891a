from .integrations import DuplicateIntegrationError, IntegrationRepository
from .products import ProductRepository
from .sync_runs import SyncRunRepository

__all__ = [
    "DuplicateIntegrationError",
    "IntegrationRepository",
    "ProductRepository",
    "SyncRunRepository",
]
