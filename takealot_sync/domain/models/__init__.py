"""Domain models package.

Value objects shared by the sync engine, the API and the CLI.
"""

from .integration import (
    MARKETPLACE_TAKEALOT,
    Integration,
    IntegrationStatus,
    SyncStrategy,
    mask_api_key,
)
from .product import TakealotProduct, UnidentifiableOffer
from .response import TakealotApiResponse
from .sync import (
    SCHEDULE_LABELS,
    SyncCounts,
    SyncRunStatus,
    SyncType,
    TakealotSyncOptions,
)

__all__ = [
    "Integration",
    "IntegrationStatus",
    "MARKETPLACE_TAKEALOT",
    "SCHEDULE_LABELS",
    "SyncCounts",
    "SyncRunStatus",
    "SyncStrategy",
    "SyncType",
    "TakealotApiResponse",
    "TakealotProduct",
    "TakealotSyncOptions",
    "UnidentifiableOffer",
    "mask_api_key",
]
