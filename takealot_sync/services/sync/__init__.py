"""Catalogue sync internals.

Public API:
  - sync_catalog() - run one catalogue sync against an open connection
  - CatalogSyncResult - counters, errors and final status of a run
  - PageFetcher - concurrent, proxy-routed page fetching
  - PageOutcome - a fetched page or its error
  - RateLimiter - host-level throttle
  - SyncSettings - run limits and timeouts

Callers outside this package should go through
:class:`takealot_sync.services.sync_service.SyncService`.
"""

from .fetcher import PageFetcher, PageOutcome, RateLimiter
from .settings import SyncSettings
from .sync import CatalogSyncResult, plan_pages, sync_catalog

__all__ = [
    "CatalogSyncResult",
    "PageFetcher",
    "PageOutcome",
    "RateLimiter",
    "SyncSettings",
    "plan_pages",
    "sync_catalog",
]
