"""Core catalogue sync: paginate offers, normalise and upsert them.

``sync_catalog`` does the work of one run against an open connection. It
does not take or release the run lease; :class:`SyncService` owns that.
Each page is committed on its own, so a failure later in the run never
undoes pages that were already written.
"""

from __future__ import annotations

import math
import sqlite3
import time
from contextlib import closing
from dataclasses import dataclass, field
from typing import Callable

from ...domain.errors import (
    DeadlineExceeded,
    ProxyPoolExhausted,
    StorageFailure,
    SyncError,
    Unauthorized,
)
from ...domain.models import (
    SyncCounts,
    SyncRunStatus,
    TakealotProduct,
    UnidentifiableOffer,
)
from ...infrastructure.db import transaction
from ...infrastructure.db.repositories import ProductRepository, SyncRunRepository
from ...infrastructure.http import OfferPage
from ...infrastructure.observability import get_logger, trace_span
from .fetcher import PageFetcher

logger = get_logger(__name__)

# Errors after which requesting more pages cannot succeed.
_FATAL_PAGE_ERRORS = (ProxyPoolExhausted, Unauthorized)


@dataclass
class CatalogSyncResult:
    status: SyncRunStatus = SyncRunStatus.RUNNING
    pages_fetched: int = 0
    items_fetched: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[SyncError] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def counts(self) -> SyncCounts:
        return SyncCounts(imported=self.imported, updated=self.updated)

    @property
    def error_message(self) -> str | None:
        if not self.errors:
            return None
        return "; ".join(error.describe() for error in self.errors)

    @property
    def notes_text(self) -> str | None:
        parts = [error.describe() for error in self.errors] + self.notes
        return " | ".join(parts) if parts else None


class _CatalogWriter:
    """Writes pages in order and keeps the per-run distinct-id bookkeeping."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        integration_id: int,
        run_id: int | None,
        result: CatalogSyncResult,
        *,
        storage_retry_attempts: int,
        retry_backoff_base: float,
        sleep: Callable[[float], None],
    ) -> None:
        self.conn = conn
        self.integration_id = integration_id
        self.run_id = run_id
        self.result = result
        self.products = ProductRepository(conn)
        self.runs = SyncRunRepository(conn)
        self.storage_retry_attempts = max(1, storage_retry_attempts)
        self.retry_backoff_base = retry_backoff_base
        self._sleep = sleep
        self._seen: set[str] = set()

    def _upsert_with_retry(self, product: TakealotProduct) -> bool | None:
        """Upsert one record inside a savepoint; None when it kept failing."""
        last_error: sqlite3.Error | None = None
        for attempt in range(self.storage_retry_attempts):
            self.conn.execute("SAVEPOINT product_upsert")
            try:
                inserted = self.products.upsert(self.integration_id, product, self.run_id)
            except sqlite3.Error as exc:
                self.conn.execute("ROLLBACK TO product_upsert")
                self.conn.execute("RELEASE product_upsert")
                last_error = exc
                if attempt + 1 < self.storage_retry_attempts:
                    self._sleep(self.retry_backoff_base * (2**attempt))
                continue
            self.conn.execute("RELEASE product_upsert")
            return inserted
        logger.warning("Skipping product %s after storage errors: %s", product.id, last_error)
        self.result.errors.append(
            StorageFailure(f"could not store product {product.id}: {last_error}")
        )
        return None

    def write(self, page: OfferPage, limit: int) -> None:
        room = max(0, limit - self.result.items_fetched)
        offers = page.offers[:room]

        products: list[TakealotProduct] = []
        unidentifiable = 0
        for raw in offers:
            try:
                products.append(TakealotProduct.from_offer(raw))
            except UnidentifiableOffer:
                unidentifiable += 1
        if unidentifiable:
            logger.warning(
                "Page %d: skipped %d offers without an id", page.page_number, unidentifiable
            )
            self.result.notes.append(
                f"page {page.page_number}: skipped {unidentifiable} offers without an id"
            )

        page_new: dict[str, bool] = {}
        failed = 0
        try:
            with transaction(self.conn):
                for product in products:
                    inserted = self._upsert_with_retry(product)
                    if inserted is None:
                        failed += 1
                        continue
                    if product.id in self._seen or product.id in page_new:
                        continue
                    page_new[product.id] = inserted
        except sqlite3.Error as exc:
            self.result.errors.append(
                StorageFailure(f"could not commit page {page.page_number}: {exc}")
            )
            page_new = {}
            failed = len(products)

        self._seen.update(page_new)
        self.result.imported += sum(1 for inserted in page_new.values() if inserted)
        self.result.updated += sum(1 for inserted in page_new.values() if not inserted)
        self.result.skipped += unidentifiable + failed
        self.result.pages_fetched += 1
        self.result.items_fetched += len(offers)
        if self.run_id is not None:
            self.runs.update_progress(
                self.run_id, self.result.pages_fetched, self.result.items_fetched
            )


def plan_pages(limit: int, page_size: int, total_results: int | None) -> int:
    """Number of pages needed to cover ``limit`` items."""
    pages = math.ceil(limit / page_size)
    if total_results is not None:
        pages = min(pages, math.ceil(total_results / page_size))
    return max(pages, 1)


def sync_catalog(
    conn: sqlite3.Connection,
    *,
    integration_id: int,
    api_key: str,
    fetcher: PageFetcher,
    limit: int,
    page_size: int = 100,
    run_id: int | None = None,
    deadline: float | None = None,
    storage_retry_attempts: int = 3,
    retry_backoff_base: float = 0.5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> CatalogSyncResult:
    """Fetch up to ``limit`` offers and upsert them for ``integration_id``.

    Page 1 is fetched on its own to learn the total; the remaining pages are
    fetched concurrently and written in page order. A short page ends the
    run. The returned status is ``success``, ``partial`` (some errors but at
    least one page written), ``failed`` or ``timeout``.
    """
    if limit < 1:
        raise ValueError("limit must be positive")
    page_size = max(1, min(page_size, limit))
    result = CatalogSyncResult()
    writer = _CatalogWriter(
        conn,
        integration_id,
        run_id,
        result,
        storage_retry_attempts=storage_retry_attempts,
        retry_backoff_base=retry_backoff_base,
        sleep=sleep,
    )

    def _check_deadline(where: str) -> None:
        if deadline is not None and clock() >= deadline:
            raise DeadlineExceeded(f"run deadline passed {where}")

    timed_out = False
    with trace_span("sync_catalog", integration_id=integration_id, limit=limit):
        try:
            try:
                first = fetcher.fetch_page(api_key, 1, page_size)
            except SyncError as exc:
                if isinstance(exc, DeadlineExceeded):
                    raise
                logger.warning("First page failed: %s", exc)
                result.errors.append(exc)
                result.status = SyncRunStatus.FAILED
                return result

            writer.write(first, limit)
            _check_deadline("after page 1")
            total_pages = plan_pages(limit, page_size, first.total_results)
            if len(first.offers) < page_size:
                total_pages = 1
            logger.info(
                "Page 1 returned %d offers (total=%s); planning %d pages",
                len(first.offers),
                first.total_results,
                total_pages,
            )

            if total_pages > 1 and result.items_fetched < limit:
                outcomes = fetcher.fetch_pages(
                    api_key, range(2, total_pages + 1), page_size, deadline=deadline
                )
                with closing(outcomes):
                    for outcome in outcomes:
                        if outcome.error is not None:
                            logger.warning(
                                "Page %d failed: %s", outcome.page_number, outcome.error
                            )
                            result.errors.append(outcome.error)
                            if isinstance(outcome.error, _FATAL_PAGE_ERRORS):
                                break
                            continue
                        _check_deadline(f"before writing page {outcome.page_number}")
                        writer.write(outcome.page, limit)
                        if (
                            result.items_fetched >= limit
                            or len(outcome.page.offers) < page_size
                        ):
                            break
        except DeadlineExceeded as exc:
            logger.warning("Stopping sync: %s", exc)
            result.errors.append(exc)
            timed_out = True

    if timed_out:
        result.status = SyncRunStatus.TIMEOUT
    elif result.errors:
        result.status = (
            SyncRunStatus.PARTIAL if result.pages_fetched else SyncRunStatus.FAILED
        )
    else:
        result.status = SyncRunStatus.SUCCESS
    return result
