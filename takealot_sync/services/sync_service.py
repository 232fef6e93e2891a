"""Sync orchestration: manual and scheduled catalogue syncs.

:class:`SyncService` resolves credentials, takes the per-integration run
lease, drives :func:`sync_catalog` and records the outcome in ``sync_runs``.
Its public methods always return a :class:`TakealotApiResponse`; they never
raise.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Iterable

from ..domain.errors import InvalidRequest, SyncError, Unauthenticated
from ..domain.models import (
    SCHEDULE_LABELS,
    SyncCounts,
    SyncRunStatus,
    SyncType,
    TakealotApiResponse,
    TakealotSyncOptions,
)
from ..infrastructure.db import ensure_schema, iso_utc_ago
from ..infrastructure.db.repositories import (
    IntegrationRepository,
    ProductRepository,
    SyncRunRepository,
)
from ..infrastructure.http import TakealotApiClient
from ..infrastructure.observability import (
    log_context,
    record_sync_run,
    set_span_attribute,
    traced,
)
from ..infrastructure.proxy import ProxyEndpoint, ProxyPool, WebshareClient
from . import reporting
from .base import BaseService, ConnectionFactory
from .credentials import CredentialStore
from .sync import PageFetcher, SyncSettings, sync_catalog

DAY_SECONDS = 24 * 60 * 60
STATUS_WINDOW_SECONDS = DAY_SECONDS


def build_proxy_pool(
    settings: SyncSettings, endpoints: Iterable[ProxyEndpoint] = ()
) -> ProxyPool:
    return ProxyPool(
        endpoints,
        failure_threshold=settings.proxy_failure_threshold,
        cooldown_seconds=settings.proxy_cooldown_seconds,
        max_attempts=settings.proxy_max_attempts,
        backoff_base=settings.retry_backoff_base,
        allow_direct=settings.allow_direct,
    )


class SyncService(BaseService):
    """Coordinate catalogue syncs for all integrations.

    The proxy pool and HTTP client are shared by every run so endpoint health
    carries over from one run to the next.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        *,
        settings: SyncSettings | None = None,
        credentials: CredentialStore | None = None,
        pool: ProxyPool | None = None,
        client: TakealotApiClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(connection_factory)
        self.settings = settings or SyncSettings()
        self.credentials = credentials or CredentialStore(connection_factory)
        self.pool = pool or build_proxy_pool(self.settings)
        self.client = client or TakealotApiClient(
            base_url=self.settings.base_url,
            timeout=self.settings.request_timeout_seconds,
        )
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Manual / single-integration sync
    # ------------------------------------------------------------------

    @traced("run_sync")
    def run_sync(self, options: TakealotSyncOptions) -> TakealotApiResponse[SyncCounts]:
        """Sync one integration's catalogue and report the counters.

        ``success`` is true only when every page was fetched and stored. On
        failure ``data`` still carries what was written before the error.
        """
        return reporting.report(lambda: self._run_sync(options))

    def _record_rejected_trigger(
        self, options: TakealotSyncOptions, integration_id: int | None, exc: SyncError
    ) -> None:
        def _record(conn) -> None:
            SyncRunRepository(conn).record_failed(
                options.user_id,
                integration_id,
                options.sync_type.value,
                exc.describe(),
            )

        self._with_connection(_record)

    def _run_sync(self, options: TakealotSyncOptions) -> TakealotApiResponse[SyncCounts]:
        if not options.user_id:
            raise Unauthenticated("no user context")
        if options.limit is not None and options.limit < 1:
            raise InvalidRequest("limit must be a positive integer")

        integration_id = options.integration_id
        try:
            integration = self.credentials.resolve_integration(
                options.user_id, options.integration_id
            )
            integration_id = integration.id
            if not integration.is_active:
                raise InvalidRequest(f"integration {integration.id} is inactive")
            api_key = self.credentials.resolve_key(options.user_id, integration.id)
        except SyncError as exc:
            self._record_rejected_trigger(options, integration_id, exc)
            raise

        limit = options.limit or self.settings.default_limit
        set_span_attribute("integration_id", integration.id)
        started = time.perf_counter()

        with self._connection_factory() as conn:
            ensure_schema(conn)
            runs = SyncRunRepository(conn)
            run_id = runs.acquire_lease(
                options.user_id,
                integration.id,
                options.sync_type.value,
                stale_before=iso_utc_ago(self.settings.lease_ttl_seconds),
            )
            with log_context(integration_id=integration.id, run_id=run_id):
                self._logger.info(
                    "Starting %s sync (limit=%d)", options.sync_type.value, limit
                )
                fetcher = PageFetcher(
                    self.client,
                    self.pool,
                    max_concurrent_pages=self.settings.max_concurrent_pages,
                    throttle_per_second=self.settings.throttle_per_second,
                    clock=self._clock,
                )
                try:
                    result = sync_catalog(
                        conn,
                        integration_id=integration.id,
                        api_key=api_key,
                        fetcher=fetcher,
                        limit=limit,
                        page_size=self.settings.page_size,
                        run_id=run_id,
                        deadline=self._clock() + self.settings.run_deadline_seconds,
                        storage_retry_attempts=self.settings.storage_retry_attempts,
                        retry_backoff_base=self.settings.retry_backoff_base,
                        clock=self._clock,
                        sleep=self._sleep,
                    )
                except Exception as exc:
                    runs.finish(
                        run_id,
                        SyncRunStatus.FAILED,
                        pages_fetched=0,
                        items_fetched=0,
                        imported=0,
                        updated=0,
                        skipped=0,
                        error_count=1,
                        notes=reporting.describe_error(exc),
                    )
                    raise

                runs.finish(
                    run_id,
                    result.status,
                    pages_fetched=result.pages_fetched,
                    items_fetched=result.items_fetched,
                    imported=result.imported,
                    updated=result.updated,
                    skipped=result.skipped,
                    error_count=len(result.errors),
                    notes=result.notes_text,
                )
                self._logger.info(
                    "Sync finished with status %s: %d imported, %d updated, %d skipped",
                    result.status.value,
                    result.imported,
                    result.updated,
                    result.skipped,
                )

        record_sync_run(
            options.sync_type.value,
            result.status.value,
            time.perf_counter() - started,
            result.imported,
            result.updated,
        )
        if result.status is SyncRunStatus.SUCCESS:
            return TakealotApiResponse.ok(result.counts)
        return TakealotApiResponse.fail(
            result.error_message or f"SyncError: run ended with status {result.status.value}",
            result.counts,
        )

    async def run_sync_async(
        self, options: TakealotSyncOptions
    ) -> TakealotApiResponse[SyncCounts]:
        return await asyncio.to_thread(self.run_sync, options)

    # ------------------------------------------------------------------
    # Scheduled sync
    # ------------------------------------------------------------------

    def run_scheduled(self, schedule: str) -> TakealotApiResponse[dict[str, Any]]:
        """Run every enabled strategy whose cron label matches ``schedule``."""
        return reporting.report(lambda: self._run_scheduled(schedule))

    def _run_scheduled(self, schedule: str) -> TakealotApiResponse[dict[str, Any]]:
        cron_label = SCHEDULE_LABELS.get(schedule)
        if cron_label is None:
            raise InvalidRequest(
                f"unknown schedule '{schedule}'; expected one of "
                + ", ".join(SCHEDULE_LABELS)
            )

        rows = self._with_connection(
            lambda conn: IntegrationRepository(conn).list_scheduled(cron_label)
        )

        # one run per integration, with the largest limit any strategy asks for
        targets: dict[int, dict[str, Any]] = {}
        for row in rows:
            target = targets.setdefault(
                row["integration_id"],
                {
                    "integration_id": row["integration_id"],
                    "user_id": row["user_id"],
                    "has_key": bool(row["api_key"]),
                    "strategies": [],
                    "limit": None,
                },
            )
            target["strategies"].append(row["strategy_id"])
            max_items = row["max_items"]
            if max_items is not None:
                target["limit"] = max(target["limit"] or 0, int(max_items))

        runs: list[dict[str, Any]] = []
        skipped: list[int] = []
        with log_context(schedule=schedule):
            self._logger.info(
                "Scheduled sync '%s' matched %d integrations", cron_label, len(targets)
            )
            for target in targets.values():
                if not target["has_key"]:
                    self._logger.warning(
                        "Skipping integration %s: no API key", target["integration_id"]
                    )
                    skipped.append(target["integration_id"])
                    continue
                response = self.run_sync(
                    TakealotSyncOptions(
                        user_id=target["user_id"],
                        sync_type=SyncType.CRON,
                        limit=target["limit"],
                        integration_id=target["integration_id"],
                    )
                )
                runs.append(
                    {
                        "integration_id": target["integration_id"],
                        "strategies": target["strategies"],
                        **response.to_dict(),
                    }
                )

        failed = [run for run in runs if not run["success"]]
        summary = {
            "schedule": schedule,
            "cron_label": cron_label,
            "runs": runs,
            "skipped_integrations": skipped,
            "succeeded": len(runs) - len(failed),
            "failed": len(failed),
        }
        if failed:
            return TakealotApiResponse.fail(
                f"SyncError: {len(failed)} of {len(runs)} scheduled syncs failed",
                summary,
            )
        return TakealotApiResponse.ok(summary)

    async def run_scheduled_async(self, schedule: str) -> TakealotApiResponse[dict[str, Any]]:
        return await asyncio.to_thread(self.run_scheduled, schedule)

    # ------------------------------------------------------------------
    # Status and run log
    # ------------------------------------------------------------------

    def sync_status(self) -> dict[str, Any]:
        """Active runs, the latest run per integration and 24h totals."""

        def _status(conn) -> dict[str, Any]:
            runs = SyncRunRepository(conn)
            return {
                "active_runs": runs.list_active(),
                "latest_runs": runs.latest_per_integration(),
                "last_24h": runs.stats_since(iso_utc_ago(STATUS_WINDOW_SECONDS)),
            }

        status = self._with_connection(_status)
        status["proxies"] = self.proxy_summary()
        return status

    def recent_runs(self, *, limit: int = 20, integration_id: int | None = None) -> list[dict[str, Any]]:
        return self._with_connection(
            lambda conn: SyncRunRepository(conn).list_recent(
                limit=limit, integration_id=integration_id
            )
        )

    def cleanup_runs(
        self, *, older_than_days: int | None = None
    ) -> TakealotApiResponse[dict[str, Any]]:
        """Delete finished runs older than the retention window.

        Running rows are kept whatever their age; stale ones are closed by the
        next lease attempt instead.
        """

        def _cleanup() -> dict[str, Any]:
            days = (
                older_than_days
                if older_than_days is not None
                else self.settings.run_retention_days
            )
            if days < 1:
                raise InvalidRequest("older_than_days must be a positive integer")
            cutoff = iso_utc_ago(days * DAY_SECONDS)

            def _delete(conn) -> dict[str, Any]:
                runs = SyncRunRepository(conn)
                deleted = runs.delete_finished_before(
                    cutoff, batch_size=self.settings.cleanup_batch_size
                )
                return {
                    "deleted": deleted,
                    "remaining": runs.count(),
                    "cutoff": cutoff,
                    "retention_days": days,
                }

            summary = self._with_connection(_delete)
            self._logger.info(
                "Deleted %d sync runs started before %s (%d remain)",
                summary["deleted"],
                cutoff,
                summary["remaining"],
            )
            return summary

        return reporting.report(_cleanup)

    # ------------------------------------------------------------------
    # Connection check
    # ------------------------------------------------------------------

    @traced("check_connection")
    def check_connection(
        self,
        user_id: str | None,
        integration_id: int | None = None,
        *,
        api_key: str | None = None,
    ) -> TakealotApiResponse[dict[str, Any]]:
        """Fetch a single offer through the proxy pool to test a key.

        ``api_key`` tests a candidate key before it is stored; otherwise the
        integration's stored key is used. Nothing is written.
        """

        def _check() -> dict[str, Any]:
            integration = self.credentials.resolve_integration(user_id, integration_id)
            key = api_key or self.credentials.resolve_key(user_id, integration.id)
            with log_context(integration_id=integration.id):
                page = self.pool.with_proxy(
                    lambda endpoint: self.client.fetch_offers_page(
                        key, 1, 1, proxy=endpoint
                    )
                )
                self._logger.info(
                    "Connection check succeeded (total offers: %s)", page.total_results
                )
            return {"integration_id": integration.id, "total_offers": page.total_results}

        return reporting.report(_check)

    # ------------------------------------------------------------------
    # Proxy pool and catalogue
    # ------------------------------------------------------------------

    def proxy_summary(self) -> dict[str, Any]:
        endpoints = self.pool.snapshot()
        healthy = sum(1 for e in endpoints if e["state"] == "healthy")
        return {
            "total": len(endpoints),
            "healthy": healthy,
            "cooling_down": len(endpoints) - healthy,
            "allow_direct": self.pool.allow_direct,
        }

    def proxy_status(self) -> dict[str, Any]:
        return {**self.proxy_summary(), "endpoints": self.pool.snapshot()}

    def load_proxies(self, endpoints: Iterable[ProxyEndpoint]) -> int:
        self.pool.replace_endpoints(endpoints)
        count = len(self.pool)
        self._logger.info("Proxy pool now has %d endpoints", count)
        return count

    def refresh_proxies(self, webshare: WebshareClient) -> int:
        """Reload the pool from Webshare; returns the number of endpoints."""
        return self.load_proxies(webshare.list_proxies())

    def list_products(
        self,
        user_id: str | None,
        integration_id: int,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        integration = self.credentials.resolve_integration(user_id, integration_id)

        def _list(conn) -> dict[str, Any]:
            repo = ProductRepository(conn)
            return {
                "integration_id": integration.id,
                "total": repo.count(integration.id),
                "products": [p.to_dict() for p in repo.list(integration.id, limit=limit, offset=offset)],
            }

        return self._with_connection(_list)
