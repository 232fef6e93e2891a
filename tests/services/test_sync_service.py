"""End-to-end orchestration tests against a fake seller API."""

from __future__ import annotations

import asyncio
import itertools

from takealot_sync.domain.models import SyncStrategy, TakealotSyncOptions
from takealot_sync.infrastructure.db import get_connection, iso_utc_ago
from takealot_sync.infrastructure.db.repositories import SyncRunRepository
from takealot_sync.infrastructure.proxy import ProxyEndpoint, ProxyPool


def _runs(db_path: str) -> list[dict]:
    with get_connection(db_path) as conn:
        return list(reversed(SyncRunRepository(conn).list_recent(limit=100)))


def test_manual_sync_imports_then_updates(store, make_service, offers_session, db_path) -> None:
    store.create_integration("u1", "Shop", "key")
    service = make_service(offers_session(50))

    first = service.run_sync(TakealotSyncOptions(user_id="u1"))
    second = service.run_sync(TakealotSyncOptions(user_id="u1"))

    assert first.success and first.error is None
    assert (first.data.imported, first.data.updated) == (50, 0)
    assert (second.data.imported, second.data.updated) == (0, 50)
    assert [r["status"] for r in _runs(db_path)] == ["success", "success"]


def test_sync_without_user_is_unauthenticated(make_service, offers_session) -> None:
    response = make_service(offers_session(1)).run_sync(TakealotSyncOptions(user_id=""))
    assert not response.success
    assert response.error == "Unauthenticated: no user context"


def test_invalid_limit_is_rejected(store, make_service, offers_session) -> None:
    store.create_integration("u1", "Shop", "key")
    response = make_service(offers_session(1)).run_sync(
        TakealotSyncOptions(user_id="u1", limit=0)
    )
    assert response.error.startswith("InvalidRequest:")


def test_missing_key_fails_and_is_logged(store, make_service, offers_session, db_path) -> None:
    store.create_integration("u1", "Shop", None)
    session = offers_session(10)

    response = make_service(session).run_sync(TakealotSyncOptions(user_id="u1"))

    assert response.error.startswith("NotFound:")
    assert session.calls == []
    runs = _runs(db_path)
    assert runs[-1]["status"] == "failed"
    assert runs[-1]["notes"].startswith("NotFound:")


def test_inactive_integration_is_rejected(store, make_service, offers_session) -> None:
    created = store.create_integration("u1", "Shop", "key", status="inactive")
    response = make_service(offers_session(10)).run_sync(
        TakealotSyncOptions(user_id="u1", integration_id=created.id)
    )
    assert response.error == f"InvalidRequest: integration {created.id} is inactive"


def test_pool_exhaustion_keeps_written_records(
    store, make_service, offers_session, fake_response, db_path
) -> None:
    store.create_integration("u1", "Shop", "key")
    session = offers_session(
        300, fail_for=lambda page, _p: fake_response(429, {}) if page > 1 else None
    )
    pool = ProxyPool(
        [ProxyEndpoint("p0", "http://u:p@10.0.0.1:80")],
        failure_threshold=1,
        max_attempts=1,
        sleep=lambda _s: None,
    )

    response = make_service(session, pool=pool).run_sync(TakealotSyncOptions(user_id="u1"))

    assert not response.success
    assert response.error.startswith("UpstreamUnavailable")
    assert (response.data.imported, response.data.updated) == (100, 0)
    run = _runs(db_path)[-1]
    assert run["status"] == "partial"
    assert run["imported"] == 100
    with get_connection(db_path) as conn:
        assert conn.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 100


def test_empty_pool_without_direct_fails(store, make_service, offers_session) -> None:
    store.create_integration("u1", "Shop", "key")
    response = make_service(offers_session(10), pool=ProxyPool([])).run_sync(
        TakealotSyncOptions(user_id="u1")
    )
    assert response.error == "UpstreamUnavailable: proxy pool is empty"
    assert (response.data.imported, response.data.updated) == (0, 0)


def test_empty_pool_with_direct_egress_succeeds(store, make_service, offers_session) -> None:
    store.create_integration("u1", "Shop", "key")
    session = offers_session(10)
    response = make_service(session, pool=ProxyPool([], allow_direct=True)).run_sync(
        TakealotSyncOptions(user_id="u1")
    )
    assert response.success
    assert session.calls[0]["proxies"] is None


def test_concurrent_sync_is_rejected(store, make_service, offers_session, db_path) -> None:
    created = store.create_integration("u1", "Shop", "key")
    with get_connection(db_path) as conn:
        SyncRunRepository(conn).acquire_lease(
            "u1", created.id, "cron", stale_before=iso_utc_ago(600)
        )
    session = offers_session(10)

    response = make_service(session).run_sync(TakealotSyncOptions(user_id="u1"))

    assert response.error == "SyncInProgress: sync in progress"
    assert session.calls == []
    assert [r["status"] for r in _runs(db_path)] == ["running", "rejected"]


def test_deadline_marks_run_as_timeout(store, make_service, offers_session, db_path) -> None:
    store.create_integration("u1", "Shop", "key")
    ticks = itertools.count(0, 1000)
    service = make_service(
        offers_session(300), clock=lambda: next(ticks), run_deadline_seconds=600
    )

    response = service.run_sync(TakealotSyncOptions(user_id="u1"))

    assert response.error.startswith("DeadlineExceeded:")
    assert _runs(db_path)[-1]["status"] == "timeout"


def test_run_sync_async_wraps_run_sync(store, make_service, offers_session) -> None:
    store.create_integration("u1", "Shop", "key")
    service = make_service(offers_session(5))
    response = asyncio.run(service.run_sync_async(TakealotSyncOptions(user_id="u1")))
    assert response.success
    assert response.data.imported == 5


def test_unexpected_error_becomes_internal_error(store, make_service, offers_session, monkeypatch) -> None:
    store.create_integration("u1", "Shop", "key")
    service = make_service(offers_session(5))

    def explode(*_args, **_kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr("takealot_sync.services.sync_service.sync_catalog", explode)

    response = service.run_sync(TakealotSyncOptions(user_id="u1"))

    assert response.error == "InternalError: kaboom"
    assert service.sync_status()["active_runs"] == []


class TestScheduledSync:
    def _setup(self, store):
        first = store.create_integration("u1", "One", "key-1")
        second = store.create_integration("u2", "Two", None)
        third = store.create_integration("u3", "Three", "key-3")
        store.set_strategies(
            "u1",
            first.id,
            [
                SyncStrategy("small", cron_label="Every Night", cron_enabled=True, max_items=20),
                SyncStrategy("large", cron_label="Every Night", cron_enabled=True, max_items=40),
            ],
        )
        store.set_strategies(
            "u2", second.id, [SyncStrategy("n", cron_label="Every Night", cron_enabled=True)]
        )
        store.set_strategies(
            "u3", third.id, [SyncStrategy("w", cron_label="Every Sunday", cron_enabled=True)]
        )
        return first, second, third

    def test_runs_matching_integrations_once_with_largest_limit(
        self, store, make_service, offers_session, db_path
    ) -> None:
        first, second, _third = self._setup(store)
        service = make_service(offers_session(100), page_size=10)

        response = service.run_scheduled("nightly")

        assert response.success
        summary = response.data
        assert summary["cron_label"] == "Every Night"
        assert summary["skipped_integrations"] == [second.id]
        assert summary["succeeded"] == 1
        [run] = summary["runs"]
        assert run["integration_id"] == first.id
        assert run["strategies"] == ["small", "large"]
        assert run["data"] == {"imported": 40, "updated": 0}
        assert [r["sync_type"] for r in _runs(db_path)] == ["cron"]

    def test_unknown_schedule_is_invalid(self, make_service, offers_session) -> None:
        response = make_service(offers_session(1)).run_scheduled("monthly")
        assert response.error.startswith("InvalidRequest: unknown schedule 'monthly'")

    def test_failures_are_counted(self, store, make_service, offers_session, fake_response) -> None:
        self._setup(store)
        session = offers_session(10, fail_for=lambda *_: fake_response(403, {}))

        response = make_service(session).run_scheduled("weekly")

        assert not response.success
        assert response.error == "SyncError: 1 of 1 scheduled syncs failed"
        assert response.data["failed"] == 1
        assert response.data["runs"][0]["error"].startswith("Unauthorized:")


def test_status_views(store, make_service, offers_session) -> None:
    created = store.create_integration("u1", "Shop", "key")
    service = make_service(offers_session(5))
    service.run_sync(TakealotSyncOptions(user_id="u1"))

    status = service.sync_status()

    assert status["active_runs"] == []
    assert status["latest_runs"][0]["integration_id"] == created.id
    assert status["last_24h"]["successful_runs"] == 1
    assert status["proxies"] == {"total": 1, "healthy": 1, "cooling_down": 0, "allow_direct": False}
    assert len(service.recent_runs(integration_id=created.id)) == 1

    page = service.list_products("u1", created.id, limit=2)
    assert page["total"] == 5
    assert [p["id"] for p in page["products"]] == ["T-0", "T-1"]


def test_load_proxies_replaces_pool(make_service, offers_session) -> None:
    service = make_service(offers_session(1))
    count = service.load_proxies(
        [ProxyEndpoint("a", "http://u:p@h:1"), ProxyEndpoint("b", "http://u:p@h:2")]
    )
    assert count == 2
    assert [e["label"] for e in service.proxy_status()["endpoints"]] == ["a", "b"]


def test_check_connection_fetches_one_offer_through_the_pool(
    store, make_service, offers_session
) -> None:
    created = store.create_integration("u1", "Shop", "stored-key")
    session = offers_session(42)

    response = make_service(session).check_connection("u1", created.id)

    assert response.success
    assert response.data == {"integration_id": created.id, "total_offers": 42}
    [call] = session.calls
    assert (call["page_number"], call["page_size"]) == (1, 1)
    assert call["headers"]["Authorization"] == "Key stored-key"
    assert call["proxies"]


def test_check_connection_with_candidate_key(store, make_service, offers_session) -> None:
    created = store.create_integration("u1", "Shop", None)
    session = offers_session(3)

    response = make_service(session).check_connection("u1", created.id, api_key="candidate")

    assert response.success
    assert session.calls[0]["headers"]["Authorization"] == "Key candidate"
    assert store.get_integration("u1", created.id).api_key is None


def test_check_connection_reports_rejected_key(
    store, make_service, offers_session, fake_response
) -> None:
    created = store.create_integration("u1", "Shop", "revoked")
    session = offers_session(3, fail_for=lambda _page, _proxies: fake_response(401, {}))

    response = make_service(session).check_connection("u1", created.id)

    assert not response.success
    assert response.error.startswith("Unauthorized:")
    assert len(session.calls) == 1


def test_check_connection_for_another_users_integration(
    store, make_service, offers_session
) -> None:
    created = store.create_integration("u1", "Shop", "key")
    session = offers_session(3)

    response = make_service(session).check_connection("u2", created.id)

    assert response.error.startswith("Unauthorized:")
    assert session.calls == []


def test_cleanup_runs_deletes_old_finished_runs_in_batches(
    make_service, offers_session, db_path
) -> None:
    service = make_service(offers_session(1), cleanup_batch_size=2)
    with get_connection(db_path) as conn:
        runs = SyncRunRepository(conn)
        for _ in range(5):
            runs.record_failed("u1", None, "cron", "NotFound: no key")
        running = runs.acquire_lease("u1", 1, "manual", stale_before=iso_utc_ago(600))
        recent = runs.record_failed("u1", None, "manual", "NotFound: no key")
        conn.execute(
            "UPDATE sync_runs SET started_at = ? WHERE id != ?",
            (iso_utc_ago(8 * 24 * 60 * 60), recent),
        )

    response = service.cleanup_runs()

    assert response.success
    assert response.data["deleted"] == 5
    assert response.data["remaining"] == 2
    assert response.data["retention_days"] == 7
    assert sorted(r["id"] for r in _runs(db_path)) == [running, recent]


def test_cleanup_runs_rejects_non_positive_window(make_service, offers_session) -> None:
    response = make_service(offers_session(1)).cleanup_runs(older_than_days=0)
    assert response.error.startswith("InvalidRequest:")
