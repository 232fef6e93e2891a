"""API tests using FastAPI's TestClient with the services pointed at a temp store."""

from __future__ import annotations

import asyncio
import threading

import httpx
import pytest
from fastapi.testclient import TestClient

from takealot_sync.app import api as api_module
from takealot_sync.app.api import app, status_for_error
from takealot_sync.app.dependencies import get_sync_service, reset_services


@pytest.fixture
def service(make_service, offers_session):
    return make_service(offers_session(30))


@pytest.fixture
def client(service):
    app.dependency_overrides[get_sync_service] = lambda: service
    reset_services()
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_services()


def _headers(user: str = "u1") -> dict[str, str]:
    return {"X-User-Id": user}


@pytest.mark.parametrize(
    "error,code",
    [
        ("InvalidRequest: x", 400),
        ("Unauthenticated: x", 401),
        ("Unauthorized: x", 403),
        ("NotFound: x", 404),
        ("SyncInProgress: sync in progress", 409),
        ("UpstreamUnavailable: proxy pool is empty", 502),
        ("InvalidResponse: x", 502),
        ("DeadlineExceeded: x", 504),
        ("InternalError: x", 500),
    ],
)
def test_status_for_error(error, code) -> None:
    assert status_for_error(error) == code


def test_root_lists_endpoints(client) -> None:
    body = client.get("/").json()
    assert body["name"] == "Takealot Sync API"
    assert body["endpoints"]["sync"] == "/sync"


def test_manual_sync_returns_envelope(client, store) -> None:
    store.create_integration("u1", "Shop", "key")

    response = client.post("/sync", json={"limit": 10}, headers=_headers())

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "data": {"imported": 10, "updated": 0},
        "error": None,
    }


def test_sync_without_user_is_401(client) -> None:
    response = client.post("/sync")
    assert response.status_code == 401
    assert response.json()["error"] == "Unauthenticated: no user context"


def test_sync_rejects_bad_limit(client) -> None:
    response = client.post("/sync", json={"limit": 0}, headers=_headers())
    assert response.status_code == 422


def test_sync_in_progress_is_409(client, store, service) -> None:
    created = store.create_integration("u1", "Shop", "key")
    from takealot_sync.infrastructure.db import iso_utc_ago
    from takealot_sync.infrastructure.db.repositories import SyncRunRepository

    with service._connection_factory() as conn:
        SyncRunRepository(conn).acquire_lease("u1", created.id, "cron", stale_before=iso_utc_ago(60))

    response = client.post("/sync", headers=_headers())

    assert response.status_code == 409
    assert response.json()["error"] == "SyncInProgress: sync in progress"


def test_cron_requires_secret_when_configured(client, monkeypatch) -> None:
    monkeypatch.setenv("CRON_SECRET", "s3cret")

    denied = client.post("/cron/nightly")
    assert denied.status_code == 401

    allowed = client.post("/cron/nightly", headers={"Authorization": "Bearer s3cret"})
    assert allowed.status_code == 200
    assert allowed.json()["data"]["cron_label"] == "Every Night"


def test_cron_unknown_schedule_is_400(client, monkeypatch) -> None:
    monkeypatch.delenv("CRON_SECRET", raising=False)
    response = client.post("/cron/monthly")
    assert response.status_code == 400


def test_integration_crud(client) -> None:
    created = client.post(
        "/integrations", json={"name": "Shop", "api_key": "abcd1234efgh"}, headers=_headers()
    )
    assert created.status_code == 201
    body = created.json()
    assert body["api_key_masked"] == "abcd****efgh"
    integration_id = body["id"]

    listed = client.get("/integrations", headers=_headers()).json()
    assert [i["id"] for i in listed] == [integration_id]

    assert client.get(f"/integrations/{integration_id}", headers=_headers("u2")).status_code == 403
    assert client.get("/integrations/999", headers=_headers()).status_code == 404

    patched = client.patch(
        f"/integrations/{integration_id}", json={"status": "inactive"}, headers=_headers()
    )
    assert patched.json()["status"] == "inactive"

    strategies = client.put(
        f"/integrations/{integration_id}/strategies",
        json={"strategies": [{"strategy_id": "n", "cron_label": "Every Night", "cron_enabled": True}]},
        headers=_headers(),
    )
    assert strategies.status_code == 200
    assert strategies.json()["strategies"][0]["cron_label"] == "Every Night"

    bad = client.put(
        f"/integrations/{integration_id}/strategies",
        json={"strategies": [{"strategy_id": "n", "cron_label": "Sometimes", "cron_enabled": True}]},
        headers=_headers(),
    )
    assert bad.status_code == 400

    assert client.delete(f"/integrations/{integration_id}", headers=_headers()).status_code == 204
    assert client.get("/integrations", headers=_headers()).json() == []


def test_duplicate_integration_is_400(client) -> None:
    client.post("/integrations", json={"name": "Shop", "api_key": "k"}, headers=_headers())
    again = client.post("/integrations", json={"name": "Again", "api_key": "k"}, headers=_headers())
    assert again.status_code == 400
    assert again.json()["detail"].startswith("InvalidRequest:")


def test_products_and_status_after_sync(client, store) -> None:
    created = store.create_integration("u1", "Shop", "key")
    client.post("/sync", headers=_headers())

    products = client.get(f"/integrations/{created.id}/products?limit=5", headers=_headers()).json()
    assert products["total"] == 30
    assert len(products["products"]) == 5

    status = client.get("/sync/status").json()
    assert status["last_24h"]["successful_runs"] == 1
    runs = client.get("/sync/runs", params={"integration_id": created.id}).json()
    assert runs[0]["status"] == "success"


def test_proxy_status_and_refresh_without_token(client, monkeypatch) -> None:
    monkeypatch.delenv("WEBSHARE_API_TOKEN", raising=False)
    status = client.get("/proxies/status").json()
    assert status["total"] == 1
    assert status["endpoints"][0]["label"] == "p0"

    refresh = client.post("/proxies/refresh")
    assert refresh.status_code == 400
    assert refresh.json()["error"] == "InvalidRequest: WEBSHARE_API_TOKEN is not configured"


def test_proxy_refresh_loads_endpoints(client, monkeypatch, service) -> None:
    from takealot_sync.infrastructure.proxy import ProxyEndpoint

    class StubWebshare:
        def __init__(self, token):
            assert token == "tok"

        def list_proxies(self):
            return [ProxyEndpoint("w1", "http://u:p@h:1"), ProxyEndpoint("w2", "http://u:p@h:2")]

    monkeypatch.setenv("WEBSHARE_API_TOKEN", "tok")
    monkeypatch.setattr(api_module, "WebshareClient", StubWebshare)

    response = client.post("/proxies/refresh")

    assert response.json() == {"success": True, "data": {"endpoints": 2}, "error": None}
    assert len(service.pool) == 2


def test_slow_proxy_refresh_does_not_block_other_requests(client, monkeypatch) -> None:
    from takealot_sync.infrastructure.proxy import ProxyEndpoint

    started = threading.Event()
    status_served = threading.Event()
    released: list[bool] = []

    class SlowWebshare:
        def __init__(self, token):
            pass

        def list_proxies(self):
            started.set()
            released.append(status_served.wait(timeout=5))
            return [ProxyEndpoint("w1", "http://u:p@h:1")]

    monkeypatch.setenv("WEBSHARE_API_TOKEN", "tok")
    monkeypatch.setattr(api_module, "WebshareClient", SlowWebshare)

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            refresh = asyncio.create_task(http.post("/proxies/refresh"))
            assert await asyncio.to_thread(started.wait, 5)
            status = await http.get("/proxies/status")
            status_served.set()
            return status, await refresh

    status, refresh = asyncio.run(scenario())

    assert released == [True]
    assert status.json()["endpoints"][0]["label"] == "p0"
    assert refresh.json()["data"] == {"endpoints": 1}


def test_metrics_endpoint_exposes_request_counters(client) -> None:
    client.get("/")
    text = client.get("/metrics").text
    assert "api_requests_total" in text
    assert 'endpoint="/"' in text


def test_scheduler_lifecycle(client) -> None:
    assert client.get("/scheduler/status").json()["status"] == "idle"
    assert client.post("/scheduler/start", json={"schedule": "monthly"}).status_code == 400
    assert client.post("/scheduler/stop").json()["state"] == "idle"


def test_metrics_summary_is_json(client) -> None:
    client.get("/")
    summary = client.get("/metrics/summary").json()
    assert set(summary) == {"counters", "histograms"}
    assert "api_requests_total" in summary["counters"]


def test_run_cleanup_requires_cron_secret(client, monkeypatch) -> None:
    monkeypatch.setenv("CRON_SECRET", "s3cret")

    denied = client.post("/sync/runs/cleanup")
    assert denied.status_code == 401

    allowed = client.post(
        "/sync/runs/cleanup",
        params={"older_than_days": 3},
        headers={"Authorization": "Bearer s3cret"},
    )
    assert allowed.status_code == 200
    assert allowed.json()["data"]["retention_days"] == 3
    assert allowed.json()["data"]["deleted"] == 0


def test_run_cleanup_rejects_zero_days(client, monkeypatch) -> None:
    monkeypatch.delenv("CRON_SECRET", raising=False)
    assert client.post("/sync/runs/cleanup", params={"older_than_days": 0}).status_code == 422


def test_check_connection_route(client, store) -> None:
    created = store.create_integration("u1", "Shop", "key")
    url = f"/integrations/{created.id}/check-connection"

    checked = client.post(url, headers=_headers())
    assert checked.status_code == 200
    assert checked.json()["data"] == {"integration_id": created.id, "total_offers": 30}

    assert client.post(url, headers=_headers("u2")).status_code == 403
    assert client.post(url).status_code == 401
    assert client.post(url, json={"api_key": ""}, headers=_headers()).status_code == 422
