"""FastAPI application exposing the Takealot sync engine.

Run with ``uvicorn takealot_sync.app.api:app``.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Annotated, Any, NoReturn

from fastapi import FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..domain.errors import InvalidRequest, SyncError
from ..domain.models import (
    SCHEDULE_LABELS,
    IntegrationStatus,
    SyncStrategy,
    SyncType,
    TakealotApiResponse,
    TakealotSyncOptions,
)
from ..infrastructure.observability import (
    configure_logging,
    configure_tracing_from_env,
    format_prometheus,
    get_logger,
    get_metrics_summary,
    record_api_request,
)
from ..infrastructure.proxy import WebshareClient
from ..services import ScheduleConfig, error_kind, report
from .config import get_cors_origins, get_cron_secret, get_webshare_token
from .dependencies import CredentialStoreDep, SchedulerDep, SyncServiceDep, UserIdDep

logger = get_logger(__name__)

# HTTP status for each error kind; anything unlisted is a 500.
ERROR_STATUS: dict[str, int] = {
    "InvalidRequest": status.HTTP_400_BAD_REQUEST,
    "Unauthenticated": status.HTTP_401_UNAUTHORIZED,
    "Unauthorized": status.HTTP_403_FORBIDDEN,
    "NotFound": status.HTTP_404_NOT_FOUND,
    "SyncInProgress": status.HTTP_409_CONFLICT,
    "UpstreamError": status.HTTP_502_BAD_GATEWAY,
    "UpstreamRateLimited": status.HTTP_502_BAD_GATEWAY,
    "UpstreamUnavailable": status.HTTP_502_BAD_GATEWAY,
    "InvalidResponse": status.HTTP_502_BAD_GATEWAY,
    "DeadlineExceeded": status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for_error(error: str | None) -> int:
    kind = error_kind(error)
    return ERROR_STATUS.get(kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR)


def envelope_response(envelope: TakealotApiResponse[Any]) -> JSONResponse:
    """Return the envelope with a status code derived from its error kind."""
    code = status.HTTP_200_OK if envelope.success else status_for_error(envelope.error)
    return JSONResponse(status_code=code, content=envelope.to_dict())


def raise_for(exc: SyncError) -> NoReturn:
    raise HTTPException(status_code=status_for_error(exc.describe()), detail=exc.describe()) from exc


def cron_authorized(authorization: str | None) -> bool:
    secret = get_cron_secret()
    return not secret or authorization == f"Bearer {secret}"


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    configure_tracing_from_env(service_name="takealot-sync-api")
    yield


app = FastAPI(title="Takealot Sync API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    record_api_request(
        endpoint, request.method, response.status_code, time.perf_counter() - started
    )
    return response


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    integration_id: int | None = None
    limit: int | None = Field(None, ge=1, description="Maximum items to fetch this run.")


class SyncCountsResponse(BaseModel):
    imported: int
    updated: int


class SyncEnvelopeResponse(BaseModel):
    success: bool
    data: SyncCountsResponse | None = None
    error: str | None = None


class IntegrationCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    api_key: str | None = None
    status: IntegrationStatus = IntegrationStatus.ACTIVE


class IntegrationUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    api_key: str | None = None
    status: IntegrationStatus | None = None


class ConnectionCheckRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api_key: str | None = Field(None, min_length=1)


class StrategyModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strategy_id: str = Field(..., min_length=1)
    description: str = ""
    cron_label: str | None = None
    cron_enabled: bool = False
    max_items: int | None = Field(None, ge=1)


class StrategiesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strategies: list[StrategyModel]


class IntegrationResponse(BaseModel):
    id: int
    user_id: str
    name: str
    marketplace: str
    status: str
    api_key_masked: str | None = None
    has_api_key: bool
    created_at: str | None = None
    updated_at: str | None = None
    strategies: list[StrategyModel] = []


class ProductResponse(BaseModel):
    id: str
    title: str
    price: float
    currency: str
    availability: str
    url: str


class ProductListResponse(BaseModel):
    integration_id: int
    total: int
    products: list[ProductResponse]


class SchedulerStartRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schedule: str
    interval_seconds: float | None = Field(
        None,
        ge=0,
        description="Seconds between runs; defaults to the schedule's own period.",
    )


class SchedulerControlResponse(BaseModel):
    state: str
    detail: str | None = None


# ---------------------------------------------------------------------------
# Root and metrics
# ---------------------------------------------------------------------------


@app.get("/")
async def root():
    """API root endpoint with links."""
    return {
        "name": "Takealot Sync API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "sync": "/sync",
            "cron": "/cron/{schedule}",
            "sync_status": "/sync/status",
            "sync_runs": "/sync/runs",
            "integrations": "/integrations",
            "proxies": "/proxies/status",
            "scheduler": "/scheduler/status",
            "metrics": "/metrics",
        },
    }


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=format_prometheus(), media_type="text/plain; version=0.0.4")


@app.get("/metrics/summary")
async def metrics_summary() -> dict[str, Any]:
    """Counters and histogram stats as JSON."""
    return get_metrics_summary()


# ---------------------------------------------------------------------------
# Sync triggers
# ---------------------------------------------------------------------------


@app.post("/sync", response_model=SyncEnvelopeResponse)
async def trigger_sync(
    service: SyncServiceDep,
    user_id: UserIdDep,
    request: SyncRequest | None = None,
) -> JSONResponse:
    """Manual sync for the caller's integration; always returns the envelope."""
    request = request or SyncRequest()
    envelope = await service.run_sync_async(
        TakealotSyncOptions(
            user_id=user_id,
            sync_type=SyncType.MANUAL,
            limit=request.limit,
            integration_id=request.integration_id,
        )
    )
    return envelope_response(envelope)


@app.post("/cron/{schedule}")
async def trigger_cron(
    schedule: str,
    service: SyncServiceDep,
    authorization: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """Run every enabled strategy for ``schedule``.

    When ``CRON_SECRET`` is set the caller must send
    ``Authorization: Bearer <secret>``.
    """
    if not cron_authorized(authorization):
        logger.warning("Rejected cron trigger for '%s': bad credentials", schedule)
        return envelope_response(
            TakealotApiResponse.fail("Unauthenticated: invalid cron credentials")
        )
    envelope = await service.run_scheduled_async(schedule)
    return envelope_response(envelope)


@app.get("/sync/status")
async def sync_status(service: SyncServiceDep) -> dict[str, Any]:
    return service.sync_status()


@app.get("/sync/runs")
async def list_sync_runs(
    service: SyncServiceDep,
    limit: int = Query(20, ge=1, le=500),
    integration_id: int | None = None,
) -> list[dict[str, Any]]:
    return service.recent_runs(limit=limit, integration_id=integration_id)


@app.post("/sync/runs/cleanup")
async def cleanup_sync_runs(
    service: SyncServiceDep,
    authorization: Annotated[str | None, Header()] = None,
    older_than_days: int | None = Query(None, ge=1),
) -> JSONResponse:
    """Delete finished runs older than the retention window (7 days by default).

    Guarded by ``CRON_SECRET`` like the cron triggers.
    """
    if not cron_authorized(authorization):
        logger.warning("Rejected run cleanup: bad credentials")
        return envelope_response(
            TakealotApiResponse.fail("Unauthenticated: invalid cron credentials")
        )
    envelope = await asyncio.to_thread(
        service.cleanup_runs, older_than_days=older_than_days
    )
    return envelope_response(envelope)


@app.get("/schedules")
async def list_schedules() -> dict[str, str]:
    return dict(SCHEDULE_LABELS)


# ---------------------------------------------------------------------------
# Proxy pool
# ---------------------------------------------------------------------------


@app.get("/proxies/status")
async def proxy_status(service: SyncServiceDep) -> dict[str, Any]:
    return service.proxy_status()


@app.post("/proxies/refresh")
async def refresh_proxies(service: SyncServiceDep) -> JSONResponse:
    """Reload the proxy pool from Webshare."""

    def _refresh() -> dict[str, int]:
        token = get_webshare_token()
        if not token:
            raise InvalidRequest("WEBSHARE_API_TOKEN is not configured")
        return {"endpoints": service.refresh_proxies(WebshareClient(token))}

    return envelope_response(await asyncio.to_thread(report, _refresh))


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


@app.get("/integrations", response_model=list[IntegrationResponse])
async def list_integrations(
    store: CredentialStoreDep, user_id: UserIdDep
) -> list[dict[str, Any]]:
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthenticated: no user context")
    return [i.to_public_dict() for i in store.list_integrations(user_id)]


@app.post(
    "/integrations",
    response_model=IntegrationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_integration(
    payload: IntegrationCreateRequest, store: CredentialStoreDep, user_id: UserIdDep
) -> dict[str, Any]:
    try:
        integration = store.create_integration(
            user_id, payload.name, payload.api_key, status=payload.status
        )
    except SyncError as exc:
        raise_for(exc)
    return integration.to_public_dict()


@app.get("/integrations/{integration_id}", response_model=IntegrationResponse)
async def get_integration(
    integration_id: int, store: CredentialStoreDep, user_id: UserIdDep
) -> dict[str, Any]:
    try:
        integration = store.get_integration(user_id, integration_id)
    except SyncError as exc:
        raise_for(exc)
    return integration.to_public_dict()


@app.patch("/integrations/{integration_id}", response_model=IntegrationResponse)
async def update_integration(
    integration_id: int,
    payload: IntegrationUpdateRequest,
    store: CredentialStoreDep,
    user_id: UserIdDep,
) -> dict[str, Any]:
    try:
        integration = store.update_integration(
            user_id,
            integration_id,
            name=payload.name,
            api_key=payload.api_key,
            status=payload.status,
        )
    except SyncError as exc:
        raise_for(exc)
    return integration.to_public_dict()


@app.delete("/integrations/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_integration(
    integration_id: int, store: CredentialStoreDep, user_id: UserIdDep
) -> None:
    try:
        store.delete_integration(user_id, integration_id)
    except SyncError as exc:
        raise_for(exc)


@app.put("/integrations/{integration_id}/strategies", response_model=IntegrationResponse)
async def set_strategies(
    integration_id: int,
    payload: StrategiesRequest,
    store: CredentialStoreDep,
    user_id: UserIdDep,
) -> dict[str, Any]:
    try:
        integration = store.set_strategies(
            user_id,
            integration_id,
            [SyncStrategy(**s.model_dump()) for s in payload.strategies],
        )
    except SyncError as exc:
        raise_for(exc)
    return integration.to_public_dict()


@app.post("/integrations/{integration_id}/check-connection")
async def check_connection(
    integration_id: int,
    service: SyncServiceDep,
    user_id: UserIdDep,
    payload: ConnectionCheckRequest | None = None,
) -> JSONResponse:
    """Test the stored key, or a candidate ``api_key``, against the seller API."""
    envelope = await asyncio.to_thread(
        service.check_connection,
        user_id,
        integration_id,
        api_key=payload.api_key if payload else None,
    )
    return envelope_response(envelope)


@app.get("/integrations/{integration_id}/products", response_model=ProductListResponse)
async def list_products(
    integration_id: int,
    service: SyncServiceDep,
    user_id: UserIdDep,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    try:
        return service.list_products(user_id, integration_id, limit=limit, offset=offset)
    except SyncError as exc:
        raise_for(exc)


# ---------------------------------------------------------------------------
# Scheduler control
# ---------------------------------------------------------------------------


@app.post(
    "/scheduler/start",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SchedulerControlResponse,
)
async def start_scheduler(
    request: SchedulerStartRequest, scheduler: SchedulerDep
) -> SchedulerControlResponse:
    try:
        config = ScheduleConfig(request.schedule, request.interval_seconds)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        state = await scheduler.start(config)
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return SchedulerControlResponse(state=state.status, detail=f"schedule={config.schedule}")


@app.post(
    "/scheduler/pause",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SchedulerControlResponse,
)
async def pause_scheduler(scheduler: SchedulerDep) -> SchedulerControlResponse:
    state = await scheduler.pause()
    return SchedulerControlResponse(state=state.status)


@app.post(
    "/scheduler/stop",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SchedulerControlResponse,
)
async def stop_scheduler(scheduler: SchedulerDep) -> SchedulerControlResponse:
    state = await scheduler.stop()
    return SchedulerControlResponse(state=state.status)


@app.get("/scheduler/status")
async def scheduler_status(scheduler: SchedulerDep) -> dict[str, Any]:
    return scheduler.get_status()
