"""HTTP client for the Takealot seller API.

Wraps a :class:`requests.Session` and translates HTTP outcomes into the
engine's error kinds so the proxy pool can decide what to retry:

* 429 -> :class:`UpstreamRateLimited` (rotate and retry)
* connection errors, timeouts, 5xx -> :class:`UpstreamUnavailable` (retry)
* 401/403 -> :class:`Unauthorized` (bad key, never retried)
* anything else unexpected -> :class:`InvalidResponse`
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from ...domain.errors import (
    InvalidResponse,
    Unauthorized,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from ..observability import Timer, get_logger
from ..proxy import ProxyEndpoint

logger = get_logger(__name__)

TAKEALOT_BASE_URL = "https://seller-api.takealot.com"
OFFERS_PATH = "/v2/offers"
MAX_PAGE_SIZE = 100
UPSTREAM_REQUEST_DURATION = "takealot_request_duration_seconds"


@dataclass(frozen=True)
class OfferPage:
    """One page of the ``/v2/offers`` listing."""

    page_number: int
    offers: list[dict[str, Any]] = field(default_factory=list)
    total_results: int | None = None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _total_from_payload(payload: dict[str, Any]) -> int | None:
    summary = payload.get("page_summary")
    candidates = []
    if isinstance(summary, dict):
        candidates.append(summary.get("total"))
    candidates.append(payload.get("total_results"))
    for value in candidates:
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


class TakealotApiClient:
    """Minimal client for the seller-API endpoints used by the sync."""

    def __init__(
        self,
        *,
        base_url: str = TAKEALOT_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(
        self,
        path: str,
        api_key: str,
        params: dict[str, Any],
        proxy: ProxyEndpoint | None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        via = proxy.label if proxy else "direct"
        try:
            with Timer(
                UPSTREAM_REQUEST_DURATION,
                {"egress": via},
                "Seller API request duration in seconds",
            ):
                response = self.session.get(
                    url,
                    params=params,
                    headers={"Authorization": f"Key {api_key}", "Accept": "application/json"},
                    proxies=proxy.as_requests_proxies() if proxy else None,
                    timeout=self.timeout,
                )
        except requests.Timeout as exc:
            raise UpstreamUnavailable(f"timed out after {self.timeout}s via {via}") from exc
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"request via {via} failed: {exc}") from exc

        status = response.status_code
        if status == 429:
            raise UpstreamRateLimited(
                f"rate limited via {via}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status in (401, 403):
            raise Unauthorized(f"Takealot rejected the API key (HTTP {status})")
        if status >= 500:
            raise UpstreamUnavailable(f"Takealot returned HTTP {status}", status=status)
        if status >= 400:
            raise InvalidResponse(f"Takealot returned HTTP {status}", status=status)

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponse("Takealot returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise InvalidResponse("Takealot returned an unexpected payload")
        return payload

    def fetch_offers_page(
        self,
        api_key: str,
        page_number: int,
        page_size: int = MAX_PAGE_SIZE,
        proxy: ProxyEndpoint | None = None,
    ) -> OfferPage:
        """Fetch one page of offers.

        Raises:
            InvalidResponse: If the payload has no ``offers`` list.
        """
        payload = self._get(
            OFFERS_PATH,
            api_key,
            {"page_number": page_number, "page_size": min(page_size, MAX_PAGE_SIZE)},
            proxy,
        )
        offers = payload.get("offers")
        if offers is None:
            offers = []
        if not isinstance(offers, list):
            raise InvalidResponse("'offers' is not a list")
        return OfferPage(
            page_number=page_number,
            offers=[offer for offer in offers if isinstance(offer, dict)],
            total_results=_total_from_payload(payload),
        )
