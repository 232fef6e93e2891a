"""Loader for the Webshare proxy list."""

from __future__ import annotations

from typing import Any, Iterable

import requests

from ...domain.errors import Unauthorized, UpstreamUnavailable
from ..observability import get_logger, trace_span
from .pool import ProxyEndpoint

logger = get_logger(__name__)

WEBSHARE_BASE_URL = "https://proxy.webshare.io/api/v2"
PROXY_LIST_PATH = "/proxy/list/"
DEFAULT_PAGE_SIZE = 100
MAX_PAGES = 50


class WebshareClient:
    """Fetch proxy credentials from the Webshare API.

    Args:
        token: Webshare API token (sent as ``Authorization: Token <token>``).
        base_url: API base, overridable for tests.
        session: Optional :class:`requests.Session`.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = WEBSHARE_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not token:
            raise ValueError("a Webshare API token is required")
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get_page(self, page: int, page_size: int) -> dict[str, Any]:
        try:
            response = self.session.get(
                f"{self.base_url}{PROXY_LIST_PATH}",
                params={"mode": "direct", "page": page, "page_size": page_size},
                headers={"Authorization": f"Token {self.token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"Webshare request failed: {exc}") from exc
        if response.status_code in (401, 403):
            raise Unauthorized("Webshare rejected the API token")
        if response.status_code >= 400:
            raise UpstreamUnavailable(
                f"Webshare returned HTTP {response.status_code}",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Webshare returned invalid JSON") from exc

    def fetch_raw(self, page_size: int = DEFAULT_PAGE_SIZE) -> list[dict[str, Any]]:
        """Return every proxy record, following ``next`` links."""
        records: list[dict[str, Any]] = []
        with trace_span("webshare.list_proxies", kind="client"):
            for page in range(1, MAX_PAGES + 1):
                payload = self._get_page(page, page_size)
                results = payload.get("results") or []
                records.extend(results)
                logger.debug(
                    "Webshare page %d: %d proxies (%d total)", page, len(results), len(records)
                )
                if not payload.get("next") or not results:
                    break
        return records

    def list_proxies(
        self,
        *,
        countries: Iterable[str] | None = None,
        prefer_country: str | None = "ZA",
    ) -> list[ProxyEndpoint]:
        """Return usable proxies as pool endpoints.

        Invalid or incomplete records are dropped. ``countries`` restricts the
        result; otherwise proxies in ``prefer_country`` are used when any exist.
        """
        endpoints = [
            endpoint
            for endpoint in (to_endpoint(record) for record in self.fetch_raw())
            if endpoint is not None
        ]
        if countries is not None:
            wanted = {c.upper() for c in countries}
            endpoints = [e for e in endpoints if (e.country_code or "").upper() in wanted]
        elif prefer_country:
            preferred = [
                e for e in endpoints if (e.country_code or "").upper() == prefer_country
            ]
            if preferred:
                endpoints = preferred
        logger.info("Loaded %d proxies from Webshare", len(endpoints))
        return endpoints


def to_endpoint(record: dict[str, Any]) -> ProxyEndpoint | None:
    """Convert a Webshare result into an endpoint, or None if unusable."""
    if record.get("valid") is False:
        return None
    address = record.get("proxy_address")
    port = record.get("port")
    username = record.get("username")
    password = record.get("password")
    if not (address and port and username and password):
        return None
    return ProxyEndpoint(
        label=str(record.get("id") or f"{address}:{port}"),
        url=f"http://{username}:{password}@{address}:{port}",
        country_code=record.get("country_code") or None,
    )
