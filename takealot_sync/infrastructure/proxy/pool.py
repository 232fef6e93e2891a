"""Rotating proxy pool with per-endpoint health tracking.

Each endpoint moves through a small state machine::

    healthy --(failure_threshold consecutive failures)--> cooling_down
    cooling_down --(cooldown_seconds elapsed)--> healthy

Requests are spread over healthy endpoints in round-robin order. Rate-limited
responses count as failures of the endpoint that received them and cause the
request to be retried elsewhere.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, TypeVar

from ...domain.errors import (
    ProxyPoolExhausted,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from ..observability import (
    get_logger,
    record_proxy_cooldown,
    record_proxy_request,
)

logger = get_logger(__name__)

T = TypeVar("T")

DIRECT_LABEL = "direct"


class EndpointState(str, Enum):
    HEALTHY = "healthy"
    COOLING_DOWN = "cooling_down"


@dataclass(frozen=True)
class ProxyEndpoint:
    """One egress point."""

    label: str
    url: str
    country_code: str | None = None

    def as_requests_proxies(self) -> dict[str, str]:
        return {"http": self.url, "https": self.url}


@dataclass
class _EndpointHealth:
    endpoint: ProxyEndpoint
    state: EndpointState = EndpointState.HEALTHY
    consecutive_failures: int = 0
    cooldown_until: float | None = None
    successes: int = 0
    failures: int = 0
    last_error: str | None = None


class ProxyPool:
    """Thread-safe rotation over a set of :class:`ProxyEndpoint`.

    Args:
        endpoints: Initial endpoints.
        failure_threshold: Consecutive failures before an endpoint cools down.
        cooldown_seconds: How long a cooling endpoint is skipped.
        max_attempts: Attempts per request in :meth:`with_proxy`.
        backoff_base: Base delay in seconds; attempt ``n`` waits ``base * 2**n``.
        allow_direct: Fall back to direct egress when no endpoint is usable.
        clock: Monotonic time source (injectable for tests).
        sleep: Sleep function used between attempts.
    """

    def __init__(
        self,
        endpoints: Iterable[ProxyEndpoint] = (),
        *,
        failure_threshold: int = 3,
        cooldown_seconds: float = 300.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        allow_direct: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.allow_direct = allow_direct
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._health: list[_EndpointHealth] = []
        self._cursor = 0
        self.replace_endpoints(endpoints)

    def __len__(self) -> int:
        with self._lock:
            return len(self._health)

    def replace_endpoints(self, endpoints: Iterable[ProxyEndpoint]) -> None:
        """Swap the endpoint set, keeping health for labels that remain."""
        with self._lock:
            previous = {h.endpoint.label: h for h in self._health}
            fresh: list[_EndpointHealth] = []
            for endpoint in endpoints:
                health = previous.get(endpoint.label)
                if health is None:
                    health = _EndpointHealth(endpoint=endpoint)
                else:
                    health.endpoint = endpoint
                fresh.append(health)
            self._health = fresh
            self._cursor = 0

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _refresh(self, health: _EndpointHealth, now: float) -> None:
        if (
            health.state is EndpointState.COOLING_DOWN
            and health.cooldown_until is not None
            and now >= health.cooldown_until
        ):
            health.state = EndpointState.HEALTHY
            health.consecutive_failures = 0
            health.cooldown_until = None
            logger.info("Proxy %s is healthy again", health.endpoint.label)

    def acquire(self) -> ProxyEndpoint | None:
        """Pick the next healthy endpoint.

        Returns ``None`` for direct egress when the pool has nothing usable and
        ``allow_direct`` is set.

        Raises:
            ProxyPoolExhausted: If nothing is usable and direct egress is off.
        """
        with self._lock:
            now = self._clock()
            count = len(self._health)
            for offset in range(count):
                index = (self._cursor + offset) % count
                health = self._health[index]
                self._refresh(health, now)
                if health.state is EndpointState.HEALTHY:
                    self._cursor = (index + 1) % count
                    return health.endpoint
            if self.allow_direct:
                return None
            if count == 0:
                raise ProxyPoolExhausted("proxy pool is empty")
            raise ProxyPoolExhausted(f"all {count} proxies are cooling down")

    def _find(self, endpoint: ProxyEndpoint) -> _EndpointHealth | None:
        for health in self._health:
            if health.endpoint.label == endpoint.label:
                return health
        return None

    def record_success(self, endpoint: ProxyEndpoint | None) -> None:
        record_proxy_request(endpoint.label if endpoint else DIRECT_LABEL, "success")
        if endpoint is None:
            return
        with self._lock:
            health = self._find(endpoint)
            if health is not None:
                health.successes += 1
                health.consecutive_failures = 0

    def record_failure(self, endpoint: ProxyEndpoint | None, error: Exception) -> None:
        outcome = "rate_limited" if isinstance(error, UpstreamRateLimited) else "failed"
        record_proxy_request(endpoint.label if endpoint else DIRECT_LABEL, outcome)
        if endpoint is None:
            return
        with self._lock:
            health = self._find(endpoint)
            if health is None:
                return
            health.failures += 1
            health.consecutive_failures += 1
            health.last_error = str(error)
            if (
                health.state is EndpointState.HEALTHY
                and health.consecutive_failures >= self.failure_threshold
            ):
                health.state = EndpointState.COOLING_DOWN
                health.cooldown_until = self._clock() + self.cooldown_seconds
                record_proxy_cooldown(endpoint.label)
                logger.warning(
                    "Proxy %s cooling down for %ss after %d consecutive failures",
                    endpoint.label,
                    self.cooldown_seconds,
                    health.consecutive_failures,
                )

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    def with_proxy(self, request_fn: Callable[[ProxyEndpoint | None], T]) -> T:
        """Run ``request_fn`` through the pool, rotating on transient failures.

        ``request_fn`` receives the chosen endpoint (``None`` for direct
        egress). Rate limits and transport failures are retried on the next
        endpoint with exponential backoff; any other exception propagates.

        Raises:
            ProxyPoolExhausted: If no endpoint is usable.
            UpstreamUnavailable: After ``max_attempts`` failed attempts.
        """
        last_error: Exception | None = None
        for attempt in range(self.max_attempts):
            endpoint = self.acquire()
            try:
                result = request_fn(endpoint)
            except (UpstreamRateLimited, UpstreamUnavailable) as exc:
                self.record_failure(endpoint, exc)
                last_error = exc
                logger.debug(
                    "Attempt %d/%d via %s failed: %s",
                    attempt + 1,
                    self.max_attempts,
                    endpoint.label if endpoint else DIRECT_LABEL,
                    exc,
                )
                if attempt + 1 < self.max_attempts:
                    self._sleep(self.backoff_base * (2**attempt))
                continue
            self.record_success(endpoint)
            return result

        raise UpstreamUnavailable(
            f"request failed after {self.max_attempts} attempts: {last_error}"
        )

    def snapshot(self) -> list[dict[str, Any]]:
        """Per-endpoint state for status views."""
        with self._lock:
            now = self._clock()
            rows = []
            for health in self._health:
                self._refresh(health, now)
                remaining = (
                    max(0.0, health.cooldown_until - now)
                    if health.cooldown_until is not None
                    else 0.0
                )
                rows.append(
                    {
                        "label": health.endpoint.label,
                        "country_code": health.endpoint.country_code,
                        "state": health.state.value,
                        "consecutive_failures": health.consecutive_failures,
                        "cooldown_remaining_seconds": round(remaining, 1),
                        "successes": health.successes,
                        "failures": health.failures,
                        "last_error": health.last_error,
                    }
                )
            return rows
