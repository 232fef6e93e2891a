"""Tests for the rotating proxy pool state machine."""

import pytest

from takealot_sync.domain.errors import (
    InvalidResponse,
    ProxyPoolExhausted,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from takealot_sync.infrastructure.observability.metrics import PROXY_COOLDOWNS, get_registry
from takealot_sync.infrastructure.proxy import EndpointState, ProxyEndpoint, ProxyPool


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _endpoints(count: int) -> list[ProxyEndpoint]:
    return [ProxyEndpoint(f"p{i}", f"http://u:p@10.0.0.{i}:80") for i in range(count)]


def _pool(count: int = 2, **kwargs) -> ProxyPool:
    kwargs.setdefault("sleep", lambda _s: None)
    return ProxyPool(_endpoints(count), **kwargs)


def test_acquire_rotates_round_robin() -> None:
    pool = _pool(3)
    labels = [pool.acquire().label for _ in range(4)]
    assert labels == ["p0", "p1", "p2", "p0"]


def test_empty_pool_raises_without_direct() -> None:
    pool = ProxyPool([])
    with pytest.raises(ProxyPoolExhausted, match="proxy pool is empty"):
        pool.acquire()


def test_empty_pool_allows_direct_egress() -> None:
    pool = ProxyPool([], allow_direct=True)
    assert pool.acquire() is None


def test_endpoint_cools_down_after_threshold_and_recovers() -> None:
    clock = FakeClock()
    pool = _pool(1, failure_threshold=2, cooldown_seconds=60, clock=clock)
    endpoint = pool.acquire()

    pool.record_failure(endpoint, UpstreamUnavailable("boom"))
    assert pool.snapshot()[0]["state"] == EndpointState.HEALTHY.value
    pool.record_failure(endpoint, UpstreamUnavailable("boom"))

    row = pool.snapshot()[0]
    assert row["state"] == "cooling_down"
    assert row["cooldown_remaining_seconds"] == 60.0
    assert get_registry().counter(PROXY_COOLDOWNS).get({"endpoint": "p0"}) == 1
    with pytest.raises(ProxyPoolExhausted, match="all 1 proxies are cooling down"):
        pool.acquire()

    clock.now += 61
    assert pool.acquire() == endpoint
    assert pool.snapshot()[0]["consecutive_failures"] == 0


def test_success_resets_consecutive_failures() -> None:
    pool = _pool(1, failure_threshold=2)
    endpoint = pool.acquire()
    pool.record_failure(endpoint, UpstreamUnavailable("boom"))
    pool.record_success(endpoint)
    pool.record_failure(endpoint, UpstreamUnavailable("boom"))
    row = pool.snapshot()[0]
    assert row["state"] == "healthy"
    assert row["successes"] == 1
    assert row["failures"] == 2


def test_with_proxy_rotates_on_rate_limit_and_backs_off() -> None:
    sleeps: list[float] = []
    pool = _pool(2, max_attempts=3, backoff_base=0.5, sleep=sleeps.append)
    seen: list[str] = []

    def request(endpoint):
        seen.append(endpoint.label)
        if endpoint.label == "p0":
            raise UpstreamRateLimited("429")
        return "ok"

    assert pool.with_proxy(request) == "ok"
    assert seen == ["p0", "p1"]
    assert sleeps == [0.5]


def test_with_proxy_gives_up_after_max_attempts() -> None:
    sleeps: list[float] = []
    pool = _pool(3, max_attempts=3, backoff_base=1.0, failure_threshold=5, sleep=sleeps.append)

    def request(_endpoint):
        raise UpstreamUnavailable("timed out")

    with pytest.raises(UpstreamUnavailable, match="request failed after 3 attempts"):
        pool.with_proxy(request)
    assert sleeps == [1.0, 2.0]


def test_with_proxy_does_not_retry_other_errors() -> None:
    pool = _pool(2)
    calls = []

    def request(endpoint):
        calls.append(endpoint.label)
        raise InvalidResponse("garbage")

    with pytest.raises(InvalidResponse):
        pool.with_proxy(request)
    assert calls == ["p0"]


def test_with_proxy_surfaces_exhaustion_once_all_cool_down() -> None:
    pool = _pool(1, failure_threshold=1, max_attempts=3)

    def request(_endpoint):
        raise UpstreamRateLimited("429")

    with pytest.raises(ProxyPoolExhausted):
        pool.with_proxy(request)


def test_replace_endpoints_keeps_health_for_known_labels() -> None:
    pool = _pool(2, failure_threshold=1)
    pool.record_failure(pool.acquire(), UpstreamUnavailable("down"))

    pool.replace_endpoints(_endpoints(3))

    states = {row["label"]: row["state"] for row in pool.snapshot()}
    assert states == {"p0": "cooling_down", "p1": "healthy", "p2": "healthy"}
    assert len(pool) == 3


def test_as_requests_proxies_maps_both_schemes() -> None:
    endpoint = ProxyEndpoint("p", "http://u:p@h:1")
    assert endpoint.as_requests_proxies() == {"http": "http://u:p@h:1", "https": "http://u:p@h:1"}
