"""Page fetching with bounded concurrency, throttling and proxy rotation.

:class:`PageFetcher` routes every ``/v2/offers`` request through the proxy
pool. :meth:`PageFetcher.fetch_pages` downloads a range of pages on a thread
pool but hands them back strictly in page order, so the caller can write
them one after another on a single connection.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator
from urllib.parse import urlparse

from ...domain.errors import DeadlineExceeded, SyncError
from ...infrastructure.http import OfferPage, TakealotApiClient
from ...infrastructure.observability import (
    current_log_context,
    get_logger,
    log_context,
    trace_span,
)
from ...infrastructure.proxy import ProxyPool

logger = get_logger(__name__)


class RateLimiter:
    """Host-level throttle shared by all fetch threads."""

    def __init__(
        self,
        requests_per_second: float | None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def _next_delay(self, host: str) -> float:
        last = self._last_seen.get(host)
        now = self._clock()
        if last is None or now - last >= self.min_interval:
            self._last_seen[host] = now
            return 0.0
        delay = self.min_interval - (now - last)
        self._last_seen[host] = now + delay
        return delay

    def wait(self, host: str) -> None:
        if self.min_interval <= 0:
            return
        with self._lock:
            delay = self._next_delay(host)
        if delay > 0:
            self._sleep(delay)


@dataclass
class PageOutcome:
    """Either a fetched page or the error that ended its retries."""

    page_number: int
    page: OfferPage | None = None
    error: SyncError | None = None

    @property
    def ok(self) -> bool:
        return self.page is not None


class PageFetcher:
    """Fetch offer pages through a :class:`ProxyPool`."""

    def __init__(
        self,
        client: TakealotApiClient,
        pool: ProxyPool,
        *,
        max_concurrent_pages: int = 4,
        throttle_per_second: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.pool = pool
        self.max_concurrent_pages = max(1, max_concurrent_pages)
        self.rate_limiter = RateLimiter(throttle_per_second)
        self._clock = clock
        self._host = urlparse(client.base_url).hostname or ""

    def fetch_page(self, api_key: str, page_number: int, page_size: int) -> OfferPage:
        """Fetch a single page, rotating proxies on transient failures."""
        with trace_span("takealot.fetch_page", kind="client", page_number=page_number):

            def _request(endpoint):
                self.rate_limiter.wait(self._host)
                return self.client.fetch_offers_page(
                    api_key, page_number, page_size, proxy=endpoint
                )

            page = self.pool.with_proxy(_request)
        logger.debug("Fetched page %d with %d offers", page_number, len(page.offers))
        return page

    def _remaining(self, deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - self._clock()

    def fetch_pages(
        self,
        api_key: str,
        page_numbers: Iterable[int],
        page_size: int,
        *,
        deadline: float | None = None,
    ) -> Iterator[PageOutcome]:
        """Yield outcomes for ``page_numbers`` in order.

        At most ``max_concurrent_pages`` requests are in flight. Closing the
        generator early stops further pages from being requested.

        Raises:
            DeadlineExceeded: If ``deadline`` (a clock value) passes while
                waiting for a page.
        """
        numbers = iter(page_numbers)
        pending: deque[tuple[int, Future[OfferPage]]] = deque()
        executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent_pages, thread_name_prefix="takealot-page"
        )
        ctx = current_log_context()

        def _worker(page_number: int) -> OfferPage:
            with log_context(**ctx):
                return self.fetch_page(api_key, page_number, page_size)

        def _fill() -> None:
            while len(pending) < self.max_concurrent_pages:
                page_number = next(numbers, None)
                if page_number is None:
                    return
                pending.append((page_number, executor.submit(_worker, page_number)))

        try:
            _fill()
            while pending:
                page_number, future = pending.popleft()
                remaining = self._remaining(deadline)
                if remaining is not None and remaining <= 0:
                    raise DeadlineExceeded(f"run deadline passed before page {page_number}")
                try:
                    page = future.result(timeout=remaining)
                except FutureTimeout as exc:
                    raise DeadlineExceeded(
                        f"run deadline passed while fetching page {page_number}"
                    ) from exc
                except SyncError as exc:
                    yield PageOutcome(page_number=page_number, error=exc)
                else:
                    yield PageOutcome(page_number=page_number, page=page)
                _fill()
        finally:
            for _, future in pending:
                future.cancel()
            executor.shutdown(wait=False, cancel_futures=True)
