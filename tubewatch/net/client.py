import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional, Union

import httpx

from tubewatch.metrics.registry import fetch_requests_total, fetch_retries_total, fetch_rate_limited_total

log = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Upgrade-Insecure-Requests": "1",
}

NON_RETRYABLE_STATUSES = (403, 404)
DEFAULT_RETRY_AFTER_SEC = 60
BACKOFF_BASE_SEC = 1.0
BACKOFF_MAX_SEC = 30.0

Sleeper = Callable[[float], Awaitable[None]]


class FetchError(Exception):
    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status not in NON_RETRYABLE_STATUSES


def backoff_delay(attempt: int) -> float:
    return min(BACKOFF_BASE_SEC * 2 ** attempt, BACKOFF_MAX_SEC)


def parse_retry_after(value: Optional[str]) -> float:
    if not value:
        return DEFAULT_RETRY_AFTER_SEC
    try:
        return max(0.0, float(value))
    except ValueError:
        return DEFAULT_RETRY_AFTER_SEC


class FetchClient:
    """Concurrency-bounded, throttled and retrying GET client.

    Every instance owns its admission gate and its last-dispatch timestamp, so two
    clients never throttle each other.
    """

    def __init__(
        self,
        *,
        min_delay: float = 0.1,
        max_delay: float = 0.5,
        max_concurrent: int = 3,
        max_retries: int = 3,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_delay < min_delay:
            raise ValueError("max_delay must be >= min_delay")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_retries = max(1, max_retries)
        self._gate = asyncio.Semaphore(max_concurrent)
        self._sleep = sleep
        self._clock = clock
        self._last_dispatch: Optional[float] = None
        self._http = httpx.AsyncClient(
            timeout=timeout,
            headers={**DEFAULT_HEADERS, **(headers or {})},
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _throttle(self) -> None:
        delay = random.uniform(self.min_delay, self.max_delay)
        now = self._clock()
        wait = 0.0
        if self._last_dispatch is not None:
            elapsed = now - self._last_dispatch
            if elapsed < delay:
                wait = delay - elapsed
        # reserve the slot before sleeping so concurrent callers queue behind it
        self._last_dispatch = now + wait
        if wait > 0:
            await self._sleep(wait)

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        async with self._gate:
            attempt = 0
            last_error: Optional[FetchError] = None
            while attempt < self.max_retries:
                await self._throttle()
                try:
                    response = await self._http.get(url, headers=headers)
                except httpx.TimeoutException:
                    last_error = FetchError(url, "Timeout")
                except httpx.HTTPError as e:
                    last_error = FetchError(url, f"{type(e).__name__}: {e}")
                else:
                    if response.status_code == 429:
                        wait = parse_retry_after(response.headers.get("Retry-After"))
                        fetch_rate_limited_total.inc()
                        log.warning("Rate limited on %s; waiting %.0fs", url, wait)
                        await self._sleep(wait)
                        continue
                    if response.is_success:
                        fetch_requests_total.labels(outcome="ok").inc()
                        return response.text
                    last_error = FetchError(
                        url, f"HTTP {response.status_code}: {response.reason_phrase}", status=response.status_code
                    )
                    if not last_error.retryable:
                        fetch_requests_total.labels(outcome="rejected").inc()
                        raise last_error
                attempt += 1
                if attempt < self.max_retries:
                    delay = backoff_delay(attempt - 1)
                    fetch_retries_total.inc()
                    log.warning("Attempt %d for %s failed: %s; retrying in %.0fs", attempt, url, last_error, delay)
                    await self._sleep(delay)
            fetch_requests_total.labels(outcome="failed").inc()
            raise last_error or FetchError(url, "Request failed")

    async def _fetch_outcome(self, url: str) -> Union[str, FetchError]:
        try:
            return await self.fetch(url)
        except FetchError as e:
            return e

    async def fetch_many(self, urls: Iterable[str]) -> Dict[str, Union[str, FetchError]]:
        unique = list(dict.fromkeys(urls))
        outcomes = await asyncio.gather(*(self._fetch_outcome(u) for u in unique))
        return dict(zip(unique, outcomes))
