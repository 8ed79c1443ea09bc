import asyncio
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from loguru import logger

from asset_crawler.errors import (
    Cancelled,
    CrawlError,
    HTTPClientError,
    HTTPServerError,
    InvalidInput,
    NetworkTransient,
    ResourceTooLarge,
    Timeout,
)
from asset_crawler.fetching.rate_limiter import RateLimiter
from asset_crawler.models import JobConfig
from asset_crawler.monitoring.metrics_server import REQUEST_COUNT, REQUEST_LATENCY
from asset_crawler.utils.url_utils import is_http_url


class ByteSink(Protocol):
    async def reset(self) -> None: ...

    async def write(self, chunk: bytes) -> None: ...


class BufferSink:
    """In-memory sink used for the seed page."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    async def reset(self) -> None:
        self._buffer.clear()

    async def write(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


@dataclass
class FetchResult:
    url: str
    final_url: str
    status_code: int
    content_type: str
    size: int
    content: bytes = b""
    attempts: int = 1


class Fetcher:
    """
    Single-URL GET with a wall-clock deadline per attempt, retry with
    exponential backoff and a response size ceiling.

    Every attempt passes through the job's rate limiter first. The body is
    streamed into a sink; the sink is reset at the start of each attempt so a
    retried transfer never leaves bytes from the failed one behind.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        max_response_bytes: int = 50_000_000,
        user_agent: str = "AssetCrawler/1.0",
        cancel_event: Optional[asyncio.Event] = None,
        log=logger,
    ) -> None:
        self.client = client
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.max_response_bytes = max_response_bytes
        self.user_agent = user_agent
        self.cancel_event = cancel_event
        self.log = log

    @classmethod
    def from_config(
        cls,
        client: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        config: JobConfig,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        log=logger,
    ) -> "Fetcher":
        return cls(
            client,
            rate_limiter,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            backoff_base=config.backoff_base_seconds,
            backoff_max=config.backoff_max_seconds,
            max_response_bytes=config.max_response_bytes,
            user_agent=config.user_agent,
            cancel_event=cancel_event,
            log=log,
        )

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))

    # --------------------------
    #  Public entry point
    # --------------------------
    async def fetch(self, url: str, sink: Optional[ByteSink] = None) -> FetchResult:
        if not is_http_url(url):
            raise InvalidInput(f"Not a fetchable http(s) URL: {url!r}")

        buffer = BufferSink() if sink is None else None
        target = buffer if buffer is not None else sink

        for attempt in range(1, self.max_retries + 1):
            self._check_cancelled()
            await self.rate_limiter.acquire()

            start = time.perf_counter()
            try:
                result = await self._attempt_with_deadline(url, target)
            except CrawlError as exc:
                REQUEST_LATENCY.observe(time.perf_counter() - start)
                REQUEST_COUNT.labels(outcome=exc.kind).inc()
                exc.attempts = attempt
                if not exc.retryable or attempt >= self.max_retries:
                    raise
                delay = self.backoff_delay(attempt)
                self.log.warning(
                    f"{exc.kind} fetching {url} (attempt {attempt}/{self.max_retries}): {exc}; "
                    f"retrying in {delay:.2f}s"
                )
            else:
                REQUEST_LATENCY.observe(time.perf_counter() - start)
                REQUEST_COUNT.labels(outcome="ok").inc()
                result.attempts = attempt
                if buffer is not None:
                    result.content = buffer.getvalue()
                return result

            await self._backoff(delay)

        # max_retries >= 1, the loop always returns or raises
        raise AssertionError("unreachable")

    # --------------------------
    #  One attempt
    # --------------------------
    async def _attempt_with_deadline(self, url: str, sink: ByteSink) -> FetchResult:
        attempt_task = asyncio.ensure_future(self._attempt(url, sink))
        waiters = {attempt_task}
        cancel_task = None
        if self.cancel_event is not None:
            cancel_task = asyncio.ensure_future(self.cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            if not attempt_task.done():
                attempt_task.cancel()
                await asyncio.gather(attempt_task, return_exceptions=True)

        if self.cancel_event is not None and self.cancel_event.is_set():
            if attempt_task.done() and not attempt_task.cancelled():
                attempt_task.exception()
            raise Cancelled(f"transfer of {url} aborted")

        if attempt_task in done:
            return attempt_task.result()

        raise Timeout(f"no complete response from {url} within {self.timeout:g}s")

    async def _attempt(self, url: str, sink: ByteSink) -> FetchResult:
        headers = {"User-Agent": self.user_agent, "Accept": "*/*"}
        try:
            async with self.client.stream("GET", url, headers=headers) as response:
                status_code = response.status_code
                content_type = (response.headers.get("Content-Type") or "").lower()

                if status_code >= 500:
                    raise HTTPServerError(f"HTTP {status_code}", status_code=status_code)
                if status_code >= 400:
                    raise HTTPClientError(f"HTTP {status_code}", status_code=status_code)

                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > self.max_response_bytes:
                    raise ResourceTooLarge(
                        f"declared size {declared} exceeds {self.max_response_bytes} bytes",
                        status_code=status_code,
                    )

                await sink.reset()
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > self.max_response_bytes:
                        raise ResourceTooLarge(
                            f"body exceeds {self.max_response_bytes} bytes",
                            status_code=status_code,
                        )
                    await sink.write(chunk)

                return FetchResult(
                    url=url,
                    final_url=str(response.url),
                    status_code=status_code,
                    content_type=content_type,
                    size=size,
                )
        except httpx.TimeoutException as exc:
            raise Timeout(f"{type(exc).__name__}: {exc}") from exc
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise InvalidInput(f"Malformed URL {url!r}: {exc}") from exc
        except httpx.TooManyRedirects as exc:
            raise HTTPClientError(f"Too many redirects: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NetworkTransient(f"{type(exc).__name__}: {exc}") from exc

    # --------------------------
    #  Cancellation helpers
    # --------------------------
    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled("job cancelled before fetch")

    async def _backoff(self, delay: float) -> None:
        self._check_cancelled()
        if self.cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise Cancelled("job cancelled during backoff")
