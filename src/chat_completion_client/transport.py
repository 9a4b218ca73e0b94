from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
import structlog

from .errors import TransportFailureError
from .metrics import transport_retries_total
from .tracing import Trace

log = structlog.get_logger()

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def parse_retry_after(value: str | None) -> int | None:
    if not value:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return int(value)


class RetryingTransport:
    """
    HTTP transport with transparent retry on transient failures.

    Connection errors, timeouts, 408, 429 and 5xx responses are retried with
    capped exponential backoff. Once retries are exhausted the last response is
    handed to the caller as-is, so status handling stays with the caller.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        retries: int = 3,
        retry_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout_seconds: float = 120.0,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        trace: Trace | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._retries = max(0, int(retries))
        self._retry_delay = max(0.0, float(retry_delay))
        self._max_delay = max(self._retry_delay, float(max_delay))
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._trace = trace or Trace()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _compute_backoff(self, attempt_index: int) -> float:
        # attempt_index: 0-based retry count (0 for first retry)
        base = float(min(self._max_delay, self._retry_delay * (2**attempt_index)))
        jitter = float(random.uniform(0.0, min(0.25, base * 0.1))) if base > 0 else 0.0
        return base + jitter

    async def _backoff(self, attempt_index: int, reason: str, retry_after: int | None = None) -> None:
        if retry_after is not None:
            delay = min(float(retry_after), self._max_delay)
        else:
            delay = self._compute_backoff(attempt_index)
        transport_retries_total.labels(reason=reason).inc()
        log.info("transport_retry", attempt=attempt_index + 1, reason=reason, delay_seconds=round(delay, 3))
        self._trace.item_value("retry", f"{reason}, waiting {delay:.2f}s")
        await self._sleep(delay)

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> AsyncIterator[httpx.Response]:
        attempts = self._retries + 1
        resp: httpx.Response | None = None
        for attempt in range(attempts):
            last_attempt = attempt >= attempts - 1
            request = self._client.build_request(method, url, headers=headers, content=content)
            try:
                resp = await self._client.send(request, stream=True)
            except httpx.TimeoutException as e:
                if last_attempt:
                    raise TransportFailureError("Upstream request timed out.") from e
                await self._backoff(attempt, "timeout")
                continue
            except httpx.TransportError as e:
                if last_attempt:
                    raise TransportFailureError("Upstream request failed.") from e
                await self._backoff(attempt, "transport_error")
                continue

            if resp.status_code in RETRYABLE_STATUS_CODES and not last_attempt:
                retry_after = parse_retry_after(resp.headers.get("retry-after"))
                await resp.aclose()
                await self._backoff(attempt, f"status_{resp.status_code}", retry_after)
                continue
            break

        if resp is None:  # pragma: no cover
            raise TransportFailureError("Upstream request failed after retries.")
        try:
            yield resp
        finally:
            await resp.aclose()


def create_fetch(
    *,
    retries: int = 3,
    retry_delay: float = 1.0,
    max_delay: float = 30.0,
    timeout_seconds: float = 120.0,
    client: httpx.AsyncClient | None = None,
    sleeper: Callable[[float], Awaitable[None]] | None = None,
    trace: Trace | None = None,
) -> RetryingTransport:
    return RetryingTransport(
        client=client,
        retries=retries,
        retry_delay=retry_delay,
        max_delay=max_delay,
        timeout_seconds=timeout_seconds,
        sleeper=sleeper,
        trace=trace,
    )
