"""Call Executor — issues outbound provider calls under deadlines with retries.

Buffered calls:
  - each attempt bounded by the provider's per-attempt deadline
  - the whole retry loop bounded by the provider's end-to-end deadline; once it
    fires the in-flight attempt is cancelled and no further retries run
Streaming calls:
  - retries only until response headers arrive
  - afterwards the StreamHandle owns the connection, with no read deadline

Retry decisions come from the shared RetryPolicy (see ``app.gateway.retry``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import replace
from typing import TypeVar

import httpx

from app.core.metrics import UPSTREAM_ATTEMPTS, UPSTREAM_LATENCY
from app.gateway.errors import ErrorKind, GatewayError
from app.gateway.retry import attempts_left, calculate_backoff, should_retry
from app.gateway.types import ChatRequest, ChatResult, OutboundPayload, Provider, RetryPolicy
from app.gateway.vendor_adapters import BaseProviderAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ERROR_BODY_LIMIT = 64 * 1024


class StreamHandle:
    """An upstream response whose headers were received and whose body is still open.

    Owns the HTTP client and response until ``aclose`` is called.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, provider: Provider):
        self._client = client
        self._response = response
        self.provider = provider
        self.closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def is_event_stream(self) -> bool:
        return self._response.headers.get("content-type", "").startswith("text/event-stream")

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class CallExecutor:
    """Executes encoded payloads against providers.

    Args:
        policy: Retry policy shared by all providers
        transport: Optional httpx transport (tests inject ``httpx.MockTransport``)
    """

    def __init__(self, policy: RetryPolicy, transport: httpx.AsyncBaseTransport | None = None):
        self.policy = policy
        self._transport = transport

    async def execute(
        self,
        adapter: BaseProviderAdapter,
        request: ChatRequest,
        payload: OutboundPayload,
    ) -> ChatResult:
        """Buffered call with retries, bounded end-to-end by the provider's total deadline."""
        total = adapter.config.total_timeout_seconds
        start = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self._with_retry(adapter, request, payload, self._attempt_buffered),
                timeout=total,
            )
        except asyncio.TimeoutError:
            UPSTREAM_ATTEMPTS.labels(provider=adapter.provider.value, outcome="deadline").inc()
            logger.warning("%s call exceeded its %.0fs deadline", adapter.display_name, total)
            raise GatewayError(
                ErrorKind.UPSTREAM_TIMEOUT,
                f"The request to the {adapter.display_name} API took too long to complete (>{total:g} seconds).",
            )

        latency_ms = int((time.monotonic() - start) * 1000)
        UPSTREAM_LATENCY.labels(provider=adapter.provider.value, mode="buffered").observe(latency_ms / 1000)
        return replace(result, latency_ms=latency_ms)

    async def open_stream(
        self,
        adapter: BaseProviderAdapter,
        request: ChatRequest,
        payload: OutboundPayload,
    ) -> StreamHandle:
        """Open a streaming call, retrying until response headers arrive."""
        start = time.monotonic()
        handle = await self._with_retry(adapter, request, payload, self._attempt_stream)
        UPSTREAM_LATENCY.labels(provider=adapter.provider.value, mode="stream").observe(time.monotonic() - start)
        return handle

    async def _with_retry(
        self,
        adapter: BaseProviderAdapter,
        request: ChatRequest,
        payload: OutboundPayload,
        attempt_fn: Callable[[BaseProviderAdapter, ChatRequest, OutboundPayload], Awaitable[T]],
    ) -> T:
        provider = adapter.provider.value
        max_attempts = max(self.policy.max_attempts, 1)
        last_error: GatewayError | None = None

        for attempt in range(1, max_attempts + 1):
            delay = calculate_backoff(self.policy, attempt)
            if delay > 0:
                logger.info(
                    "Retrying %s request (attempt %d/%d) in %.1fs",
                    provider,
                    attempt,
                    max_attempts,
                    delay,
                    extra={"provider": provider, "attempt": attempt},
                )
                await asyncio.sleep(delay)

            try:
                outcome = await attempt_fn(adapter, request, payload)
            except GatewayError as e:
                UPSTREAM_ATTEMPTS.labels(provider=provider, outcome=e.kind.value).inc()
                if not should_retry(self.policy, e):
                    raise
                last_error = e
                logger.warning(
                    "%s attempt %d/%d failed (%s): %s; %d left",
                    adapter.display_name,
                    attempt,
                    max_attempts,
                    e.kind.value,
                    e.message,
                    attempts_left(self.policy, attempt),
                    extra={"provider": provider, "attempt": attempt},
                )
                continue

            UPSTREAM_ATTEMPTS.labels(provider=provider, outcome="success").inc()
            return outcome

        assert last_error is not None
        raise last_error

    async def _attempt_buffered(
        self,
        adapter: BaseProviderAdapter,
        request: ChatRequest,
        payload: OutboundPayload,
    ) -> ChatResult:
        start = time.monotonic()
        async with httpx.AsyncClient(timeout=payload.timeout_seconds, transport=self._transport) as client:
            try:
                resp = await asyncio.wait_for(
                    client.post(payload.url, json=dict(payload.body), headers=dict(payload.headers)),
                    timeout=payload.timeout_seconds,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                raise _timeout_error(adapter, payload)
            except httpx.TransportError as e:
                raise _unreachable_error(adapter, e)

        latency_ms = int((time.monotonic() - start) * 1000)

        if resp.status_code >= 400:
            logger.error("%s API error (%d): %s", adapter.display_name, resp.status_code, resp.text[:500])
            raise adapter.decode_error(resp.status_code, resp.text, request)

        try:
            data = resp.json()
        except ValueError:
            raise GatewayError(
                ErrorKind.UPSTREAM_STATUS,
                f"{adapter.display_name} returned a body that is not valid JSON",
                summary="Malformed upstream response",
                details=resp.text[:1000],
            )

        logger.info("%s response received in %dms", adapter.display_name, latency_ms)
        return adapter.decode(data, latency_ms)

    async def _attempt_stream(
        self,
        adapter: BaseProviderAdapter,
        request: ChatRequest,
        payload: OutboundPayload,
    ) -> StreamHandle:
        # No read deadline once the body is flowing; the header wait is bounded below
        timeout = httpx.Timeout(payload.timeout_seconds, read=None)
        client = httpx.AsyncClient(timeout=timeout, transport=self._transport)
        try:
            outbound = client.build_request(
                "POST",
                payload.url,
                json=dict(payload.body),
                headers=dict(payload.headers),
            )
            try:
                response = await asyncio.wait_for(
                    client.send(outbound, stream=True),
                    timeout=payload.timeout_seconds,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                raise _timeout_error(adapter, payload)
            except httpx.TransportError as e:
                raise _unreachable_error(adapter, e)

            if response.status_code >= 400:
                raw_body = await _read_error_body(response, payload.timeout_seconds)
                logger.error("%s stream API error (%d): %s", adapter.display_name, response.status_code, raw_body[:500])
                raise adapter.decode_error(response.status_code, raw_body, request)
        except BaseException:
            await client.aclose()
            raise

        logger.info("%s stream opened (%d)", adapter.display_name, response.status_code)
        return StreamHandle(client, response, adapter.provider)


async def _read_error_body(response: httpx.Response, timeout: float) -> str:
    try:
        raw = await asyncio.wait_for(response.aread(), timeout=timeout)
    except (asyncio.TimeoutError, httpx.HTTPError) as e:
        logger.debug("Could not read upstream error body: %s", e)
        raw = b""
    finally:
        await response.aclose()
    return raw[:_ERROR_BODY_LIMIT].decode("utf-8", errors="replace")


def _timeout_error(adapter: BaseProviderAdapter, payload: OutboundPayload) -> GatewayError:
    return GatewayError(
        ErrorKind.UPSTREAM_TIMEOUT,
        f"The {adapter.display_name} API did not respond within {payload.timeout_seconds:g} seconds. "
        "Try reducing max_tokens or simplifying your prompt.",
    )


def _unreachable_error(adapter: BaseProviderAdapter, exc: httpx.TransportError) -> GatewayError:
    return GatewayError(
        ErrorKind.UPSTREAM_UNREACHABLE,
        f"Could not reach the {adapter.display_name} API: {exc or type(exc).__name__}",
        details={"name": type(exc).__name__},
    )
