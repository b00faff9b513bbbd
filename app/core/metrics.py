"""Prometheus metrics for the gateway."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("app", "LLM playground gateway info")
APP_INFO.info({"version": "1.0.0", "name": "llm_playground_gateway"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds (time to response headers for streams)",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 180],
)

UPSTREAM_ATTEMPTS = Counter(
    "upstream_attempts_total",
    "Outbound provider attempts by outcome",
    ["provider", "outcome"],
)

UPSTREAM_LATENCY = Histogram(
    "upstream_latency_seconds",
    "Latency of successful outbound provider calls",
    ["provider", "mode"],
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 180],
)

STREAM_RELAYS = Counter(
    "stream_relays_total",
    "Completed stream relays by terminal state",
    ["provider", "result"],
)


# --- Middleware ---

# Collapse the provider segment to keep label cardinality bounded
_PATH_PREFIXES = ("/api/chat/", "/api/stream/")


def _normalize_path(path: str) -> str:
    """Replace the provider segment in content paths with {provider}."""
    for prefix in _PATH_PREFIXES:
        if path.startswith(prefix):
            return f"{prefix}{{provider}}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
