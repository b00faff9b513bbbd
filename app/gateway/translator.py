"""Response Translator — renders results and errors into the caller-facing envelopes."""

from __future__ import annotations

from typing import Any

from app.gateway.errors import GatewayError
from app.gateway.types import ChatResult

NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
STREAM_MEDIA_TYPE = "text/event-stream"

_THINK_TAG = "<think>"


def reasoning_method(text: str) -> str:
    return "chain_of_thought" if _THINK_TAG in text else "direct"


def search_envelope(result: ChatResult) -> dict[str, Any]:
    """``{answer, sources}`` for the search route."""
    return {
        "answer": result.text,
        "sources": [c.to_dict() for c in result.citations],
    }


def chat_envelope(result: ChatResult) -> dict[str, Any]:
    """Raw provider body plus a ``performance`` block."""
    body = dict(result.raw)
    body["performance"] = {
        "response_time_ms": result.latency_ms,
        "reasoning_method": reasoning_method(result.text),
    }
    return body


def error_envelope(err: GatewayError) -> dict[str, Any]:
    body: dict[str, Any] = {"error": err.summary, "message": err.message}
    if err.details is not None:
        body["details"] = err.details
    return body
