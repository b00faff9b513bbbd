"""Tests for the HTTP surface: content routes, CORS preflight, method gating, tools."""

import json

import httpx
import pytest
from httpx import AsyncClient
from starlette.requests import Request

from app.api.chat import _stream
from app.gateway.stream_relay import RelayState

MESSAGES = [{"role": "user", "content": "Hello"}]

PATHS = [
    "/api/chat/groq",
    "/api/stream/fireworks",
    "/api/perplexity",
    "/api/proxy",
    "/api/streaming",
    "/api/tools",
]


def _completion(text="Hi!", **extra) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "chatcmpl-1",
            "model": "test-model",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
            **extra,
        },
    )


def _sse(*payloads: str) -> httpx.Response:
    body = "".join(f"data: {p}\n\n" for p in payloads).encode()
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)


# --- Method gating ---


@pytest.mark.asyncio
@pytest.mark.parametrize("path", PATHS)
async def test_options_preflight(client: AsyncClient, path: str):
    response = await client.options(path)
    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
    assert response.headers["access-control-allow-headers"] == "Content-Type, Authorization"
    assert response.headers["access-control-max-age"] == "86400"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", PATHS)
async def test_get_not_allowed(client: AsyncClient, path: str):
    response = await client.get(path)
    assert response.status_code == 405
    assert response.json() == {"error": "Method Not Allowed"}
    assert response.headers["allow"] == "POST"


@pytest.mark.asyncio
async def test_put_not_allowed(client: AsyncClient):
    response = await client.put("/api/chat/openai", json={"messages": MESSAGES})
    assert response.status_code == 405


@pytest.mark.asyncio
async def test_invalid_json(client: AsyncClient, upstream):
    response = await client.post(
        "/api/chat/groq",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Invalid JSON in request body"
    assert data["message"]
    assert upstream.calls == 0


# --- Buffered chat ---


@pytest.mark.asyncio
async def test_chat_success(client: AsyncClient, upstream):
    upstream.queue(_completion("Hi!"))

    response = await client.post("/api/chat/openai", json={"messages": MESSAGES, "max_tokens": 99999})

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    data = response.json()
    assert data["choices"][0]["message"]["content"] == "Hi!"
    assert data["performance"]["reasoning_method"] == "direct"
    assert isinstance(data["performance"]["response_time_ms"], int)
    assert upstream.sent_json()["max_tokens"] == 4096


@pytest.mark.asyncio
async def test_chat_empty_messages(client: AsyncClient, upstream):
    response = await client.post("/api/chat/groq", json={"messages": []})
    assert response.status_code == 400
    assert response.json()["error"] == "Bad request"
    assert upstream.calls == 0


@pytest.mark.asyncio
async def test_chat_unknown_provider(client: AsyncClient):
    response = await client.post("/api/chat/mistral", json={"messages": MESSAGES})
    assert response.status_code == 400
    assert "mistral" in response.json()["message"]


@pytest.mark.asyncio
async def test_chat_upstream_auth_failure(client: AsyncClient, upstream):
    upstream.queue(httpx.Response(401, json={"error": {"message": "Invalid API key"}}))

    response = await client.post("/api/chat/groq", json={"messages": MESSAGES})

    assert response.status_code == 401
    assert response.json() == {
        "error": "Authentication failed",
        "message": "Authentication failed. Please check your GROQ_API_KEY.",
    }
    assert upstream.calls == 1


@pytest.mark.asyncio
async def test_chat_upstream_error_details(client: AsyncClient, upstream):
    upstream.queue(httpx.Response(400, json={"error": {"message": "context too long"}}))

    response = await client.post("/api/chat/fireworks", json={"messages": MESSAGES})

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Fireworks API error: 400"
    assert data["message"] == "context too long"
    assert "details" in data


@pytest.mark.asyncio
async def test_chat_gateway_timeout_after_retries(client: AsyncClient, upstream):
    upstream.queue(*(httpx.Response(504, text="upstream timeout") for _ in range(3)))

    response = await client.post("/api/chat/groq", json={"messages": MESSAGES})

    assert response.status_code == 504
    assert upstream.calls == 3


@pytest.mark.asyncio
async def test_legacy_proxy_routes_to_groq(client: AsyncClient, upstream):
    upstream.queue(_completion("from groq"))

    response = await client.post("/api/proxy", json={"messages": MESSAGES})

    assert response.status_code == 200
    assert upstream.requests[0].url.host == "api.groq.com"
    assert upstream.sent_json()["model"] == "deepseek-r1-distill-qwen-32b"


# --- Search ---


@pytest.mark.asyncio
async def test_search_with_query(client: AsyncClient, upstream):
    upstream.queue(_completion("Sunny", citations=["https://weather.example"]))

    response = await client.post("/api/perplexity", json={"query": "weather today"})

    assert response.status_code == 200
    assert response.json() == {
        "answer": "Sunny",
        "sources": [{"title": "Source", "url": "https://weather.example", "snippet": ""}],
    }
    assert upstream.requests[0].url.host == "api.perplexity.ai"


@pytest.mark.asyncio
async def test_search_missing_query(client: AsyncClient, upstream):
    response = await client.post("/api/perplexity", json={})
    assert response.status_code == 400
    assert response.json()["message"] == "Missing required parameter: query"
    assert upstream.calls == 0


# --- Streaming ---


@pytest.mark.asyncio
async def test_stream_sse_passthrough(client: AsyncClient, upstream):
    chunk = '{"choices":[{"delta":{"content":"Hi"}}]}'
    upstream.queue(_sse(chunk, "[DONE]"))

    response = await client.post("/api/stream/openai", json={"messages": MESSAGES})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.text == f"data: {chunk}\n\ndata: [DONE]\n\n"
    assert upstream.sent_json()["stream"] is True


@pytest.mark.asyncio
async def test_legacy_streaming_routes_to_fireworks(client: AsyncClient, upstream):
    upstream.queue(httpx.Response(200, content=b"plain text"))

    response = await client.post("/api/streaming", json={"messages": MESSAGES})

    assert response.text == 'data: "plain text"\n\ndata: [DONE]\n\n'
    assert upstream.requests[0].url.host == "api.fireworks.ai"


@pytest.mark.asyncio
async def test_stream_setup_error_is_json(client: AsyncClient, upstream):
    upstream.queue(httpx.Response(429, text="slow down"))

    response = await client.post("/api/stream/groq", json={"messages": MESSAGES})

    assert response.status_code == 429
    assert response.json()["error"] == "Rate limit exceeded"


@pytest.mark.asyncio
async def test_stream_closed_when_body_never_iterated(gateway, upstream, monkeypatch):
    upstream.queue(_sse('{"choices":[{"delta":{"content":"Hi"}}]}'))
    relays = []
    open_stream = gateway.open_stream

    async def recording_open_stream(body, provider):
        relay = await open_stream(body, provider)
        relays.append(relay)
        return relay

    monkeypatch.setattr(gateway, "open_stream", recording_open_stream)

    async def receive():
        return {"type": "http.request", "body": json.dumps({"messages": MESSAGES}).encode(), "more_body": False}

    request = Request({"type": "http", "method": "POST", "path": "/api/stream/groq", "headers": []}, receive)
    response = await _stream(gateway, request, "groq")

    # Client left before the first chunk: only the response cleanup runs
    await response.background()

    assert relays[0].handle.closed
    assert relays[0].state == RelayState.CLOSED


@pytest.mark.asyncio
async def test_stream_not_supported_for_perplexity(client: AsyncClient, upstream):
    response = await client.post("/api/stream/perplexity", json={"messages": MESSAGES})
    assert response.status_code == 400
    assert upstream.calls == 0


# --- Tools, health, metrics ---


@pytest.mark.asyncio
async def test_tools_catalog(client: AsyncClient):
    response = await client.post("/api/tools", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert [t["type"] for t in data["tools"]] == ["web_search_preview", "function", "function"]
    assert data["tools"][1]["function"]["name"] == "calculate_expression"
    assert data["tools"][2]["function"]["parameters"]["required"] == ["location"]


@pytest.mark.asyncio
async def test_tools_accepts_empty_body(client: AsyncClient):
    response = await client.post("/api/tools")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["providers"] == {"openai": True, "groq": True, "fireworks": True, "perplexity": True}


@pytest.mark.asyncio
async def test_metrics_exposed(client: AsyncClient, upstream):
    upstream.queue(_completion())
    await client.post("/api/chat/groq", json={"messages": MESSAGES})

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "upstream_attempts_total" in response.text
    assert 'path="/api/chat/{provider}"' in response.text
