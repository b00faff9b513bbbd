"""Chat API — buffered, search and streaming routes over the ChatGateway.

Errors raised here or in the gateway are GatewayErrors; the app-level handler
renders them as the uniform JSON error envelope.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from app.gateway.errors import ErrorKind, GatewayError
from app.gateway.gateway import ChatGateway
from app.gateway.translator import NO_CACHE_HEADERS, STREAM_HEADERS, STREAM_MEDIA_TYPE
from app.gateway.types import CallMode, Provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}


def get_gateway(request: Request) -> ChatGateway:
    return request.app.state.gateway


async def read_json_body(request: Request, allow_empty: bool = False) -> Any:
    """Parse the request body as JSON, or fail with a 400 envelope."""
    raw = await request.body()
    if allow_empty and not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.info("Rejected malformed JSON body on %s: %s", request.url.path, e)
        raise GatewayError(ErrorKind.BAD_REQUEST, str(e), summary="Invalid JSON in request body")


async def preflight() -> Response:
    """Answer a CORS preflight for any content route."""
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


# --- Buffered ---


async def _complete(gateway: ChatGateway, request: Request, provider: str | Provider, mode: CallMode) -> JSONResponse:
    body = await read_json_body(request)
    envelope = await gateway.complete(body, provider, mode)
    return JSONResponse(envelope, headers=NO_CACHE_HEADERS)


@router.post("/chat/{provider}")
async def chat(provider: str, request: Request, gateway: ChatGateway = Depends(get_gateway)):
    """General chat against ``provider``: raw provider body plus a ``performance`` block."""
    return await _complete(gateway, request, provider, CallMode.CHAT)


@router.post("/perplexity")
async def search(request: Request, gateway: ChatGateway = Depends(get_gateway)):
    """Search-augmented answer with sources: ``{answer, sources}``.

    Accepts either ``messages`` or a bare ``query`` string.
    """
    return await _complete(gateway, request, Provider.PERPLEXITY, CallMode.SEARCH)


@router.post("/proxy")
async def legacy_proxy(request: Request, gateway: ChatGateway = Depends(get_gateway)):
    """Legacy alias of ``/api/chat/groq``."""
    return await _complete(gateway, request, Provider.GROQ, CallMode.CHAT)


# --- Streaming ---


async def _stream(gateway: ChatGateway, request: Request, provider: str | Provider) -> StreamingResponse:
    body = await read_json_body(request)
    # Opened before the response starts so setup errors still get a JSON envelope
    relay = await gateway.open_stream(body, provider)
    # The body generator may never start if the client leaves early
    return StreamingResponse(
        relay.body(),
        media_type=STREAM_MEDIA_TYPE,
        headers=STREAM_HEADERS,
        background=BackgroundTask(relay.aclose),
    )


@router.post("/stream/{provider}")
async def stream(provider: str, request: Request, gateway: ChatGateway = Depends(get_gateway)):
    """Streamed chat as server-sent events, terminated by ``data: [DONE]``."""
    return await _stream(gateway, request, provider)


@router.post("/streaming")
async def legacy_streaming(request: Request, gateway: ChatGateway = Depends(get_gateway)):
    """Legacy alias of ``/api/stream/fireworks``."""
    return await _stream(gateway, request, Provider.FIREWORKS)
