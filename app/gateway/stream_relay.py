"""Stream Relay — pumps an open upstream stream to the client as server-sent events.

State machine: IDLE -> RELAYING -> CLOSED. A relay is single-use.

Framing:
  - upstream ``text/event-stream``: each ``data:`` payload is re-emitted verbatim
    as ``data: <payload>\\n\\n``; upstream ``[DONE]`` markers are swallowed
  - any other body: each chunk is decoded as UTF-8 and emitted as
    ``data: <json string>\\n\\n``
  - exactly one ``data: [DONE]\\n\\n`` ends every relay, preceded by an error
    event when the upstream read fails
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any, Protocol

import httpx

from app.core.metrics import STREAM_RELAYS
from app.gateway.types import Delta, Done, Error, Provider, StreamEvent, ToolCallDelta

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"
DONE_EVENT = b"data: [DONE]\n\n"

# A partial upstream event larger than this is flushed as-is
MAX_PENDING_EVENT_BYTES = 1024 * 1024


class RelayState(str, Enum):
    IDLE = "idle"
    RELAYING = "relaying"
    CLOSED = "closed"


class UpstreamStream(Protocol):
    """What the relay needs from an open upstream response (see ``StreamHandle``)."""

    @property
    def is_event_stream(self) -> bool: ...

    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


def encode_event(event: StreamEvent) -> bytes:
    """Serialize one stream event into its SSE frame."""
    if isinstance(event, Done):
        return DONE_EVENT
    if isinstance(event, Error):
        payload = json.dumps({"error": True, "message": event.message})
    elif event.raw is not None:
        payload = event.raw
    else:
        payload = json.dumps(event.text)
    return f"data: {payload}\n\n".encode("utf-8")


# ---------------------------------------------------------------------------
# Upstream SSE parsing
# ---------------------------------------------------------------------------


class SSEParser:
    """Incremental parser yielding the ``data`` payload of each complete event."""

    def __init__(self, max_pending: int = MAX_PENDING_EVENT_BYTES):
        self._buffer = ""
        self._max_pending = max_pending

    def feed(self, text: str) -> list[str]:
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *complete, self._buffer = self._buffer.split("\n\n")
        payloads = [p for p in (_event_data(block) for block in complete) if p is not None]

        if len(self._buffer) > self._max_pending:
            logger.warning("Flushing oversized partial upstream event (%d chars)", len(self._buffer))
            payloads.extend(self.flush())
        return payloads

    def flush(self) -> list[str]:
        block, self._buffer = self._buffer, ""
        payload = _event_data(block)
        return [payload] if payload is not None else []


def _event_data(block: str) -> str | None:
    lines = [line[5:] for line in block.split("\n") if line.startswith("data:")]
    if not lines:
        return None
    return "\n".join(line[1:] if line.startswith(" ") else line for line in lines)


def classify_payload(payload: str) -> StreamEvent | None:
    """Turn one upstream ``data`` payload into an event. ``[DONE]`` yields None."""
    if payload.strip() == DONE_MARKER:
        return None
    try:
        data: Any = json.loads(payload)
    except ValueError:
        return Delta(text=payload, raw=payload)

    delta = _first_delta(data)
    tool_calls = delta.get("tool_calls")
    if tool_calls:
        return ToolCallDelta(tool_calls=tuple(tool_calls), raw=payload)
    content = delta.get("content")
    return Delta(text=content if isinstance(content, str) else "", raw=payload)


def _first_delta(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    delta = choices[0].get("delta")
    return delta if isinstance(delta, dict) else {}


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------


class StreamRelay:
    """Forwards one upstream stream, one chunk at a time, then closes it."""

    def __init__(self, handle: UpstreamStream, provider: Provider):
        self.handle = handle
        self.provider = provider
        self.state = RelayState.IDLE

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self.state != RelayState.IDLE:
            raise RuntimeError(f"StreamRelay already {self.state.value}")
        self.state = RelayState.RELAYING
        result = "completed"

        try:
            try:
                async for event in self._pump():
                    yield event
            except Exception as e:
                # Read or parse failure; cancellation propagates to the handler below
                result = "error"
                if isinstance(e, httpx.HTTPError):
                    logger.warning("%s stream read failed: %s", self.provider.value, e)
                    message = str(e) or type(e).__name__
                else:
                    logger.exception("%s stream relay failed", self.provider.value)
                    message = f"Malformed upstream stream: {type(e).__name__}"
                yield Error(message=message)
            yield Done()
        except BaseException:
            # Client went away or the task was cancelled
            result = "cancelled"
            raise
        finally:
            self.state = RelayState.CLOSED
            STREAM_RELAYS.labels(provider=self.provider.value, result=result).inc()
            logger.info("%s stream closed (%s)", self.provider.value, result, extra={"provider": self.provider.value})
            await self.handle.aclose()

    async def aclose(self) -> None:
        """Release the upstream. A relay that never started cannot start afterwards."""
        if self.state == RelayState.IDLE:
            self.state = RelayState.CLOSED
            STREAM_RELAYS.labels(provider=self.provider.value, result="cancelled").inc()
            logger.info("%s stream closed before relaying", self.provider.value, extra={"provider": self.provider.value})
        await self.handle.aclose()

    async def body(self) -> AsyncIterator[bytes]:
        """SSE-framed bytes for ``StreamingResponse``."""
        events = self.events()
        try:
            async for event in events:
                yield encode_event(event)
        finally:
            # Closing this generator must close the upstream right away
            await events.aclose()

    async def _pump(self) -> AsyncIterator[StreamEvent]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        if not self.handle.is_event_stream:
            async for chunk in self.handle.aiter_bytes():
                text = decoder.decode(chunk)
                if text:
                    yield Delta(text=text)
            tail = decoder.decode(b"", final=True)
            if tail:
                yield Delta(text=tail)
            return

        parser = SSEParser()
        async for chunk in self.handle.aiter_bytes():
            for payload in parser.feed(decoder.decode(chunk)):
                event = classify_payload(payload)
                if event is not None:
                    yield event
        for payload in parser.feed(decoder.decode(b"", final=True)) + parser.flush():
            event = classify_payload(payload)
            if event is not None:
                yield event
