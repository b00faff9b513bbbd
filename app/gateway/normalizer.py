"""Request Normalizer — canonicalizes inbound bodies into ChatRequests.

Applies, per provider (table-driven from ProviderConfig):
  - Validates presence of a non-empty ``messages`` list
  - Expands a bare ``query`` into search messages on the search route
  - Clamps ``max_tokens`` into [1, provider ceiling]
  - Fills temperature/top_p defaults only when entirely absent
  - Drops unknown keys, and tools for providers without tool support
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from app.gateway.errors import GatewayError
from app.gateway.types import (
    CallMode,
    ChatMessage,
    ChatRequest,
    Provider,
    ProviderCapability,
    ProviderConfig,
)
from app.schemas.chat import ChatCompletionBody, ChatMessageIn

logger = logging.getLogger(__name__)

SEARCH_SYSTEM_PROMPT = (
    "You are a helpful assistant that provides accurate information with online search capabilities."
)


def resolve_provider(name: str | Provider) -> Provider:
    """Map a route selector to a Provider, or fail with BadRequest."""
    try:
        return Provider(name)
    except ValueError:
        known = ", ".join(p.value for p in Provider)
        raise GatewayError.bad_request(f"Unknown provider '{name}'. Expected one of: {known}")


def clamp_max_tokens(value: int, ceiling: int) -> int:
    return min(max(1, value), ceiling)


def normalize_request(
    body: Any,
    config: ProviderConfig,
    mode: CallMode = CallMode.CHAT,
) -> ChatRequest:
    """Validate ``body`` and build the canonical ChatRequest for ``config.provider``.

    Raises:
        GatewayError: BAD_REQUEST when the body is not an object, fails validation,
            or carries no messages. No outbound call is made in that case.
    """
    if not isinstance(body, dict):
        raise GatewayError.bad_request("Request body must be a JSON object")

    try:
        parsed = ChatCompletionBody.model_validate(body)
    except ValidationError as e:
        details = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
        raise GatewayError.bad_request("Request body failed validation", details=details)

    messages = parsed.messages
    if not messages and mode == CallMode.SEARCH and parsed.query:
        messages = [
            ChatMessageIn(role="system", content=SEARCH_SYSTEM_PROMPT),
            ChatMessageIn(role="user", content=parsed.query),
        ]
        logger.info("Search query: %r", _truncate(parsed.query))

    if not messages:
        if mode == CallMode.SEARCH:
            raise GatewayError.bad_request("Missing required parameter: query")
        raise GatewayError.bad_request("Missing required parameter: messages (must be a non-empty list)")

    requested = parsed.max_tokens if parsed.max_tokens is not None else config.default_max_tokens
    max_tokens = clamp_max_tokens(requested, config.max_tokens_ceiling)
    if max_tokens != requested:
        logger.info(
            "Adjusted max_tokens for %s from %d to %d",
            config.provider.value,
            requested,
            max_tokens,
        )

    temperature = parsed.temperature if parsed.temperature is not None else config.default_temperature
    top_p = parsed.top_p if parsed.top_p is not None else config.default_top_p

    tools = None
    tool_choice = None
    if parsed.tools:
        if config.supports(ProviderCapability.TOOLS):
            tools = tuple(parsed.tools)
            tool_choice = parsed.tool_choice or None
        else:
            logger.debug("Dropping %d tools: %s does not support tools", len(parsed.tools), config.provider.value)

    return ChatRequest(
        provider=config.provider,
        model=parsed.model or config.default_model,
        messages=tuple(_to_message(m) for m in messages),
        max_tokens=max_tokens,
        temperature=temperature,
        top_p=top_p,
        tools=tools,
        tool_choice=tool_choice,
        stream=mode == CallMode.STREAM,
    )


def _to_message(message: ChatMessageIn) -> ChatMessage:
    extra = message.model_dump(exclude={"role", "content"}, exclude_none=True)
    return ChatMessage(role=message.role, content=message.content, extra=extra)


def _truncate(text: str, limit: int = 100) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")
