"""Provider Adapters — wire-level translation for each upstream LLM provider.

Each adapter maps a ChatRequest to the provider's JSON body (``encode``), maps the
provider's success body back to a ChatResult (``decode``), and maps its HTTP error
responses to a GatewayError (``decode_error``). Adapters never perform I/O; the
CallExecutor sends what they encode.

Provider-specific behaviors:
  - OpenAI: reasoning models (o1/o3/o4) take ``max_completion_tokens`` and no sampling params
  - Groq: OpenAI-compatible, long-running reasoning models, largest token ceiling
  - Fireworks: OpenAI-compatible, short deadline
  - Perplexity: no tools, native ``citations``/``search_results`` mapped to sources
"""

from __future__ import annotations

import json
import logging
from abc import ABC
from typing import Any

from app.gateway.errors import ErrorKind, GatewayError
from app.gateway.types import (
    CallMode,
    ChatRequest,
    ChatResult,
    Citation,
    OutboundPayload,
    Provider,
    ProviderCapability,
    ProviderConfig,
    Usage,
)

logger = logging.getLogger(__name__)

# Tool-call function names whose arguments carry a citation
CITATION_FUNCTIONS = frozenset({"citation", "web_search"})

# Placeholder for a citation whose arguments could not be parsed
_CITATION_PLACEHOLDER = Citation(title="Citation", url="#", snippet="")


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters (OpenAI-compatible chat completions)."""

    provider: Provider
    display_name: str

    # Keys renamed inside a tool's function definition before it is sent
    tool_key_renames: dict[str, str] = {"input_schema": "parameters"}

    def __init__(self, config: ProviderConfig, api_key: str = ""):
        self.config = config
        self.api_key = api_key

    @property
    def capabilities(self) -> frozenset[ProviderCapability]:
        return self.config.capabilities

    def supports(self, capability: ProviderCapability) -> bool:
        return self.config.supports(capability)

    # -- encode -------------------------------------------------------------

    def encode(self, request: ChatRequest, mode: CallMode) -> OutboundPayload:
        """Build the outbound payload. ``stream`` follows the invoked route, never the client flag."""
        if not self.api_key:
            raise GatewayError.config_missing(self.config.api_key_env)

        stream = mode == CallMode.STREAM
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if stream:
            headers["Accept"] = "text/event-stream"

        return OutboundPayload(
            url=self.config.api_url,
            headers=headers,
            body=self.build_body(request, stream=stream),
            stream=stream,
            timeout_seconds=self.config.timeout_seconds,
        )

    def build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "messages": [m.to_wire() for m in request.messages],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "stream": stream,
        }
        if request.tools and self.supports(ProviderCapability.TOOLS):
            body["tools"] = [self.adapt_tool(t) for t in request.tools]
            body["tool_choice"] = request.tool_choice

        # Unset optionals are omitted, never sent as null
        return {k: v for k, v in body.items() if v is not None}

    def adapt_tool(self, tool: dict[str, Any]) -> dict[str, Any]:
        """Wrap flat tool specs in the function shape and apply key renames."""
        tool_type = tool.get("type")
        if "function" in tool:
            return {**tool, "function": self._rename_keys(tool["function"])}
        if tool_type not in (None, "function"):
            # Built-in tool (e.g. web_search_preview) passes through untouched
            return dict(tool)
        function = self._rename_keys({k: v for k, v in tool.items() if k != "type"})
        return {"type": "function", "function": function}

    def _rename_keys(self, function: dict[str, Any]) -> dict[str, Any]:
        return {self.tool_key_renames.get(k, k): v for k, v in function.items()}

    # -- decode -------------------------------------------------------------

    def decode(self, data: dict[str, Any], latency_ms: int = 0) -> ChatResult:
        """Extract the first choice's text, citations and usage."""
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise GatewayError(
                ErrorKind.UPSTREAM_STATUS,
                f"{self.display_name} returned a response without choices",
                summary="Malformed upstream response",
                details=data,
            )

        message = choices[0].get("message")
        if not isinstance(message, dict):
            message = {}
        tool_calls = message.get("tool_calls")
        citations = self.extract_citations(tool_calls if isinstance(tool_calls, list) else [])
        if citations:
            logger.info("Found %d citations in %s response", len(citations), self.display_name)

        return ChatResult(
            text=message.get("content") or "",
            citations=tuple(citations),
            usage=_parse_usage(data.get("usage")),
            latency_ms=latency_ms,
            model=data.get("model", ""),
            raw=data,
        )

    @staticmethod
    def extract_citations(tool_calls: list[dict[str, Any]]) -> list[Citation]:
        """Parse citation/web_search tool calls. A malformed entry degrades to a placeholder."""
        citations: list[Citation] = []
        for call in tool_calls:
            function = call.get("function") if isinstance(call, dict) else None
            if not isinstance(function, dict):
                if isinstance(function, str) and function in CITATION_FUNCTIONS:
                    logger.warning("Malformed citation tool call: %r", call)
                    citations.append(_CITATION_PLACEHOLDER)
                continue
            if function.get("name") not in CITATION_FUNCTIONS:
                continue
            arguments = function.get("arguments")
            try:
                args = arguments if isinstance(arguments, dict) else json.loads(arguments or "")
                if not isinstance(args, dict):
                    raise ValueError("citation arguments are not an object")
            except (TypeError, ValueError) as e:
                logger.warning("Error parsing citation arguments: %s", e)
                citations.append(_CITATION_PLACEHOLDER)
                continue
            citations.append(
                Citation(
                    title=args.get("title") or "Source",
                    url=args.get("url") or "",
                    snippet=args.get("snippet") or "",
                )
            )
        return citations

    # -- decode_error -------------------------------------------------------

    def decode_error(self, status: int, raw_body: str, request: ChatRequest) -> GatewayError:
        """Map an upstream HTTP error to the gateway taxonomy."""
        summary = f"{self.display_name} API error: {status}"

        if status == 401:
            return GatewayError(
                ErrorKind.UPSTREAM_STATUS,
                f"Authentication failed. Please check your {self.config.api_key_env}.",
                summary="Authentication failed",
                upstream_status=status,
            )

        if status == 404:
            return GatewayError(
                ErrorKind.UPSTREAM_STATUS,
                f'The model "{request.model}" is not available.',
                summary="Model not found",
                upstream_status=status,
            )

        if status == 429:
            return GatewayError(
                ErrorKind.UPSTREAM_STATUS,
                "Rate limit exceeded. Please try again in a few moments.",
                summary="Rate limit exceeded",
                upstream_status=status,
            )

        if status in (502, 504):
            return GatewayError(
                ErrorKind.UPSTREAM_TIMEOUT if status == 504 else ErrorKind.UPSTREAM_STATUS,
                f"{self.display_name} timed out or is temporarily unavailable. "
                "Try reducing max_tokens or simplifying your prompt.",
                summary=summary,
                upstream_status=status,
                details=raw_body or None,
                retryable=True,
            )

        return GatewayError(
            ErrorKind.UPSTREAM_STATUS,
            _upstream_error_message(raw_body, status),
            summary=summary,
            upstream_status=status,
            details=raw_body or None,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider.value!r})"


# ---------------------------------------------------------------------------
# OpenAI-style Adapter
# ---------------------------------------------------------------------------

_OPENAI_REASONING_PREFIXES = ("o1", "o3", "o4")


class OpenAIAdapter(BaseProviderAdapter):
    """OpenAI Chat Completions adapter."""

    provider = Provider.OPENAI
    display_name = "OpenAI"

    def build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body = super().build_body(request, stream)
        if request.model.startswith(_OPENAI_REASONING_PREFIXES):
            # Reasoning models reject max_tokens and custom sampling
            body["max_completion_tokens"] = body.pop("max_tokens")
            body.pop("temperature", None)
            body.pop("top_p", None)
        return body


# ---------------------------------------------------------------------------
# Groq Adapter
# ---------------------------------------------------------------------------


class GroqAdapter(BaseProviderAdapter):
    """Groq adapter (OpenAI-compatible endpoint)."""

    provider = Provider.GROQ
    display_name = "Groq"


# ---------------------------------------------------------------------------
# Fireworks Adapter
# ---------------------------------------------------------------------------


class FireworksAdapter(BaseProviderAdapter):
    """Fireworks.ai adapter (OpenAI-compatible endpoint)."""

    provider = Provider.FIREWORKS
    display_name = "Fireworks"


# ---------------------------------------------------------------------------
# Perplexity Adapter
# ---------------------------------------------------------------------------


class PerplexityAdapter(BaseProviderAdapter):
    """Perplexity adapter with native citation extraction."""

    provider = Provider.PERPLEXITY
    display_name = "Perplexity"

    def decode(self, data: dict[str, Any], latency_ms: int = 0) -> ChatResult:
        result = super().decode(data, latency_ms)
        native = self.extract_native_citations(data)
        if not native:
            return result

        seen = {c.url for c in result.citations}
        extra = [c for c in native if c.url not in seen]
        return ChatResult(
            text=result.text,
            citations=result.citations + tuple(extra),
            usage=result.usage,
            latency_ms=result.latency_ms,
            model=result.model,
            raw=result.raw,
        )

    @staticmethod
    def extract_native_citations(data: dict[str, Any]) -> list[Citation]:
        """Map ``search_results`` (preferred) or the bare ``citations`` URL list."""
        results = data.get("search_results")
        if isinstance(results, list) and results:
            return [
                Citation(
                    title=r.get("title") or "Source",
                    url=r.get("url") or "",
                    snippet=r.get("snippet") or "",
                )
                for r in results
                if isinstance(r, dict)
            ]
        urls = data.get("citations")
        if not isinstance(urls, list):
            return []
        return [Citation(title="Source", url=url) for url in urls if isinstance(url, str)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_usage(usage: Any) -> Usage | None:
    if not isinstance(usage, dict):
        return None
    prompt = int(usage.get("prompt_tokens") or 0)
    completion = int(usage.get("completion_tokens") or 0)
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(usage.get("total_tokens") or prompt + completion),
    )


def _upstream_error_message(raw_body: str, status: int) -> str:
    """Prefer the provider's ``error.message``; fall back to the raw text."""
    try:
        parsed = json.loads(raw_body)
    except ValueError:
        return raw_body or f"Error {status}"

    error = parsed.get("error") if isinstance(parsed, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return "Unknown API error"


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[Provider, type[BaseProviderAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.GROQ: GroqAdapter,
    Provider.FIREWORKS: FireworksAdapter,
    Provider.PERPLEXITY: PerplexityAdapter,
}


def get_adapter(provider: Provider, config: ProviderConfig, api_key: str = "") -> BaseProviderAdapter:
    """Factory: get the appropriate adapter for a provider."""
    cls = ADAPTER_REGISTRY.get(provider)
    if cls is None:
        raise ValueError(f"No adapter registered for provider: {provider}")
    return cls(config=config, api_key=api_key)
