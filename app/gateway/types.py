"""Core types and DTOs for the provider-forwarding gateway."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Union


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Provider(str, Enum):
    """Supported upstream LLM providers."""

    OPENAI = "openai"
    GROQ = "groq"
    FIREWORKS = "fireworks"
    PERPLEXITY = "perplexity"


class CallMode(str, Enum):
    """How the caller wants the answer delivered (decided by the route)."""

    CHAT = "chat"  # Buffered, raw provider body + performance block
    SEARCH = "search"  # Buffered, {answer, sources}
    STREAM = "stream"  # Re-framed server-sent events


class ProviderCapability(str, Enum):
    """Closed set of optional features a provider adapter may support."""

    STREAMING = "streaming"
    TOOLS = "tools"


# ---------------------------------------------------------------------------
# Chat Request: canonical, provider-agnostic input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatMessage:
    """A single conversation turn."""

    role: str
    content: Any = ""
    extra: Mapping[str, Any] = field(default_factory=dict)  # name, tool_calls, tool_call_id

    def to_wire(self) -> dict[str, Any]:
        data = {"role": self.role, "content": self.content}
        data.update(self.extra)
        return data


@dataclass(frozen=True)
class ChatRequest:
    """Normalized chat-completion request.

    Produced by the RequestNormalizer; ``max_tokens`` is already clamped into the
    provider's valid range. ``None`` optionals are never sent upstream.
    """

    provider: Provider
    model: str
    messages: tuple[ChatMessage, ...]
    max_tokens: int
    temperature: float | None = None
    top_p: float | None = None
    tools: tuple[dict[str, Any], ...] | None = None
    tool_choice: Any = None
    stream: bool = False


# ---------------------------------------------------------------------------
# Chat Result: unified buffered output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Citation:
    """A structured reference extracted from a provider's tool-call output."""

    title: str = "Source"
    url: str = ""
    snippet: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "url": self.url, "snippet": self.snippet}


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ChatResult:
    """Decoded answer from a buffered call. Owned by the request that produced it."""

    text: str
    citations: tuple[Citation, ...] = ()
    usage: Usage | None = None
    latency_ms: int = 0
    model: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict)  # Provider body, used by the chat envelope


# ---------------------------------------------------------------------------
# Stream events: tagged variants, terminated exactly once by Done
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Delta:
    """Partial answer text. ``raw`` holds the upstream payload when it was SSE-framed."""

    text: str
    raw: str | None = None


@dataclass(frozen=True)
class ToolCallDelta:
    tool_calls: tuple[Any, ...]
    raw: str


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class Error:
    message: str


StreamEvent = Union[Delta, ToolCallDelta, Done, Error]


# ---------------------------------------------------------------------------
# Outbound payload: what an adapter hands to the executor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutboundPayload:
    url: str
    headers: Mapping[str, str]
    body: Mapping[str, Any]
    stream: bool
    timeout_seconds: float


# ---------------------------------------------------------------------------
# Provider config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderConfig:
    """Connection and parameter limits for a provider."""

    provider: Provider
    api_url: str
    api_key_env: str  # Setting name surfaced in ConfigMissing/auth messages
    default_model: str
    max_tokens_ceiling: int
    default_max_tokens: int = 4096
    default_temperature: float | None = None
    default_top_p: float | None = None
    timeout_seconds: float = 120.0  # Per attempt, until headers are received
    total_timeout_seconds: float = 300.0  # End-to-end bound for buffered calls
    capabilities: frozenset[ProviderCapability] = frozenset()

    def supports(self, capability: ProviderCapability) -> bool:
        return capability in self.capabilities


# Default configurations per provider
DEFAULT_PROVIDER_CONFIGS: Mapping[Provider, ProviderConfig] = MappingProxyType(
    {
        Provider.OPENAI: ProviderConfig(
            provider=Provider.OPENAI,
            api_url="https://api.openai.com/v1/chat/completions",
            api_key_env="OPENAI_API_KEY",
            default_model="gpt-4.1",
            max_tokens_ceiling=4096,
            default_temperature=0.7,
            timeout_seconds=120,
            total_timeout_seconds=300,
            capabilities=frozenset({ProviderCapability.STREAMING, ProviderCapability.TOOLS}),
        ),
        Provider.GROQ: ProviderConfig(
            provider=Provider.GROQ,
            api_url="https://api.groq.com/openai/v1/chat/completions",
            api_key_env="GROQ_API_KEY",
            default_model="deepseek-r1-distill-qwen-32b",
            max_tokens_ceiling=32000,
            default_max_tokens=8192,
            default_temperature=0.7,
            timeout_seconds=180,  # Reasoning models answer slowly
            total_timeout_seconds=400,
            capabilities=frozenset({ProviderCapability.STREAMING, ProviderCapability.TOOLS}),
        ),
        Provider.FIREWORKS: ProviderConfig(
            provider=Provider.FIREWORKS,
            api_url="https://api.fireworks.ai/inference/v1/chat/completions",
            api_key_env="FIREWORKS_API_KEY",
            default_model="accounts/fireworks/models/llama-v2-70b-chat",
            max_tokens_ceiling=8192,
            default_temperature=0.5,
            default_top_p=0.9,
            timeout_seconds=28,
            total_timeout_seconds=60,
            capabilities=frozenset({ProviderCapability.STREAMING, ProviderCapability.TOOLS}),
        ),
        Provider.PERPLEXITY: ProviderConfig(
            provider=Provider.PERPLEXITY,
            api_url="https://api.perplexity.ai/chat/completions",
            api_key_env="PERPLEXITY_API_KEY",
            default_model="sonar-medium-online",
            max_tokens_ceiling=8192,
            default_max_tokens=2048,
            default_temperature=0.7,
            timeout_seconds=25,
            total_timeout_seconds=25,
            capabilities=frozenset(),
        ),
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """Single retry policy shared by every adapter.

    Delay before attempt ``k`` (k >= 2) is ``(k - 1) * base_delay_seconds``.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 3.0
    retryable_statuses: frozenset[int] = frozenset({502, 504})


@dataclass(frozen=True)
class GatewayConfig:
    """Immutable configuration injected into the gateway at start-up."""

    providers: Mapping[Provider, ProviderConfig] = field(default_factory=lambda: DEFAULT_PROVIDER_CONFIGS)
    api_keys: Mapping[Provider, str] = field(default_factory=lambda: MappingProxyType({}))
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def provider_config(self, provider: Provider) -> ProviderConfig:
        return self.providers[provider]

    def api_key(self, provider: Provider) -> str:
        return self.api_keys.get(provider, "")
