"""Chat Gateway — orchestrator wiring the forwarding pipeline.

Buffered:  normalize -> adapter.encode -> executor.execute (retry) -> adapter.decode -> envelope
Streaming: normalize -> adapter.encode -> executor.open_stream (retry) -> StreamRelay

Usage:
    gateway = ChatGateway(build_gateway_config(settings))

    envelope = await gateway.complete(body, "groq")
    relay = await gateway.open_stream(body, "fireworks")
    async for frame in relay.body():
        ...

The gateway holds only the immutable GatewayConfig and one adapter per provider;
nothing it owns changes between requests.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from app.gateway.errors import GatewayError
from app.gateway.executor import CallExecutor
from app.gateway.normalizer import normalize_request, resolve_provider
from app.gateway.stream_relay import StreamRelay
from app.gateway.translator import chat_envelope, search_envelope
from app.gateway.types import CallMode, GatewayConfig, Provider, ProviderCapability
from app.gateway.vendor_adapters import BaseProviderAdapter, get_adapter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChatGateway:
    """Main gateway orchestrator.

    Args:
        config: Provider table, API keys and retry policy, fixed at start-up
        executor: Outbound call executor (defaults to one built from ``config.retry``)
    """

    def __init__(self, config: GatewayConfig, executor: CallExecutor | None = None):
        self.config = config
        self.executor = executor or CallExecutor(config.retry)
        self._adapters: dict[Provider, BaseProviderAdapter] = {
            provider: get_adapter(provider, provider_config, api_key=config.api_key(provider))
            for provider, provider_config in config.providers.items()
        }

    def adapter_for(self, provider: str | Provider) -> BaseProviderAdapter:
        resolved = resolve_provider(provider)
        adapter = self._adapters.get(resolved)
        if adapter is None:
            raise GatewayError.bad_request(f"Provider '{resolved.value}' is not configured")
        return adapter

    async def complete(
        self,
        body: Any,
        provider: str | Provider,
        mode: CallMode = CallMode.CHAT,
    ) -> dict[str, Any]:
        """Run a buffered call and return the response envelope for ``mode``."""
        if mode == CallMode.STREAM:
            raise ValueError("Use open_stream() for streaming calls")

        adapter = self.adapter_for(provider)
        request = normalize_request(body, adapter.config, mode)
        payload = adapter.encode(request, mode)

        logger.info(
            "%s %s request: model=%s messages=%d max_tokens=%d",
            adapter.display_name,
            mode.value,
            request.model,
            len(request.messages),
            request.max_tokens,
            extra={"provider": adapter.provider.value, "mode": mode.value},
        )
        result = await self._guard(adapter, self.executor.execute(adapter, request, payload))

        if mode == CallMode.SEARCH:
            return search_envelope(result)
        return chat_envelope(result)

    async def open_stream(self, body: Any, provider: str | Provider) -> StreamRelay:
        """Open the upstream stream (with retries) and return an idle relay over it.

        Errors before upstream headers arrive are raised here, so the caller can still
        answer with a JSON error envelope.
        """
        adapter = self.adapter_for(provider)
        if not adapter.supports(ProviderCapability.STREAMING):
            raise GatewayError.bad_request(f"{adapter.display_name} does not support streaming")

        request = normalize_request(body, adapter.config, CallMode.STREAM)
        payload = adapter.encode(request, CallMode.STREAM)

        logger.info(
            "%s stream request: model=%s messages=%d max_tokens=%d",
            adapter.display_name,
            request.model,
            len(request.messages),
            request.max_tokens,
            extra={"provider": adapter.provider.value, "mode": CallMode.STREAM.value},
        )
        handle = await self._guard(adapter, self.executor.open_stream(adapter, request, payload))
        return StreamRelay(handle, adapter.provider)

    async def _guard(self, adapter: BaseProviderAdapter, call: Awaitable[T]) -> T:
        try:
            return await call
        except GatewayError:
            raise
        except Exception as e:
            logger.exception("Unexpected error calling %s", adapter.display_name)
            raise GatewayError.internal(e) from e
