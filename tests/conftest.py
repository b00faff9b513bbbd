import json
from collections.abc import AsyncGenerator
from types import MappingProxyType

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.core.config import settings

# Override settings for tests
settings.app_env = "development"
settings.sentry_dsn = ""

from app.gateway.executor import CallExecutor  # noqa: E402
from app.gateway.gateway import ChatGateway  # noqa: E402
from app.gateway.types import GatewayConfig, Provider, RetryPolicy  # noqa: E402
from app.main import app  # noqa: E402

TEST_API_KEYS = MappingProxyType({p: f"test-{p.value}-key" for p in Provider})

# Same attempt count as production, without the backoff sleeps
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay_seconds=0)


class ScriptedUpstream:
    """``httpx.MockTransport`` handler replaying queued responses in order.

    Each queued item is an ``httpx.Response`` to return or an exception to raise.
    Every outbound request is recorded.
    """

    def __init__(self):
        self.responses: list[httpx.Response | Exception] = []
        self.requests: list[httpx.Request] = []

    def queue(self, *responses: httpx.Response | Exception) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected upstream call to {request.url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def sent_json(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def upstream() -> ScriptedUpstream:
    return ScriptedUpstream()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(api_keys=TEST_API_KEYS, retry=FAST_RETRY)


@pytest.fixture
def gateway(gateway_config: GatewayConfig, upstream: ScriptedUpstream) -> ChatGateway:
    return ChatGateway(gateway_config, executor=CallExecutor(gateway_config.retry, transport=upstream.transport))


@pytest.fixture
async def client(gateway: ChatGateway) -> AsyncGenerator[AsyncClient, None]:
    # ASGITransport does not run the lifespan, so install the gateway directly
    app.state.gateway = gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
