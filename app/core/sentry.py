"""Sentry error tracking for the gateway.

Only active when SENTRY_DSN is set. Events never carry prompt bodies or the
provider API keys the gateway forwards on outbound calls.
"""

import logging
from typing import Any

from app.core.config import settings

logger = logging.getLogger(__name__)

FILTERED = "[Filtered]"

SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})


def scrub_event(event: dict[str, Any], hint: dict[str, Any] | None = None) -> dict[str, Any]:
    """before_send hook: drop the request body and mask credential headers."""
    request = event.get("request")
    if isinstance(request, dict):
        if "data" in request:
            request["data"] = FILTERED
        headers = request.get("headers")
        if isinstance(headers, dict):
            for name in headers:
                if name.lower() in SENSITIVE_HEADERS:
                    headers[name] = FILTERED

    provider_keys = [key for key in settings.api_keys.values() if key]
    for exc in (event.get("exception") or {}).get("values") or []:
        value = exc.get("value")
        if isinstance(value, str):
            for key in provider_keys:
                value = value.replace(key, FILTERED)
            exc["value"] = value
    return event


def init_sentry() -> bool:
    """Initialize Sentry when configured. Returns whether it was initialized."""
    if not settings.sentry_dsn:
        logger.debug("Sentry disabled (no SENTRY_DSN)")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.httpx import HttpxIntegration

    production = settings.app_env == "production"
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if production else 1.0,
        send_default_pii=False,
        max_request_body_size="never",
        before_send=scrub_event,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            HttpxIntegration(),
        ],
    )
    sentry_sdk.set_tag("service", "llm-gateway")
    logger.info("Sentry initialized for %s (providers with keys: %s)", settings.app_env, _configured_providers())
    return True


def _configured_providers() -> str:
    names = [provider.value for provider, key in settings.api_keys.items() if key]
    return ", ".join(names) or "none"
