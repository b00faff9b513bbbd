import logging
from types import MappingProxyType

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.gateway.types import DEFAULT_PROVIDER_CONFIGS, GatewayConfig, Provider, RetryPolicy

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    # Provider API keys (empty = provider answers with "API key not configured")
    openai_api_key: str = ""
    groq_api_key: str = Field("", validation_alias=AliasChoices("GROQ_API_KEY", "GROK_API_KEY"))
    fireworks_api_key: str = ""
    perplexity_api_key: str = ""

    # Outbound retry policy
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 3.0  # delay before attempt k is (k - 1) * base

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated, e.g. "https://app.example.com,https://admin.example.com"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    @property
    def api_keys(self) -> dict[Provider, str]:
        return {
            Provider.OPENAI: self.openai_api_key,
            Provider.GROQ: self.groq_api_key,
            Provider.FIREWORKS: self.fireworks_api_key,
            Provider.PERPLEXITY: self.perplexity_api_key,
        }

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


settings = Settings()


def build_gateway_config(source: Settings | None = None) -> GatewayConfig:
    """Freeze settings into the GatewayConfig injected into the gateway."""
    source = source or settings
    return GatewayConfig(
        providers=DEFAULT_PROVIDER_CONFIGS,
        api_keys=MappingProxyType({p: key for p, key in source.api_keys.items() if key}),
        retry=RetryPolicy(
            max_attempts=source.retry_max_attempts,
            base_delay_seconds=source.retry_base_delay_seconds,
        ),
    )


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    missing = [DEFAULT_PROVIDER_CONFIGS[p].api_key_env for p, key in settings.api_keys.items() if not key]
    if missing:
        # Not fatal: requests to these providers answer with a 500 envelope instead
        logger.warning("Provider API keys not configured: %s", ", ".join(missing))

    if settings.retry_max_attempts < 1:
        errors.append("RETRY_MAX_ATTEMPTS must be at least 1")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
