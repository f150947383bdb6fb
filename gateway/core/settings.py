from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from gateway.domain.cache import CachePolicy, OperationKind


class ProviderLimits(BaseModel):
    """Admission and failure-isolation limits for one provider.

    Args:
        max_requests: Requests admitted per window.
        window_s: Rate limit window length in seconds.
        max_retries: Retries of transient (throttle/timeout) failures.
        base_backoff_s: First backoff delay; doubles on each retry.
        failure_threshold: Consecutive failures that open the circuit.
        cooldown_s: Time an open circuit waits before a half-open trial.
        timeout_s: Fixed deadline for a single provider call.
        max_concurrent: HTTP connection pool size.
    """

    max_requests: int = Field(default=60, ge=1)
    window_s: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    base_backoff_s: float = Field(default=1.0, ge=0)
    failure_threshold: int = Field(default=5, ge=1)
    cooldown_s: float = Field(default=60.0, gt=0)
    timeout_s: float = Field(default=30.0, gt=0)
    max_concurrent: int = Field(default=100, ge=1)


def _default_provider_limits() -> dict[str, ProviderLimits]:
    return {
        "openai": ProviderLimits(max_requests=500, timeout_s=60.0),
        "anthropic": ProviderLimits(max_requests=50, timeout_s=60.0),
        "serper": ProviderLimits(max_requests=100, timeout_s=10.0),
        "serpapi": ProviderLimits(max_requests=60, timeout_s=15.0),
        "firecrawl": ProviderLimits(max_requests=20, base_backoff_s=2.0, timeout_s=60.0),
        "scrapingbee": ProviderLimits(max_requests=30, timeout_s=20.0),
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Args:
        environment: Deployment environment, e.g. 'dev', 'staging', 'prod'.
        app_name: Human-readable application name.
        api_version: API version string.
        redis_url: Redis DSN for the shared response cache, or ``memory://``.
        sentry_dsn: Optional Sentry DSN for error reporting.
        providers: Per-provider admission and failure-isolation limits.
        health_failure_threshold: Failures before a provider is skipped.
        health_cooldown_s: How long a skipped provider stays skipped.
        cache_policies: Per-operation overrides of the default cache policy.
    """

    model_config = SettingsConfigDict(
        env_prefix="GW_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    app_name: str = Field(default="Resilient Provider Gateway")
    api_version: str = Field(default="v1")

    redis_url: str = Field(default="memory://")
    redis_max_connections: int = Field(default=50)
    cache_key_prefix: str = Field(default="gw:cache")

    sentry_dsn: str | None = None

    # Provider credentials and endpoints
    openai_api_key: str | None = None
    openai_base_url: HttpUrl | None = None
    openai_model: str = Field(default="gpt-4o")

    anthropic_api_key: str | None = None
    anthropic_base_url: HttpUrl | None = None
    anthropic_model: str = Field(default="claude-3-5-sonnet-latest")

    serper_api_key: str | None = None
    serper_base_url: HttpUrl | None = None

    serpapi_api_key: str | None = None
    serpapi_base_url: HttpUrl | None = None

    firecrawl_api_key: str | None = None
    firecrawl_base_url: HttpUrl | None = None

    scrapingbee_api_key: str | None = None
    scrapingbee_base_url: HttpUrl | None = None

    # Default HTTP connect timeout (seconds); read deadline is per provider.
    http_connect_timeout_s: float = Field(default=5.0)

    providers: dict[str, ProviderLimits] = Field(default_factory=_default_provider_limits)

    health_failure_threshold: int = Field(default=5, ge=1)
    health_cooldown_s: float = Field(default=300.0, gt=0)

    cache_policies: dict[OperationKind, CachePolicy] = Field(default_factory=dict)

    def limits_for(self, provider: str) -> ProviderLimits:
        return self.providers.get(provider) or ProviderLimits()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of Settings."""

    return Settings()  # type: ignore[call-arg]
