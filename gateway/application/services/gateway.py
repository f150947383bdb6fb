from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from gateway.application.factory import ProviderAdapterFactory
from gateway.application.services.orchestrator import ProviderBinding, RequestOrchestrator
from gateway.application.services.response_cache import ResponseCache
from gateway.core.logging import get_logger, log_fields
from gateway.core.settings import Settings
from gateway.domain.adapters import Channel, GatewayRequest, NormalizedResponse
from gateway.domain.cache import CacheStatistics, CacheStore, OperationKind, build_policy_table
from gateway.domain.circuit_breaker import CircuitBreaker
from gateway.domain.health import ProviderHealthRecord, ProviderHealthRegistry
from gateway.domain.rate_limiter import RateLimiter

logger = get_logger(__name__)

# Primary first, then the single fallback.
CHANNEL_PROVIDERS: dict[Channel, tuple[str, str]] = {
    Channel.LLM: ("openai", "anthropic"),
    Channel.SEARCH: ("serper", "serpapi"),
    Channel.SCRAPE: ("firecrawl", "scrapingbee"),
}


@dataclass(slots=True)
class Gateway:
    """Single entry point callers use to reach external providers.

    Each request is checked against the cache first, served by its channel's
    orchestrator on a miss and written back to the cache. Cache entries are
    namespaced by the channel's primary provider, so a fallback response is
    shared with later primary-served requests.
    """

    orchestrators: dict[Channel, RequestOrchestrator]
    cache: ResponseCache
    registry: ProviderHealthRegistry

    def namespace_for(self, channel: Channel) -> str:
        return self.orchestrators[channel].primary.name

    async def execute(self, request: GatewayRequest, operation: OperationKind) -> NormalizedResponse:
        policy = self.cache.policy_for(operation)
        if policy.channel != request.channel:
            raise ValueError(
                f"Operation {operation.value} is served by the {policy.channel.value} channel, "
                f"got a {request.channel.value} request",
            )
        orchestrator = self.orchestrators.get(request.channel)
        if orchestrator is None:
            raise ValueError(f"No providers configured for channel {request.channel.value}")

        namespace = self.namespace_for(request.channel)
        cached = await self.cache.get(request, operation, namespace)
        if cached is not None:
            return cached

        response = await orchestrator.execute(request)
        await self.cache.set(request, response, operation, namespace)
        return response

    async def invalidate(self, pattern: str | None = None, namespace: str | None = None) -> int:
        """Invalidate one namespace, or every channel's namespace when none is given."""

        if namespace is not None:
            return await self.cache.invalidate(pattern, namespace=namespace)
        deleted = 0
        for channel in self.orchestrators:
            deleted += await self.cache.invalidate(pattern, namespace=self.namespace_for(channel))
        return deleted

    def get_statistics(self) -> CacheStatistics:
        return self.cache.get_statistics()

    def reset_statistics(self) -> None:
        self.cache.reset_statistics()

    async def check_health(self) -> list[ProviderHealthRecord]:
        return await self.registry.check_health()


def build_gateway(
    settings: Settings,
    store: CacheStore,
    factory: ProviderAdapterFactory,
    *,
    clock: Callable[[], float] = time.monotonic,
    wall_clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Gateway:
    """Wire every limiter, breaker, orchestrator and the cache exactly once.

    ``clock`` drives admission, circuit and health timing; ``wall_clock``
    stamps cache entries, which may outlive the process.
    """

    registry = ProviderHealthRegistry(
        failure_threshold=settings.health_failure_threshold,
        cooldown_s=settings.health_cooldown_s,
        clock=clock,
    )

    def bind(provider: str) -> ProviderBinding:
        limits = settings.limits_for(provider)
        return ProviderBinding(
            adapter=factory.get_adapter(provider),
            rate_limiter=RateLimiter(
                name=provider,
                max_requests=limits.max_requests,
                window_s=limits.window_s,
                max_retries=limits.max_retries,
                base_backoff_s=limits.base_backoff_s,
                clock=clock,
                sleep=sleep,
            ),
            circuit_breaker=CircuitBreaker(
                provider,
                failure_threshold=limits.failure_threshold,
                cooldown_s=limits.cooldown_s,
                clock=clock,
            ),
            timeout_s=limits.timeout_s,
        )

    orchestrators = {
        channel: RequestOrchestrator(
            channel=channel,
            primary=bind(primary),
            secondary=bind(secondary),
            registry=registry,
        )
        for channel, (primary, secondary) in CHANNEL_PROVIDERS.items()
    }
    cache = ResponseCache(store, build_policy_table(settings.cache_policies), clock=wall_clock)

    logger.info(
        "Gateway assembled",
        extra=log_fields(
            channels={c.value: list(p) for c, p in CHANNEL_PROVIDERS.items()},
            cache_policy_overrides=[k.value for k in settings.cache_policies],
        ),
    )
    return Gateway(orchestrators=orchestrators, cache=cache, registry=registry)
