from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from gateway.core.logging import get_logger, log_fields
from gateway.domain.adapters import Channel, GatewayRequest, NormalizedResponse, ProviderAdapter
from gateway.domain.circuit_breaker import CircuitBreaker
from gateway.domain.errors import (
    NoProvidersAvailable,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
)
from gateway.domain.health import ProviderHealthRegistry
from gateway.domain.rate_limiter import RateLimiter
from gateway.monitoring.metrics import PROVIDER_FALLBACK_TOTAL, PROVIDER_REQUESTS_TOTAL

logger = get_logger(__name__)


def is_retryable_error(exc: BaseException) -> bool:
    """Only throttling and timeouts are worth retrying."""

    if isinstance(exc, RateLimited):
        return True
    if isinstance(exc, ProviderError):
        return exc.throttled or exc.timeout
    return isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError))


@dataclass(slots=True)
class ProviderBinding:
    """One provider adapter together with its own admission and isolation state."""

    adapter: ProviderAdapter
    rate_limiter: RateLimiter
    circuit_breaker: CircuitBreaker
    timeout_s: float = 30.0

    @property
    def name(self) -> str:
        return self.adapter.name


class RequestOrchestrator:
    """Primary/secondary failover for one provider channel.

    The primary path is ``breaker(limiter.retry(call))``. Any primary failure
    is recorded in the health registry and, if a secondary is configured and
    eligible, the secondary is tried once through its own limiter and breaker.
    Callers always get a normalized response or ``NoProvidersAvailable``.
    """

    def __init__(
        self,
        *,
        channel: Channel,
        primary: ProviderBinding,
        registry: ProviderHealthRegistry,
        secondary: ProviderBinding | None = None,
    ) -> None:
        self.channel = channel
        self.primary = primary
        self.secondary = secondary
        self._registry = registry
        registry.register(primary.name, getattr(primary.adapter, "fetch_quota", None))
        if secondary is not None:
            registry.register(secondary.name, getattr(secondary.adapter, "fetch_quota", None))

    async def _attempt(self, binding: ProviderBinding, request: GatewayRequest) -> NormalizedResponse:
        adapter = binding.adapter

        async def call() -> NormalizedResponse:
            try:
                raw = await asyncio.wait_for(adapter.call(request), timeout=binding.timeout_s)
            except asyncio.TimeoutError as exc:
                raise ProviderError(
                    provider=adapter.name,
                    message=f"{adapter.name} call exceeded {binding.timeout_s}s",
                    retryable=True,
                    timeout=True,
                ) from exc
            return adapter.to_normalized(raw)

        return await binding.circuit_breaker.execute(
            lambda: binding.rate_limiter.execute_with_retry(call, is_retryable_error),
        )

    async def _try(
        self,
        binding: ProviderBinding,
        request: GatewayRequest,
        errors: list[BaseException],
    ) -> NormalizedResponse | None:
        if not self._registry.is_available(binding.name):
            PROVIDER_REQUESTS_TOTAL.labels(provider=binding.name, status="skipped").inc()
            errors.append(ProviderUnavailable(provider=binding.name, reason="marked unhealthy"))
            logger.warning(
                "Provider skipped by health registry",
                extra=log_fields(channel=self.channel.value, provider=binding.name),
            )
            return None

        try:
            response = await self._attempt(binding, request)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)
            self._registry.record_failure(binding.name)
            PROVIDER_REQUESTS_TOTAL.labels(provider=binding.name, status="error").inc()
            logger.warning(
                "Provider call failed",
                extra=log_fields(
                    channel=self.channel.value,
                    provider=binding.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    request_id=getattr(request, "request_id", ""),
                ),
            )
            return None

        self._registry.record_success(binding.name)
        PROVIDER_REQUESTS_TOTAL.labels(provider=binding.name, status="success").inc()
        return response

    async def execute(self, request: GatewayRequest) -> NormalizedResponse:
        errors: list[BaseException] = []

        response = await self._try(self.primary, request, errors)
        if response is not None:
            logger.info(
                "Request served",
                extra=log_fields(
                    channel=self.channel.value,
                    provider=self.primary.name,
                    fallback=False,
                    request_id=getattr(request, "request_id", ""),
                ),
            )
            return response

        if self.secondary is not None:
            response = await self._try(self.secondary, request, errors)
            if response is not None:
                PROVIDER_FALLBACK_TOTAL.labels(
                    channel=self.channel.value,
                    from_provider=self.primary.name,
                    to_provider=self.secondary.name,
                ).inc()
                logger.warning(
                    "Request served by fallback provider",
                    extra=log_fields(
                        channel=self.channel.value,
                        provider=self.secondary.name,
                        failed_provider=self.primary.name,
                        fallback=True,
                        request_id=getattr(request, "request_id", ""),
                    ),
                )
                return response.model_copy(update={"fallback": True})

        logger.error(
            "All provider candidates failed",
            extra=log_fields(
                channel=self.channel.value,
                providers=[self.primary.name] + ([self.secondary.name] if self.secondary else []),
                errors=[str(e) for e in errors],
                request_id=getattr(request, "request_id", ""),
            ),
        )
        raise NoProvidersAvailable(channel=self.channel.value, errors=errors) from (
            errors[-1] if errors else None
        )
