from __future__ import annotations

import asyncio

import pytest

from gateway.application.services.orchestrator import (
    ProviderBinding,
    RequestOrchestrator,
    is_retryable_error,
)
from gateway.domain.adapters import Channel, ProviderResponse, SearchRequest
from gateway.domain.circuit_breaker import CircuitBreaker, CircuitState
from gateway.domain.errors import (
    NoProvidersAvailable,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
)
from gateway.domain.health import ProviderHealthRegistry
from gateway.domain.rate_limiter import RateLimiter


def _bind(adapter, clock, *, max_retries=0, failure_threshold=5, timeout_s=30.0) -> ProviderBinding:
    return ProviderBinding(
        adapter=adapter,
        rate_limiter=RateLimiter(
            name=adapter.name,
            max_requests=100,
            window_s=60.0,
            max_retries=max_retries,
            clock=clock,
            sleep=clock.sleep,
        ),
        circuit_breaker=CircuitBreaker(adapter.name, failure_threshold=failure_threshold, clock=clock),
        timeout_s=timeout_s,
    )


def _orchestrator(primary, secondary, clock, registry=None, **bind_kwargs) -> RequestOrchestrator:
    return RequestOrchestrator(
        channel=Channel.SEARCH,
        primary=_bind(primary, clock, **bind_kwargs),
        secondary=_bind(secondary, clock, **bind_kwargs) if secondary else None,
        registry=registry or ProviderHealthRegistry(clock=clock),
    )


@pytest.mark.asyncio
async def test_primary_serves_without_fallback(clock, make_adapter):
    primary, secondary = make_adapter("serper"), make_adapter("serpapi")
    orchestrator = _orchestrator(primary, secondary, clock)

    response = await orchestrator.execute(SearchRequest(query="python asyncio"))

    assert response.provider == "serper"
    assert response.fallback is False
    assert (primary.calls, secondary.calls) == (1, 0)


@pytest.mark.asyncio
async def test_primary_failure_falls_back_once(clock, make_adapter):
    primary = make_adapter("serper", default=ProviderError(provider="serper", message="down", status_code=500))
    secondary = make_adapter("serpapi")
    registry = ProviderHealthRegistry(clock=clock)
    orchestrator = _orchestrator(primary, secondary, clock, registry=registry)

    response = await orchestrator.execute(SearchRequest(query="python asyncio"))

    assert response.provider == "serpapi"
    assert response.fallback is True
    assert response.results[0].domain == "example.com"
    assert (primary.calls, secondary.calls) == (1, 1)
    assert registry.get_record("serper").failure_count == 1
    assert registry.get_record("serpapi").failure_count == 0


@pytest.mark.asyncio
async def test_both_unavailable_raises_without_calling_clients(clock, make_adapter):
    primary, secondary = make_adapter("serper"), make_adapter("serpapi")
    registry = ProviderHealthRegistry(failure_threshold=1, cooldown_s=300.0, clock=clock)
    orchestrator = _orchestrator(primary, secondary, clock, registry=registry)
    registry.record_failure("serper")
    registry.record_failure("serpapi")

    with pytest.raises(NoProvidersAvailable) as excinfo:
        await orchestrator.execute(SearchRequest(query="python asyncio"))

    assert (primary.calls, secondary.calls) == (0, 0)
    assert len(excinfo.value.errors) == 2
    assert all(isinstance(e, ProviderUnavailable) for e in excinfo.value.errors)
    assert "serper" in str(excinfo.value) and "serpapi" in str(excinfo.value)


@pytest.mark.asyncio
async def test_both_failing_aggregates_errors(clock, make_adapter):
    primary = make_adapter("serper", default=ProviderError(provider="serper", message="serper 500", status_code=500))
    secondary = make_adapter("serpapi", default=ProviderError(provider="serpapi", message="serpapi 502", status_code=502))
    orchestrator = _orchestrator(primary, secondary, clock)

    with pytest.raises(NoProvidersAvailable) as excinfo:
        await orchestrator.execute(SearchRequest(query="python asyncio"))

    message = str(excinfo.value)
    assert "serper 500" in message
    assert "serpapi 502" in message
    assert excinfo.value.__cause__ is excinfo.value.errors[-1]


@pytest.mark.asyncio
async def test_no_secondary_raises_after_primary_failure(clock, make_adapter):
    primary = make_adapter("serper", default=ProviderError(provider="serper", message="down", status_code=500))
    orchestrator = _orchestrator(primary, None, clock)

    with pytest.raises(NoProvidersAvailable):
        await orchestrator.execute(SearchRequest(query="python asyncio"))
    assert primary.calls == 1


@pytest.mark.asyncio
async def test_open_circuit_skips_primary(clock, make_adapter):
    primary = make_adapter("serper", default=ProviderError(provider="serper", message="down", status_code=500))
    secondary = make_adapter("serpapi")
    orchestrator = _orchestrator(primary, secondary, clock, failure_threshold=1)

    await orchestrator.execute(SearchRequest(query="first"))
    assert orchestrator.primary.circuit_breaker.state == CircuitState.OPEN

    response = await orchestrator.execute(SearchRequest(query="second"))
    assert response.provider == "serpapi"
    assert primary.calls == 1
    assert secondary.calls == 2


@pytest.mark.asyncio
async def test_throttled_primary_is_retried_before_fallback(clock, make_adapter):
    primary = make_adapter(
        "serper",
        outcomes=[ProviderError(provider="serper", message="slow down", status_code=429, retryable=True)],
    )
    secondary = make_adapter("serpapi")
    orchestrator = _orchestrator(primary, secondary, clock, max_retries=2)

    response = await orchestrator.execute(SearchRequest(query="python asyncio"))

    assert response.provider == "serper"
    assert response.fallback is False
    assert primary.calls == 2
    assert secondary.calls == 0
    assert clock.sleeps == [1.0]


@pytest.mark.asyncio
async def test_slow_primary_times_out_and_falls_back(clock, make_adapter):
    class SlowAdapter:
        name = "serper"
        channel = Channel.SEARCH

        async def call(self, request):
            await asyncio.sleep(5)
            return ProviderResponse(provider=self.name, request=request, payload={})

        def to_normalized(self, response):
            raise AssertionError("never reached")

    secondary = make_adapter("serpapi")
    orchestrator = _orchestrator(SlowAdapter(), secondary, clock, timeout_s=0.01)

    response = await orchestrator.execute(SearchRequest(query="python asyncio"))

    assert response.provider == "serpapi"
    assert response.fallback is True


def test_retryable_error_classification():
    assert is_retryable_error(RateLimited(provider="serper", retry_after_s=1.0))
    assert is_retryable_error(ProviderError(provider="serper", message="x", status_code=429))
    assert is_retryable_error(ProviderError(provider="serper", message="x", timeout=True))
    assert is_retryable_error(asyncio.TimeoutError())
    assert not is_retryable_error(ProviderError(provider="serper", message="x", status_code=500))
    assert not is_retryable_error(ValueError("bad payload"))
