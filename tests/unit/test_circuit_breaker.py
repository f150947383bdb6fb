from __future__ import annotations

import asyncio

import pytest

from gateway.domain.circuit_breaker import CircuitBreaker, CircuitState
from gateway.domain.errors import ProviderError, ProviderUnavailable


async def _fail():
    raise ProviderError(provider="openai", message="boom", status_code=500)


async def _succeed():
    return "ok"


async def _trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(ProviderError):
            await breaker.execute(_fail)


@pytest.mark.asyncio
async def test_open_reject_then_half_open_recovery(clock):
    breaker = CircuitBreaker("openai", failure_threshold=3, cooldown_s=5.0, clock=clock)

    await _trip(breaker, 3)
    assert breaker.state == CircuitState.OPEN
    assert breaker.failure_count == 3

    calls = 0

    async def spy():
        nonlocal calls
        calls += 1
        return "ok"

    clock.advance(1.0)
    with pytest.raises(ProviderUnavailable) as excinfo:
        await breaker.execute(spy)
    assert calls == 0
    assert "service temporarily unavailable" in str(excinfo.value)

    clock.advance(5.0)
    assert await breaker.execute(spy) == "ok"
    assert calls == 1
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_failure_below_threshold_stays_closed(clock):
    breaker = CircuitBreaker("openai", failure_threshold=3, cooldown_s=5.0, clock=clock)
    await _trip(breaker, 2)
    assert breaker.state == CircuitState.CLOSED

    await breaker.execute(_succeed)
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens(clock):
    breaker = CircuitBreaker("openai", failure_threshold=2, cooldown_s=5.0, clock=clock)
    await _trip(breaker, 2)

    clock.advance(5.0)
    await _trip(breaker, 1)
    assert breaker.state == CircuitState.OPEN
    assert breaker.last_failure_time == clock()
    assert not breaker.allow_request()


@pytest.mark.asyncio
async def test_half_open_admits_single_trial(clock):
    breaker = CircuitBreaker("openai", failure_threshold=1, cooldown_s=5.0, clock=clock)
    await _trip(breaker, 1)
    clock.advance(5.0)

    release = asyncio.Event()

    async def slow_trial():
        await release.wait()
        return "trial"

    trial = asyncio.create_task(breaker.execute(slow_trial))
    await asyncio.sleep(0)
    assert breaker.state == CircuitState.HALF_OPEN

    with pytest.raises(ProviderUnavailable):
        await breaker.execute(_succeed)

    release.set()
    assert await trial == "trial"
    assert breaker.state == CircuitState.CLOSED
