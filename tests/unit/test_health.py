from __future__ import annotations

import asyncio

import pytest

from gateway.domain.adapters import ProviderQuota
from gateway.domain.health import ProviderHealthRegistry


def test_unavailable_after_threshold_until_cooldown(clock):
    registry = ProviderHealthRegistry(failure_threshold=3, cooldown_s=10.0, clock=clock)
    registry.register("serper")

    registry.record_failure("serper")
    registry.record_failure("serper")
    assert registry.is_available("serper")

    registry.record_failure("serper")
    assert not registry.is_available("serper")
    assert not registry.get_record("serper").available

    clock.advance(9.0)
    assert not registry.is_available("serper")

    clock.advance(1.0)
    assert registry.is_available("serper")
    record = registry.get_record("serper")
    assert record.failure_count == 0
    assert record.available


def test_success_resets_failures(clock):
    registry = ProviderHealthRegistry(failure_threshold=2, cooldown_s=10.0, clock=clock)
    registry.record_failure("firecrawl")
    registry.record_success("firecrawl")
    registry.record_failure("firecrawl")

    assert registry.is_available("firecrawl")
    assert registry.get_record("firecrawl").failure_count == 1


def test_get_record_returns_a_copy(clock):
    registry = ProviderHealthRegistry(clock=clock)
    registry.register("openai")
    snapshot = registry.get_record("openai")
    snapshot.failure_count = 99
    assert registry.get_record("openai").failure_count == 0


@pytest.mark.asyncio
async def test_check_health_refreshes_quota_and_tolerates_probe_errors(clock):
    registry = ProviderHealthRegistry(clock=clock)

    async def serpapi_quota():
        return ProviderQuota(used=40, limit=100)

    async def broken_quota():
        raise RuntimeError("usage endpoint down")

    registry.register("serpapi", serpapi_quota)
    registry.register("scrapingbee", broken_quota)
    registry.register("serper")

    records = {r.provider_id: r for r in await registry.check_health()}

    assert records["serpapi"].quota == ProviderQuota(used=40, limit=100)
    assert records["serpapi"].quota.remaining == 60
    assert records["scrapingbee"].quota is None
    assert records["serper"].available


@pytest.mark.asyncio
async def test_check_health_tolerates_providers_added_while_probing(clock):
    registry = ProviderHealthRegistry(clock=clock)
    release = asyncio.Event()

    async def slow_quota():
        await release.wait()
        return ProviderQuota(used=1, limit=10)

    registry.register("serpapi", slow_quota)
    task = asyncio.create_task(registry.check_health())
    await asyncio.sleep(0)

    registry.record_failure("late-provider")
    release.set()
    records = {r.provider_id: r for r in await task}

    assert records["serpapi"].quota == ProviderQuota(used=1, limit=10)
    assert records["late-provider"].failure_count == 1
