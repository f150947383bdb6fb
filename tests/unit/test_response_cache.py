from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from gateway.application.fingerprint import compute_fingerprint
from gateway.application.services.response_cache import ResponseCache
from gateway.domain.adapters import (
    CompletionResponse,
    LLMCompletionRequest,
    LLMMessage,
    MessageRole,
    ScrapeRequest,
    ScrapeResponse,
    Usage,
)
from gateway.domain.cache import DAY_S, MIB, CacheEntry, CachePolicy, OperationKind, build_policy_table
from gateway.domain.errors import CacheStoreError
from gateway.infrastructure.cache_store import RedisCacheStore
from gateway.infrastructure.memory_client import InMemoryRedis

OP = OperationKind.CONTENT_GENERATION


def _request(**kwargs) -> LLMCompletionRequest:
    kwargs.setdefault("model", "gpt-4o")
    kwargs.setdefault("messages", [LLMMessage(role=MessageRole.USER, content="Write a haiku about caches")])
    return LLMCompletionRequest(**kwargs)


def _completion(model: str = "gpt-4o", prompt_tokens: int = 500, completion_tokens: int = 1000) -> CompletionResponse:
    return CompletionResponse(
        provider="openai",
        model=model,
        content="Keys fall like leaves",
        usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _cache(clock, policies=None) -> tuple[ResponseCache, InMemoryRedis]:
    redis = InMemoryRedis(clock=clock)
    cache = ResponseCache(RedisCacheStore(redis), build_policy_table(policies), clock=clock)
    return cache, redis


async def _keys(redis: InMemoryRedis) -> list[bytes]:
    return [key async for key in redis.scan_iter(match="*")]


class FailingStore:
    async def get(self, namespace, key):
        raise CacheStoreError(operation="get", namespace=namespace, message="connection refused")

    async def set(self, namespace, key, value, ttl_seconds):
        raise CacheStoreError(operation="set", namespace=namespace, message="connection refused")

    async def delete_by_pattern(self, namespace, pattern):
        raise CacheStoreError(operation="delete", namespace=namespace, message="connection refused")

    async def delete_namespace(self, namespace):
        raise CacheStoreError(operation="delete", namespace=namespace, message="connection refused")


@pytest.mark.asyncio
async def test_round_trip_marks_response_cached(clock):
    cache, redis = _cache(clock)
    request = _request()

    assert await cache.get(request, OP, "openai") is None
    stored_at = clock()
    assert await cache.set(request, _completion(), OP, "openai") is True
    assert await _keys(redis) != []

    clock.advance(60)
    hit = await cache.get(request, OP, "openai")

    assert hit is not None
    assert hit.cached is True
    assert hit.cached_at == datetime.fromtimestamp(stored_at, tz=timezone.utc)
    assert hit.content == "Keys fall like leaves"
    assert hit.provider == "openai"

    stats = cache.get_statistics()
    assert (stats.hits, stats.misses) == (1, 1)
    assert stats.total_savings == Decimal("0.01125")
    assert stats.total_spent == Decimal("0.01125")
    assert stats.units_served == 1500
    assert stats.hit_rate == 0.5


@pytest.mark.asyncio
async def test_entry_absent_after_ttl(clock):
    cache, _ = _cache(clock)
    request = _request()
    await cache.set(request, _completion(), OP, "openai")

    clock.advance(7 * DAY_S - 1)
    assert await cache.get(request, OP, "openai") is not None

    clock.advance(1)
    assert await cache.get(request, OP, "openai") is None


@pytest.mark.asyncio
async def test_omitted_defaults_share_an_entry(clock):
    cache, _ = _cache(clock)
    await cache.set(_request(), _completion(), OP, "openai")

    explicit = _request(temperature=0.7, top_p=1.0, frequency_penalty=0.0, presence_penalty=0.0)
    assert await cache.get(explicit, OP, "openai") is not None

    different = _request(temperature=0.2)
    assert await cache.get(different, OP, "openai") is None


@pytest.mark.asyncio
async def test_sub_threshold_cost_is_never_stored(clock):
    cache, redis = _cache(clock)
    request = _request(model="gpt-4o-mini")

    stored = await cache.set(request, _completion("gpt-4o-mini", 10, 10), OP, "openai")

    assert stored is False
    assert await _keys(redis) == []
    assert await cache.get(request, OP, "openai") is None
    assert cache.get_statistics().misses == 0
    assert cache.get_statistics().total_spent > 0


@pytest.mark.asyncio
async def test_streaming_requests_bypass_cache(clock):
    cache, redis = _cache(clock)
    request = _request(stream=True)

    assert await cache.set(request, _completion(), OP, "openai") is False
    assert await cache.get(request, OP, "openai") is None
    assert await _keys(redis) == []


@pytest.mark.asyncio
async def test_excluded_models_and_disabled_policies(clock):
    overrides = {
        OP: CachePolicy(channel="llm", ttl_seconds=DAY_S, max_output_size=4000, excluded_providers=["gpt-4o"]),
        OperationKind.TRANSLATION: CachePolicy(channel="llm", enabled=False, ttl_seconds=DAY_S, max_output_size=2000),
    }
    cache, redis = _cache(clock, overrides)

    assert await cache.set(_request(), _completion(), OP, "openai") is False
    assert await cache.set(_request(), _completion(), OperationKind.TRANSLATION, "openai") is False
    assert await _keys(redis) == []


@pytest.mark.asyncio
async def test_requested_output_above_cap_is_not_cached(clock):
    cache, _ = _cache(clock)
    request = _request(max_tokens=2000)

    assert await cache.set(request, _completion(), OperationKind.FACT_VERIFICATION, "openai") is False
    assert await cache.get(request, OperationKind.FACT_VERIFICATION, "openai") is None
    assert cache.get_statistics().misses == 0


@pytest.mark.asyncio
async def test_oversized_scrape_content_is_not_cached(clock):
    cache, redis = _cache(clock)
    request = ScrapeRequest(url="https://example.com/article")
    huge = ScrapeResponse(provider="firecrawl", url=request.url, markdown="x" * (MIB + 1))
    small = ScrapeResponse(provider="firecrawl", url=request.url, markdown="# Article")

    assert await cache.set(request, huge, OperationKind.CONTENT_SCRAPING, "firecrawl") is False
    assert await _keys(redis) == []
    assert await cache.set(request, small, OperationKind.CONTENT_SCRAPING, "firecrawl") is True


@pytest.mark.asyncio
async def test_invalidate_by_prefix_then_namespace(clock):
    cache, redis = _cache(clock)
    await cache.set(_request(), _completion(), OP, "openai")
    await cache.set(_request(), _completion(), OperationKind.TRANSLATION, "openai")
    await cache.set(
        ScrapeRequest(url="https://example.com/"),
        ScrapeResponse(provider="firecrawl", url="https://example.com/", markdown="# Home"),
        OperationKind.CONTENT_SCRAPING,
        "firecrawl",
    )

    assert await cache.invalidate("translation", namespace="openai") == 1
    assert await cache.get(_request(), OperationKind.TRANSLATION, "openai") is None
    assert await cache.get(_request(), OP, "openai") is not None

    assert await cache.invalidate(namespace="openai") == 1
    assert await cache.get(_request(), OP, "openai") is None
    assert len(await _keys(redis)) == 1


@pytest.mark.asyncio
async def test_store_failures_degrade_to_miss(clock):
    cache = ResponseCache(FailingStore(), build_policy_table(), clock=clock)
    request = _request()
    before = REGISTRY.get_sample_value("gateway_cache_store_errors_total", {"operation": OP.value}) or 0.0

    assert await cache.get(request, OP, "openai") is None
    assert await cache.set(request, _completion(), OP, "openai") is False

    after = REGISTRY.get_sample_value("gateway_cache_store_errors_total", {"operation": OP.value})
    assert after == before + 2


@pytest.mark.asyncio
async def test_invalidate_surfaces_store_failures(clock):
    cache = ResponseCache(FailingStore(), build_policy_table(), clock=clock)
    with pytest.raises(CacheStoreError):
        await cache.invalidate(namespace="openai")


@pytest.mark.asyncio
async def test_reset_statistics(clock):
    cache, _ = _cache(clock)
    await cache.get(_request(), OP, "openai")
    cache.reset_statistics()
    assert cache.get_statistics().as_dict() == {
        "hits": 0,
        "misses": 0,
        "hit_rate": 0.0,
        "total_savings": "0",
        "total_spent": "0",
        "units_served": 0,
    }


def test_every_operation_needs_a_policy(clock):
    with pytest.raises(ValueError):
        ResponseCache(FailingStore(), {OP: build_policy_table()[OP]}, clock=clock)


@pytest.mark.asyncio
async def test_dated_model_id_does_not_bypass_cost_threshold(clock):
    cache, redis = _cache(clock)
    request = _request(model="gpt-4o-mini")

    stored = await cache.set(request, _completion("gpt-4o-mini-2024-07-18", 10, 10), OP, "openai")

    assert stored is False
    assert await _keys(redis) == []
    assert cache.get_statistics().total_spent < Decimal("0.001")


@pytest.mark.asyncio
async def test_fallback_model_response_is_gated_by_the_request(clock):
    cache, _ = _cache(clock)
    request = _request()
    substituted = _completion("claude-3-haiku-latest", 10, 10)

    assert await cache.set(request, substituted, OP, "openai") is True
    hit = await cache.get(request, OP, "openai")
    assert hit is not None and hit.model == "claude-3-haiku-latest"


@pytest.mark.asyncio
async def test_incompatible_entry_is_discarded_as_miss(clock):
    cache, redis = _cache(clock)
    request = _request()
    key = compute_fingerprint(request, OP, "openai").key
    stale = CacheEntry(
        key=key,
        namespace="openai",
        value={"kind": "completion", "provider": "openai"},
        ttl_seconds=DAY_S,
        created_at=clock(),
        cost_estimate=Decimal("0.01"),
    )
    await RedisCacheStore(redis).set("openai", key, stale.model_dump_json(), DAY_S)

    assert await cache.get(request, OP, "openai") is None
    assert cache.get_statistics().misses == 1
    assert await _keys(redis) == []
