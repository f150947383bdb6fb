from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from pydantic import TypeAdapter, ValidationError

from gateway.application.fingerprint import compute_fingerprint
from gateway.application.pricing import estimate_request_cost, estimate_response_cost
from gateway.core.logging import get_logger, log_fields
from gateway.domain.adapters import (
    AnyNormalizedResponse,
    GatewayRequest,
    NormalizedResponse,
    ScrapeResponse,
)
from gateway.domain.cache import (
    CacheEntry,
    CachePolicy,
    CacheStatistics,
    CacheStore,
    OperationKind,
)
from gateway.domain.errors import CacheStoreError
from gateway.monitoring.metrics import (
    CACHE_HITS_TOTAL,
    CACHE_MISS_TOTAL,
    CACHE_SAVINGS_TOTAL,
    CACHE_STORE_ERRORS_TOTAL,
)

logger = get_logger(__name__)

_RESPONSE_ADAPTER: TypeAdapter[NormalizedResponse] = TypeAdapter(AnyNormalizedResponse)


class ResponseCache:
    """Cost-aware cache-aside layer in front of the orchestrators.

    Cacheability is decided before any hashing. Store failures are logged and
    degrade to a miss or a skipped write; they never fail the request.
    """

    def __init__(
        self,
        store: CacheStore,
        policies: Mapping[OperationKind, CachePolicy],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        missing = set(OperationKind) - set(policies)
        if missing:
            raise ValueError(f"No cache policy for: {sorted(k.value for k in missing)}")
        self._store = store
        self._policies = dict(policies)
        self._clock = clock
        self._stats = CacheStatistics()

    def policy_for(self, operation: OperationKind) -> CachePolicy:
        return self._policies[operation]

    def _excluded(self, request: GatewayRequest, policy: CachePolicy, provider: str) -> bool:
        excluded = policy.excluded_providers
        return request.cache_scope in excluded or provider in excluded

    def _within_size_cap(self, request: GatewayRequest, policy: CachePolicy) -> bool:
        requested = request.requested_output_size
        return requested is None or requested <= policy.max_output_size

    def should_cache(
        self,
        request: GatewayRequest,
        operation: OperationKind,
        namespace: str,
    ) -> bool:
        policy = self._policies[operation]
        if not policy.enabled:
            return False
        if request.is_streaming:
            return False
        if self._excluded(request, policy, namespace):
            return False
        if not self._within_size_cap(request, policy):
            return False
        return estimate_request_cost(request, namespace) >= policy.cost_threshold

    async def get(
        self,
        request: GatewayRequest,
        operation: OperationKind,
        namespace: str,
    ) -> NormalizedResponse | None:
        if not self.should_cache(request, operation, namespace):
            return None

        fingerprint = compute_fingerprint(request, operation, namespace)
        try:
            raw = await self._store.get(namespace, fingerprint.key)
        except CacheStoreError as exc:
            self._store_failed(exc, operation)
            return None

        decoded = self._decode(raw, namespace) if raw is not None else None
        if raw is not None and (decoded is None or decoded[0].is_expired(self._clock())):
            await self._discard(namespace, fingerprint.key, operation)
            decoded = None

        if decoded is None:
            self._stats.misses += 1
            CACHE_MISS_TOTAL.labels(operation=operation.value).inc()
            logger.info(
                "Cache miss",
                extra=log_fields(namespace=namespace, operation=operation.value, key=fingerprint.key),
            )
            return None

        entry, value = decoded
        savings = estimate_response_cost(request, value)
        self._stats.hits += 1
        self._stats.total_savings += savings
        self._stats.units_served += value.units
        CACHE_HITS_TOTAL.labels(operation=operation.value).inc()
        CACHE_SAVINGS_TOTAL.labels(operation=operation.value).inc(float(savings))
        logger.info(
            "Cache hit",
            extra=log_fields(
                namespace=namespace,
                operation=operation.value,
                key=fingerprint.key,
                saved_usd=str(savings),
            ),
        )
        return value.model_copy(
            update={
                "cached": True,
                "cached_at": datetime.fromtimestamp(entry.created_at, tz=timezone.utc),
            },
        )

    async def set(
        self,
        request: GatewayRequest,
        value: NormalizedResponse,
        operation: OperationKind,
        namespace: str,
    ) -> bool:
        """Store a fresh upstream response; returns whether it was cached."""

        cost = estimate_response_cost(request, value)
        self._stats.total_spent += cost
        policy = self._policies[operation]

        if not self.should_cache(request, operation, namespace):
            logger.debug(
                "Response not cacheable",
                extra=log_fields(namespace=namespace, operation=operation.value, cost_usd=str(cost)),
            )
            return False
        if isinstance(value, ScrapeResponse) and value.content_size > policy.max_output_size:
            return False

        fingerprint = compute_fingerprint(request, operation, namespace)
        entry = CacheEntry(
            key=fingerprint.key,
            namespace=namespace,
            value=value.model_copy(update={"cached": False, "cached_at": None}).model_dump(mode="json"),
            ttl_seconds=policy.ttl_seconds,
            created_at=self._clock(),
            cost_estimate=cost,
        )
        try:
            await self._store.set(namespace, fingerprint.key, entry.model_dump_json(), policy.ttl_seconds)
        except CacheStoreError as exc:
            self._store_failed(exc, operation)
            return False

        logger.info(
            "Cache populated",
            extra=log_fields(
                namespace=namespace,
                operation=operation.value,
                key=fingerprint.key,
                ttl_seconds=policy.ttl_seconds,
                spent_usd=str(cost),
            ),
        )
        return True

    async def invalidate(self, pattern: str | None = None, *, namespace: str) -> int:
        """Delete entries by key prefix/glob, or the whole namespace.

        Deletion is immediate; failures propagate as ``CacheStoreError`` since
        an administrative caller needs to know the purge did not happen.
        """

        if pattern:
            match = pattern if any(ch in pattern for ch in "*?[") else f"{pattern}*"
            deleted = await self._store.delete_by_pattern(namespace, match)
        else:
            deleted = await self._store.delete_namespace(namespace)
        logger.info(
            "Cache invalidated",
            extra=log_fields(namespace=namespace, pattern=pattern, deleted=deleted),
        )
        return deleted

    def get_statistics(self) -> CacheStatistics:
        s = self._stats
        return CacheStatistics(
            hits=s.hits,
            misses=s.misses,
            total_savings=s.total_savings,
            total_spent=s.total_spent,
            units_served=s.units_served,
        )

    def reset_statistics(self) -> None:
        self._stats = CacheStatistics()

    def _decode(self, raw: str, namespace: str) -> tuple[CacheEntry, NormalizedResponse] | None:
        try:
            entry = CacheEntry.model_validate_json(raw)
            return entry, _RESPONSE_ADAPTER.validate_python(entry.value)
        except ValidationError:
            logger.warning("Discarding undecodable cache entry", extra=log_fields(namespace=namespace))
            return None

    async def _discard(self, namespace: str, key: str, operation: OperationKind) -> None:
        try:
            await self._store.delete_by_pattern(namespace, key)
        except CacheStoreError as exc:
            self._store_failed(exc, operation)

    def _store_failed(self, exc: CacheStoreError, operation: OperationKind) -> None:
        CACHE_STORE_ERRORS_TOTAL.labels(operation=operation.value).inc()
        logger.warning(
            "Cache store unavailable, falling through to upstream",
            extra=log_fields(namespace=exc.namespace, operation=exc.operation, error=str(exc)),
        )
