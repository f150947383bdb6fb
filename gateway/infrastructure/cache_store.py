from __future__ import annotations

from typing import Any

from redis.exceptions import RedisError

from gateway.domain.errors import CacheStoreError


class RedisCacheStore:
    """``CacheStore`` capability backed by a Redis-compatible async client.

    Keys are laid out as ``{prefix}:{namespace}:{key}``. Pattern and namespace
    deletes walk the keyspace with ``SCAN`` rather than ``KEYS`` so they do not
    block a shared server.
    """

    def __init__(self, redis: Any, *, prefix: str = "gw:cache", scan_count: int = 500) -> None:
        self._redis = redis
        self._prefix = prefix
        self._scan_count = scan_count

    def _full_key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}:{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> str | None:
        try:
            raw = await self._redis.get(self._full_key(namespace, key))
        except (RedisError, OSError) as exc:
            raise CacheStoreError(operation="get", namespace=namespace, message=str(exc)) from exc
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    async def set(self, namespace: str, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(self._full_key(namespace, key), value, ex=ttl_seconds)
        except (RedisError, OSError) as exc:
            raise CacheStoreError(operation="set", namespace=namespace, message=str(exc)) from exc

    async def _delete_matching(self, namespace: str, match: str) -> int:
        deleted = 0
        batch: list[Any] = []
        try:
            async for key in self._redis.scan_iter(match=match, count=self._scan_count):
                batch.append(key)
                if len(batch) >= self._scan_count:
                    deleted += await self._redis.delete(*batch)
                    batch.clear()
            if batch:
                deleted += await self._redis.delete(*batch)
        except (RedisError, OSError) as exc:
            raise CacheStoreError(operation="delete", namespace=namespace, message=str(exc)) from exc
        return deleted

    async def delete_by_pattern(self, namespace: str, pattern: str) -> int:
        return await self._delete_matching(namespace, self._full_key(namespace, pattern))

    async def delete_namespace(self, namespace: str) -> int:
        return await self._delete_matching(namespace, self._full_key(namespace, "*"))
