from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from fnmatch import fnmatchcase
from typing import Optional


class InMemoryRedis:
    """A minimal in-memory stand-in for the Redis commands the cache store uses."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, bytes] = {}
        self._expires_at: dict[str, float] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            self._purge_if_expired(key)
            return self._data.get(key)

    async def set(
        self,
        key: str,
        value: str | bytes,
        ex: Optional[int] = None,
    ) -> bool:
        async with self._lock:
            self._purge_if_expired(key)
            self._data[key] = value.encode("utf-8") if isinstance(value, str) else value
            if ex is not None:
                self._expires_at[key] = self._clock() + ex
            else:
                self._expires_at.pop(key, None)
            return True

    async def delete(self, *keys: str | bytes) -> int:
        count = 0
        async with self._lock:
            for k in keys:
                if isinstance(k, bytes):
                    k = k.decode("utf-8")
                if k in self._data:
                    del self._data[k]
                    self._expires_at.pop(k, None)
                    count += 1
        return count

    async def scan_iter(self, match: str | None = None, count: int | None = None) -> AsyncIterator[bytes]:
        async with self._lock:
            for key in list(self._data):
                self._purge_if_expired(key)
            keys = [k for k in self._data if match is None or fnmatchcase(k, match)]
        for key in keys:
            yield key.encode("utf-8")

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


def get_memory_redis() -> InMemoryRedis:
    """Return a fresh in-memory Redis stand-in."""
    return InMemoryRedis()
