from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

from gateway.core.logging import get_logger, log_fields
from gateway.domain.errors import RateLimited
from gateway.monitoring.metrics import ADMISSION_DELAY_SECONDS, RATE_LIMIT_WAITS_TOTAL

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class RateLimitWindow:
    request_count: int = 0
    window_start: float = 0.0
    last_request_time: float | None = None


class RateLimiter:
    """Fixed-window admission control with exponential-backoff retries.

    ``acquire`` never drops a request: when the window is full the caller is
    suspended until the window rolls over and the check runs again. Waiting
    is bounded by ``max_wait_cycles`` re-checks, after which ``RateLimited``
    is raised.
    """

    def __init__(
        self,
        *,
        name: str,
        max_requests: int,
        window_s: float,
        max_retries: int = 3,
        base_backoff_s: float = 1.0,
        max_wait_cycles: int = 100,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        self.name = name
        self.max_requests = max_requests
        self.window_s = window_s
        self.max_retries = max_retries
        self.base_backoff_s = base_backoff_s
        self.max_wait_cycles = max_wait_cycles
        self._clock = clock
        self._sleep = sleep
        self._window = RateLimitWindow(window_start=clock())

    def snapshot(self) -> RateLimitWindow:
        return replace(self._window)

    async def acquire(self) -> None:
        started = self._clock()
        for _ in range(self.max_wait_cycles + 1):
            now = self._clock()
            window = self._window
            if now - window.window_start >= self.window_s:
                window.request_count = 0
                window.window_start = now

            if window.request_count < self.max_requests:
                window.request_count += 1
                window.last_request_time = now
                waited = now - started
                if waited > 0:
                    ADMISSION_DELAY_SECONDS.labels(provider=self.name).observe(waited)
                return

            wait_s = self.window_s - (now - window.window_start)
            RATE_LIMIT_WAITS_TOTAL.labels(provider=self.name).inc()
            logger.info(
                "Admission delayed",
                extra=log_fields(
                    provider=self.name,
                    wait_s=round(wait_s, 4),
                    request_count=window.request_count,
                    max_requests=self.max_requests,
                ),
            )
            await self._sleep(wait_s)

        raise RateLimited(
            provider=self.name,
            retry_after_s=max(0.0, self.window_s - (self._clock() - self._window.window_start)),
        )

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_predicate: Callable[[BaseException], bool],
    ) -> T:
        attempt = 0
        while True:
            await self.acquire()
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_retries or not retry_predicate(exc):
                    raise
                backoff_s = self.base_backoff_s * 2**attempt
                logger.warning(
                    "Retrying after transient error",
                    extra=log_fields(
                        provider=self.name,
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        backoff_s=backoff_s,
                        error=str(exc),
                    ),
                )
                attempt += 1
                await self._sleep(backoff_s)
