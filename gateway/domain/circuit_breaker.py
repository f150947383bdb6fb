from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from gateway.core.logging import get_logger, log_fields
from gateway.domain.errors import ProviderUnavailable
from gateway.monitoring.metrics import CIRCUIT_BREAKER_TRANSITIONS

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker for one guarded call path.

    State is read and written between awaits only, so concurrent callers on
    one event loop see atomic transitions. Half-open admits a single trial
    call; others are rejected until that trial settles.
    """

    def __init__(
        self,
        provider: str,
        *,
        failure_threshold: int = 5,
        cooldown_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.cooldown_s = cooldown_s
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: float | None = None
        self._trial_in_flight = False

    def _transition(self, state: CircuitState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        CIRCUIT_BREAKER_TRANSITIONS.labels(provider=self.provider, state=state.value).inc()
        logger.warning(
            "Circuit breaker transition",
            extra=log_fields(
                provider=self.provider,
                from_state=previous.value,
                to_state=state.value,
                failure_count=self.failure_count,
            ),
        )

    def allow_request(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            assert self.last_failure_time is not None
            if self._clock() - self.last_failure_time >= self.cooldown_s:
                self._transition(CircuitState.HALF_OPEN)
                return True
            return False
        # Half-open: allow a single trial request.
        return not self._trial_in_flight

    def on_success(self) -> None:
        self.failure_count = 0
        if self.state != CircuitState.CLOSED:
            self.last_failure_time = None
            self._transition(CircuitState.CLOSED)

    def on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        if not self.allow_request():
            raise ProviderUnavailable(
                provider=self.provider,
                reason="service temporarily unavailable",
            )

        trial = self.state == CircuitState.HALF_OPEN
        if trial:
            self._trial_in_flight = True
        try:
            result = await operation()
        except Exception:
            self.on_failure()
            raise
        else:
            self.on_success()
            return result
        finally:
            if trial:
                self._trial_in_flight = False
