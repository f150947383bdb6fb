from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from gateway.core.logging import get_logger, log_fields
from gateway.domain.adapters import ProviderQuota

logger = get_logger(__name__)

QuotaProbe = Callable[[], Awaitable[ProviderQuota]]


@dataclass(slots=True)
class ProviderHealthRecord:
    provider_id: str
    available: bool = True
    failure_count: int = 0
    last_check: float | None = None
    quota: ProviderQuota | None = None


class ProviderHealthRegistry:
    """Coarse, cross-call availability gate per logical provider.

    A provider goes unavailable after ``failure_threshold`` recorded failures
    and comes back once ``cooldown_s`` has passed since the last one. Recovery
    is optimistic: no probe is made, the next real call decides.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        cooldown_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._records: dict[str, ProviderHealthRecord] = {}
        self._probes: dict[str, QuotaProbe] = {}

    def register(self, provider_id: str, quota_probe: QuotaProbe | None = None) -> None:
        self._records.setdefault(provider_id, ProviderHealthRecord(provider_id=provider_id))
        if quota_probe is not None:
            self._probes[provider_id] = quota_probe

    def _record(self, provider_id: str) -> ProviderHealthRecord:
        record = self._records.get(provider_id)
        if record is None:
            record = self._records[provider_id] = ProviderHealthRecord(provider_id=provider_id)
        return record

    def get_record(self, provider_id: str) -> ProviderHealthRecord:
        return replace(self._record(provider_id))

    def is_available(self, provider_id: str) -> bool:
        record = self._record(provider_id)
        if record.failure_count < self.failure_threshold:
            return True
        assert record.last_check is not None
        if self._clock() - record.last_check < self.cooldown_s:
            return False

        record.failure_count = 0
        record.available = True
        logger.info(
            "Provider optimistically marked available after cooldown",
            extra=log_fields(provider=provider_id, cooldown_s=self.cooldown_s),
        )
        return True

    def record_failure(self, provider_id: str) -> None:
        record = self._record(provider_id)
        record.failure_count += 1
        record.last_check = self._clock()
        if record.failure_count >= self.failure_threshold and record.available:
            record.available = False
            logger.warning(
                "Provider marked unavailable",
                extra=log_fields(
                    provider=provider_id,
                    failure_count=record.failure_count,
                    cooldown_s=self.cooldown_s,
                ),
            )

    def record_success(self, provider_id: str) -> None:
        record = self._record(provider_id)
        record.failure_count = 0
        record.available = True
        record.last_check = self._clock()

    async def check_health(self) -> list[ProviderHealthRecord]:
        """Snapshot every record, refreshing quota where a probe exists.

        Quota data is advisory; a failing probe leaves ``quota`` as it was.
        """

        for provider_id, record in list(self._records.items()):
            probe = self._probes.get(provider_id)
            if probe is None:
                continue
            try:
                record.quota = await probe()
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Quota probe failed",
                    extra=log_fields(provider=provider_id, error=str(exc)),
                )
        return [replace(r) for r in self._records.values()]
