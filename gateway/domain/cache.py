from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from gateway.domain.adapters import Channel

DAY_S = 24 * 60 * 60
MIB = 1024 * 1024


class OperationKind(str, Enum):
    """Closed set of cacheable operations, each with its own policy."""

    CONTENT_GENERATION = "content_generation"
    QUALITY_ANALYSIS = "quality_analysis"
    FACT_VERIFICATION = "fact_verification"
    CODE_GENERATION = "code_generation"
    TRANSLATION = "translation"
    SERP_ANALYSIS = "serp_analysis"
    KEYWORD_RESEARCH = "keyword_research"
    CONTENT_SCRAPING = "content_scraping"
    COMPETITOR_ANALYSIS = "competitor_analysis"
    SCREENSHOT_CAPTURE = "screenshot_capture"


class CachePolicy(BaseModel):
    """Per-operation caching rules.

    Args:
        channel: Which provider channel serves the operation.
        enabled: Whether responses for this operation are cached at all.
        ttl_seconds: How long an entry stays readable.
        max_output_size: Upper bound on requested/returned output size
            (tokens for LLM, results for search, bytes for scrape).
        excluded_providers: Models or provider scopes never cached.
        cost_threshold: Minimum estimated USD cost for a response to be cached.
    """

    channel: Channel
    enabled: bool = True
    ttl_seconds: int = Field(gt=0)
    max_output_size: int = Field(gt=0)
    excluded_providers: list[str] = Field(default_factory=list)
    cost_threshold: Decimal = Decimal("0")


DEFAULT_CACHE_POLICIES: dict[OperationKind, CachePolicy] = {
    # Fast-changing facts go stale in a day; translations barely change.
    OperationKind.CONTENT_GENERATION: CachePolicy(
        channel=Channel.LLM, ttl_seconds=7 * DAY_S, max_output_size=4000, cost_threshold=Decimal("0.01"),
    ),
    OperationKind.QUALITY_ANALYSIS: CachePolicy(
        channel=Channel.LLM, ttl_seconds=30 * DAY_S, max_output_size=2000, cost_threshold=Decimal("0.005"),
    ),
    OperationKind.FACT_VERIFICATION: CachePolicy(
        channel=Channel.LLM, ttl_seconds=DAY_S, max_output_size=1000, cost_threshold=Decimal("0.002"),
    ),
    OperationKind.CODE_GENERATION: CachePolicy(
        channel=Channel.LLM, ttl_seconds=14 * DAY_S, max_output_size=3000, cost_threshold=Decimal("0.01"),
    ),
    OperationKind.TRANSLATION: CachePolicy(
        channel=Channel.LLM, ttl_seconds=90 * DAY_S, max_output_size=2000, cost_threshold=Decimal("0.001"),
    ),
    OperationKind.SERP_ANALYSIS: CachePolicy(
        channel=Channel.SEARCH, ttl_seconds=DAY_S, max_output_size=100, cost_threshold=Decimal("0.001"),
    ),
    OperationKind.KEYWORD_RESEARCH: CachePolicy(
        channel=Channel.SEARCH, ttl_seconds=7 * DAY_S, max_output_size=100, cost_threshold=Decimal("0.001"),
    ),
    OperationKind.CONTENT_SCRAPING: CachePolicy(
        channel=Channel.SCRAPE, ttl_seconds=7 * DAY_S, max_output_size=MIB, cost_threshold=Decimal("0.001"),
    ),
    OperationKind.COMPETITOR_ANALYSIS: CachePolicy(
        channel=Channel.SCRAPE, ttl_seconds=3 * DAY_S, max_output_size=2 * MIB, cost_threshold=Decimal("0.01"),
    ),
    OperationKind.SCREENSHOT_CAPTURE: CachePolicy(
        channel=Channel.SCRAPE, ttl_seconds=DAY_S, max_output_size=5 * MIB, cost_threshold=Decimal("0.005"),
    ),
}


def build_policy_table(
    overrides: dict[OperationKind, CachePolicy] | None = None,
) -> dict[OperationKind, CachePolicy]:
    """Merge configured overrides onto the default table.

    Every ``OperationKind`` ends up with exactly one policy.
    """

    table = dict(DEFAULT_CACHE_POLICIES)
    if overrides:
        table.update(overrides)
    return table


@dataclass(frozen=True, slots=True)
class RequestFingerprint:
    namespace: str
    operation: OperationKind
    scope: str
    digest: str

    @property
    def key(self) -> str:
        return f"{self.operation.value}:{self.scope}:{self.digest}"


class CacheEntry(BaseModel):
    key: str
    namespace: str
    value: dict[str, Any]
    ttl_seconds: int
    created_at: float
    cost_estimate: Decimal

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_seconds


@dataclass(slots=True)
class CacheStatistics:
    hits: int = 0
    misses: int = 0
    total_savings: Decimal = field(default_factory=lambda: Decimal("0"))
    total_spent: Decimal = field(default_factory=lambda: Decimal("0"))
    units_served: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "total_savings": str(self.total_savings),
            "total_spent": str(self.total_spent),
            "units_served": self.units_served,
        }


class CacheStore(Protocol):
    """Storage capability the response cache is written against."""

    async def get(self, namespace: str, key: str) -> str | None:
        """Return the stored value or ``None``."""

    async def set(self, namespace: str, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` with an expiry."""

    async def delete_by_pattern(self, namespace: str, pattern: str) -> int:
        """Delete keys in ``namespace`` matching the glob ``pattern``."""

    async def delete_namespace(self, namespace: str) -> int:
        """Delete every key in ``namespace``."""
