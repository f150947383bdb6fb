from __future__ import annotations

from prometheus_client import Counter, Histogram


PROVIDER_REQUESTS_TOTAL = Counter(
    "gateway_provider_requests_total",
    "Total number of provider calls",
    ["provider", "status"],
)

PROVIDER_REQUEST_DURATION_SECONDS = Histogram(
    "gateway_provider_request_duration_seconds",
    "Provider call duration in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

TOKENS_TOTAL = Counter(
    "gateway_tokens_total",
    "Total LLM tokens processed",
    ["provider", "model", "type"],
)

COST_TOTAL = Counter(
    "gateway_cost_total",
    "Estimated upstream spend in USD",
    ["provider"],
)

ADMISSION_DELAY_SECONDS = Histogram(
    "gateway_admission_delay_seconds",
    "Time callers spent waiting for rate limiter admission",
    ["provider"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0),
)

RATE_LIMIT_WAITS_TOTAL = Counter(
    "gateway_rate_limit_waits_total",
    "Number of times a caller was suspended by the rate limiter",
    ["provider"],
)

CIRCUIT_BREAKER_TRANSITIONS = Counter(
    "gateway_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["provider", "state"],
)

PROVIDER_FALLBACK_TOTAL = Counter(
    "gateway_provider_fallback_total",
    "Requests served by a secondary provider",
    ["channel", "from_provider", "to_provider"],
)

CACHE_HITS_TOTAL = Counter(
    "gateway_cache_hits_total",
    "Total cache hits",
    ["operation"],
)

CACHE_MISS_TOTAL = Counter(
    "gateway_cache_miss_total",
    "Total cache misses",
    ["operation"],
)

CACHE_SAVINGS_TOTAL = Counter(
    "gateway_cache_savings_total",
    "Estimated USD saved by serving from cache",
    ["operation"],
)

CACHE_STORE_ERRORS_TOTAL = Counter(
    "gateway_cache_store_errors_total",
    "Cache store failures degraded to upstream calls",
    ["operation"],
)
