from __future__ import annotations

import math
from decimal import Decimal

from gateway.domain.adapters import (
    CompletionResponse,
    GatewayRequest,
    LLMCompletionRequest,
    NormalizedResponse,
    ScrapeRequest,
    ScrapeResponse,
    SearchRequest,
)

# Example values (USD); should be kept in sync with provider pricing.
_LLM_COSTS_PER_1K: dict[str, dict[str, Decimal]] = {
    "gpt-4o": {"prompt": Decimal("0.0025"), "completion": Decimal("0.01")},
    "gpt-4o-mini": {"prompt": Decimal("0.00015"), "completion": Decimal("0.0006")},
    "gpt-4": {"prompt": Decimal("0.03"), "completion": Decimal("0.06")},
    "gpt-3.5-turbo": {"prompt": Decimal("0.0005"), "completion": Decimal("0.0015")},
    "claude-3-5-sonnet-latest": {"prompt": Decimal("0.003"), "completion": Decimal("0.015")},
    "claude-3-opus-latest": {"prompt": Decimal("0.015"), "completion": Decimal("0.075")},
    "claude-3-haiku-latest": {"prompt": Decimal("0.0008"), "completion": Decimal("0.004")},
}
_UNKNOWN_MODEL_COST = Decimal("0.02")
_DEFAULT_EXPECTED_COMPLETION_TOKENS = 1000

_SEARCH_COST_PER_PAGE: dict[str, Decimal] = {
    "serper": Decimal("0.001"),
    "serpapi": Decimal("0.01"),
}
_SEARCH_RESULTS_PER_PAGE = 10

_SCRAPE_BASE_COST: dict[str, Decimal] = {
    "firecrawl": Decimal("0.001"),
    "scrapingbee": Decimal("0.002"),
}
_SCRAPE_EXTRACTION_COST = Decimal("0.01")
_SCRAPE_SCREENSHOT_COST = Decimal("0.005")
_LARGE_CONTENT_BYTES = 100_000
_LARGE_CONTENT_MULTIPLIER = Decimal("1.5")

_DEFAULT_UNIT_COST = Decimal("0.001")


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 characters per token)."""

    return max(1, len(text) // 4)


def _llm_prices(model: str) -> dict[str, Decimal] | None:
    """Price row for ``model``; dated ids such as ``gpt-4o-mini-2024-07-18`` use their base row."""

    cfg = _LLM_COSTS_PER_1K.get(model)
    if cfg is not None:
        return cfg
    bases = [name for name in _LLM_COSTS_PER_1K if model.startswith(f"{name}-")]
    return _LLM_COSTS_PER_1K[max(bases, key=len)] if bases else None


def _llm_cost(model: str, prompt_tokens: int, completion_tokens: int) -> Decimal:
    cfg = _llm_prices(model)
    if cfg is None:
        return _UNKNOWN_MODEL_COST
    prompt_cost = cfg["prompt"] * prompt_tokens / 1000
    completion_cost = cfg["completion"] * completion_tokens / 1000
    return prompt_cost + completion_cost


def _search_cost(provider: str, request: SearchRequest) -> Decimal:
    pages = max(1, math.ceil(request.effective_num_results / _SEARCH_RESULTS_PER_PAGE))
    return _SEARCH_COST_PER_PAGE.get(provider, _DEFAULT_UNIT_COST) * pages


def _scrape_cost(provider: str, request: ScrapeRequest) -> Decimal:
    cost = _SCRAPE_BASE_COST.get(provider, _DEFAULT_UNIT_COST)
    if request.extraction_prompt:
        cost += _SCRAPE_EXTRACTION_COST
    if request.screenshot:
        cost += _SCRAPE_SCREENSHOT_COST
    return cost


def estimate_request_cost(request: GatewayRequest, provider: str) -> Decimal:
    """Estimate the cost of serving ``request`` before any response exists."""

    if isinstance(request, LLMCompletionRequest):
        prompt_tokens = sum(estimate_tokens(m.content) for m in request.messages)
        completion_tokens = request.max_tokens or _DEFAULT_EXPECTED_COMPLETION_TOKENS
        return _llm_cost(request.model, prompt_tokens, completion_tokens)
    if isinstance(request, SearchRequest):
        return _search_cost(provider, request)
    if isinstance(request, ScrapeRequest):
        return _scrape_cost(provider, request)
    raise TypeError(f"Unsupported request type: {type(request).__name__}")


def estimate_response_cost(request: GatewayRequest, response: NormalizedResponse) -> Decimal:
    """Cost of a served response, from actual usage where the provider reports it."""

    if isinstance(response, CompletionResponse) and isinstance(request, LLMCompletionRequest):
        if response.usage.total_tokens == 0:
            return estimate_request_cost(request, response.provider)
        return _llm_cost(
            response.model,
            response.usage.prompt_tokens,
            response.usage.completion_tokens,
        )
    if isinstance(response, ScrapeResponse) and isinstance(request, ScrapeRequest):
        cost = _scrape_cost(response.provider, request)
        if response.content_size > _LARGE_CONTENT_BYTES:
            cost *= _LARGE_CONTENT_MULTIPLIER
        return cost
    return estimate_request_cost(request, response.provider)
