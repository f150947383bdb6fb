from __future__ import annotations

import pytest

from gateway.domain.adapters import (
    Channel,
    CompletionResponse,
    ProviderResponse,
    ScrapeResponse,
    SearchResponse,
    SearchResult,
    Usage,
)


class FakeClock:
    """Manually advanced clock; ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeAdapter:
    """Scripted provider adapter.

    ``outcomes`` are consumed one per call: an exception is raised, a mapping
    becomes the raw payload. Once exhausted every call behaves as ``default``.
    """

    def __init__(self, name, channel=None, outcomes=(), default=None):
        self.name = name
        self.channel = channel or Channel.SEARCH
        self.calls = 0
        self._outcomes = list(outcomes)
        self._default = default

    async def call(self, request):
        self.calls += 1
        outcome = self._outcomes.pop(0) if self._outcomes else self._default
        if isinstance(outcome, BaseException):
            raise outcome
        return ProviderResponse(provider=self.name, request=request, payload=outcome or {})

    def to_normalized(self, response):
        request = response.request
        if self.channel == Channel.LLM:
            return CompletionResponse(
                provider=self.name,
                model=request.model,
                content=response.payload.get("content", "ok"),
                usage=Usage(prompt_tokens=500, completion_tokens=1000),
            )
        if self.channel == Channel.SCRAPE:
            return ScrapeResponse(
                provider=self.name,
                url=request.url,
                markdown=response.payload.get("markdown", "# page"),
            )
        return SearchResponse(
            provider=self.name,
            query=request.query,
            results=[
                SearchResult(position=1, title="Example", url="https://example.com/", domain="example.com"),
            ],
        )


class FakeFactory:
    """Stands in for ``ProviderAdapterFactory`` with scripted adapters."""

    def __init__(self, **adapters):
        self.adapters = dict(adapters)

    def get_adapter(self, provider):
        if provider not in self.adapters:
            channel = {
                "openai": Channel.LLM,
                "anthropic": Channel.LLM,
                "serper": Channel.SEARCH,
                "serpapi": Channel.SEARCH,
                "firecrawl": Channel.SCRAPE,
                "scrapingbee": Channel.SCRAPE,
            }[provider]
            self.adapters[provider] = FakeAdapter(provider, channel)
        return self.adapters[provider]

    async def shutdown(self):
        pass


@pytest.fixture
def make_adapter():
    return FakeAdapter


@pytest.fixture
def make_factory():
    return FakeFactory
