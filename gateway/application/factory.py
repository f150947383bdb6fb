from __future__ import annotations

import httpx

from gateway.application.llm.anthropic_adapter import AnthropicAdapter
from gateway.application.llm.openai_adapter import OpenAIAdapter
from gateway.application.scraping.firecrawl_adapter import FirecrawlAdapter
from gateway.application.scraping.scrapingbee_adapter import ScrapingBeeAdapter
from gateway.application.search.serpapi_adapter import SerpApiAdapter
from gateway.application.search.serper_adapter import SerperAdapter
from gateway.core.settings import Settings
from gateway.domain.adapters import ProviderAdapter

_DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1/",
    "anthropic": "https://api.anthropic.com/v1/",
    "serper": "https://google.serper.dev/",
    "serpapi": "https://serpapi.com/",
    "firecrawl": "https://api.firecrawl.dev/v1/",
    "scrapingbee": "https://app.scrapingbee.com/api/v1/",
}


class ProviderAdapterFactory:
    """Factory for creating and pooling provider adapters and their HTTP clients."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._adapters: dict[str, ProviderAdapter] = {}

    def get_adapter(self, provider: str) -> ProviderAdapter:
        """Get or create an adapter for the specified provider."""
        provider = provider.lower()
        if provider not in self._adapters:
            settings = self._settings
            client = self._get_or_create_client(provider)
            if provider == "openai":
                adapter: ProviderAdapter = OpenAIAdapter(client, default_model=settings.openai_model)
            elif provider == "anthropic":
                adapter = AnthropicAdapter(client, model=settings.anthropic_model)
            elif provider == "serper":
                adapter = SerperAdapter(client)
            elif provider == "serpapi":
                adapter = SerpApiAdapter(client, api_key=settings.serpapi_api_key or "")
            elif provider == "firecrawl":
                adapter = FirecrawlAdapter(client)
            elif provider == "scrapingbee":
                adapter = ScrapingBeeAdapter(client, api_key=settings.scrapingbee_api_key or "")
            else:
                raise ValueError(f"Unknown provider: {provider}")
            self._adapters[provider] = adapter

        return self._adapters[provider]

    def _auth_headers(self, provider: str) -> dict[str, str]:
        settings = self._settings
        if provider == "openai":
            return {"Authorization": f"Bearer {settings.openai_api_key or ''}"}
        if provider == "anthropic":
            return {"x-api-key": settings.anthropic_api_key or "", "anthropic-version": "2023-06-01"}
        if provider == "serper":
            return {"X-API-KEY": settings.serper_api_key or ""}
        if provider == "firecrawl":
            return {"Authorization": f"Bearer {settings.firecrawl_api_key or ''}"}
        # serpapi and scrapingbee authenticate with a query parameter.
        return {}

    def _get_or_create_client(self, provider: str) -> httpx.AsyncClient:
        if provider not in self._clients:
            if provider not in _DEFAULT_BASE_URLS:
                raise ValueError(f"Unknown provider: {provider}")
            configured = getattr(self._settings, f"{provider}_base_url", None)
            limits = self._settings.limits_for(provider)
            self._clients[provider] = httpx.AsyncClient(
                base_url=str(configured or _DEFAULT_BASE_URLS[provider]),
                headers={"Content-Type": "application/json", **self._auth_headers(provider)},
                timeout=httpx.Timeout(
                    timeout=limits.timeout_s,
                    connect=self._settings.http_connect_timeout_s,
                ),
                limits=httpx.Limits(
                    max_connections=limits.max_concurrent,
                    max_keepalive_connections=limits.max_concurrent,
                ),
            )
        return self._clients[provider]

    async def shutdown(self) -> None:
        """Close all HTTP clients."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
        self._adapters.clear()
