from __future__ import annotations

from typing import Any

import httpx

from gateway.application.http import json_body, send
from gateway.domain.adapters import Channel, ProviderResponse, ScrapeRequest, ScrapeResponse
from gateway.domain.errors import ProviderError


class FirecrawlAdapter:
    """Firecrawl single-page scrape adapter (primary scraping provider)."""

    name = "firecrawl"
    channel = Channel.SCRAPE

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def call(self, request: ScrapeRequest) -> ProviderResponse:
        formats = list(request.formats)
        if request.include_html and "html" not in formats:
            formats.append("html")
        if request.screenshot and "screenshot" not in formats:
            formats.append("screenshot")
        payload: dict[str, Any] = {
            "url": request.url,
            "formats": formats,
            "onlyMainContent": request.only_main_content,
        }
        if request.wait_for_ms:
            payload["waitFor"] = request.wait_for_ms
        if request.extraction_prompt:
            payload["formats"].append("json")
            payload["jsonOptions"] = {"prompt": request.extraction_prompt}

        resp = await send(self._client, self.name, "POST", "scrape", json=payload)
        data = json_body(self.name, resp)
        if not data.get("success", False):
            raise ProviderError(
                provider=self.name,
                message=f"firecrawl scrape failed: {data.get('error') or 'unknown error'}",
                status_code=resp.status_code,
            )
        return ProviderResponse(provider=self.name, request=request, payload=data, status_code=resp.status_code)

    def to_normalized(self, response: ProviderResponse) -> ScrapeResponse:
        request = response.request
        assert isinstance(request, ScrapeRequest)
        data = response.payload.get("data") or {}
        metadata = data.get("metadata") or {}
        return ScrapeResponse(
            provider=self.name,
            url=metadata.get("sourceURL") or request.url,
            markdown=data.get("markdown") or data.get("content") or "",
            html=data.get("html"),
            title=metadata.get("title"),
            description=metadata.get("description"),
            links=list(data.get("links") or []),
            status_code=metadata.get("statusCode"),
            screenshot_url=data.get("screenshot"),
            extracted=data.get("json") or data.get("llm_extraction"),
        )
