from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

import httpx

from gateway.application.http import json_body, send
from gateway.domain.adapters import (
    Channel,
    ProviderResponse,
    SearchRequest,
    SearchResponse,
    SearchResult,
)


def domain_of(url: str) -> str:
    return urlsplit(url).hostname or ""


class SerperAdapter:
    """Serper.dev Google search adapter (primary search provider)."""

    name = "serper"
    channel = Channel.SEARCH

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def call(self, request: SearchRequest) -> ProviderResponse:
        payload: dict[str, Any] = {
            "q": request.query,
            "gl": request.country,
            "hl": request.language,
            "num": request.effective_num_results,
            "device": request.device,
        }
        if request.location:
            payload["location"] = request.location

        resp = await send(self._client, self.name, "POST", request.search_type, json=payload)
        return ProviderResponse(
            provider=self.name,
            request=request,
            payload=json_body(self.name, resp),
            status_code=resp.status_code,
        )

    def to_normalized(self, response: ProviderResponse) -> SearchResponse:
        data = response.payload
        request = response.request
        assert isinstance(request, SearchRequest)

        results = [
            SearchResult(
                position=int(item.get("position") or index + 1),
                title=item.get("title") or "",
                url=item["link"],
                domain=domain_of(item["link"]),
                snippet=item.get("snippet") or "",
                date=item.get("date"),
            )
            for index, item in enumerate(data.get("organic") or [])
            if item.get("link")
        ]
        info = data.get("searchInformation") or {}
        return SearchResponse(
            provider=self.name,
            query=request.query,
            total_results=int(info.get("totalResults") or len(results)),
            results=results,
            related_queries=[r["query"] for r in data.get("relatedSearches") or [] if r.get("query")],
        )
