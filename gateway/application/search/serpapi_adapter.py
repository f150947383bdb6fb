from __future__ import annotations

from typing import Any

import httpx

from gateway.application.http import json_body, send
from gateway.application.search.serper_adapter import domain_of
from gateway.domain.adapters import (
    Channel,
    ProviderQuota,
    ProviderResponse,
    SearchRequest,
    SearchResponse,
    SearchResult,
)
from gateway.domain.errors import ProviderError

_TBM_BY_TYPE = {"news": "nws", "images": "isch", "videos": "vid"}


class SerpApiAdapter:
    """SerpApi adapter (backup search provider)."""

    name = "serpapi"
    channel = Channel.SEARCH

    def __init__(self, client: httpx.AsyncClient, *, api_key: str) -> None:
        self._client = client
        self._api_key = api_key

    async def call(self, request: SearchRequest) -> ProviderResponse:
        params: dict[str, Any] = {
            "engine": "google",
            "q": request.query,
            "api_key": self._api_key,
            "gl": request.country,
            "hl": request.language,
            "num": request.effective_num_results,
            "device": request.device,
        }
        if request.location:
            params["location"] = request.location
        tbm = _TBM_BY_TYPE.get(request.search_type)
        if tbm:
            params["tbm"] = tbm

        resp = await send(self._client, self.name, "GET", "search.json", params=params)
        data = json_body(self.name, resp)
        # SerpApi reports some failures in a 200 body.
        if data.get("error"):
            raise ProviderError(
                provider=self.name,
                message=f"serpapi error: {data['error']}",
                status_code=resp.status_code,
            )
        return ProviderResponse(provider=self.name, request=request, payload=data, status_code=resp.status_code)

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
            for index, item in enumerate(data.get("organic_results") or [])
            if item.get("link")
        ]
        info = data.get("search_information") or {}
        return SearchResponse(
            provider=self.name,
            query=request.query,
            total_results=int(info.get("total_results") or len(results)),
            results=results,
            related_queries=[r["query"] for r in data.get("related_searches") or [] if r.get("query")],
        )

    async def fetch_quota(self) -> ProviderQuota:
        resp = await send(self._client, self.name, "GET", "account", params={"api_key": self._api_key})
        data = json_body(self.name, resp)
        limit = int(data.get("searches_per_month") or 0)
        used = int(data.get("this_month_usage") or 0)
        return ProviderQuota(used=used, limit=limit)
