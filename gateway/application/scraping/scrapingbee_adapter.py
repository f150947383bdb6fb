from __future__ import annotations

import html as htmllib
import re
from typing import Any
from urllib.parse import urljoin

import httpx

from gateway.application.http import json_body, send
from gateway.domain.adapters import (
    Channel,
    ProviderQuota,
    ProviderResponse,
    ScrapeRequest,
    ScrapeResponse,
)

_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_META_DESCRIPTION = re.compile(
    r'<meta[^>]+name=["\']description["\'][^>]+content=["\']([^"\']*)["\']',
    re.IGNORECASE,
)
_HREF = re.compile(r'<a[^>]+href=["\']([^"\'#]+)["\']', re.IGNORECASE)
_SCRIPT_STYLE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def _html_to_text(raw: str) -> str:
    text = _TAG.sub("\n", _SCRIPT_STYLE.sub("", raw))
    text = htmllib.unescape(text)
    return _BLANK_LINES.sub("\n\n", "\n".join(line.strip() for line in text.splitlines())).strip()


class ScrapingBeeAdapter:
    """ScrapingBee HTML fetch adapter (backup scraping provider).

    ScrapingBee returns raw HTML, so normalization extracts a plain-text body,
    title, description and links to match the primary provider's shape.
    """

    name = "scrapingbee"
    channel = Channel.SCRAPE

    def __init__(self, client: httpx.AsyncClient, *, api_key: str) -> None:
        self._client = client
        self._api_key = api_key

    async def call(self, request: ScrapeRequest) -> ProviderResponse:
        params: dict[str, Any] = {
            "api_key": self._api_key,
            "url": request.url,
            "render_js": "true" if request.wait_for_ms else "false",
        }
        if request.wait_for_ms:
            params["wait"] = request.wait_for_ms
        if request.screenshot:
            params["screenshot"] = "true"

        resp = await send(self._client, self.name, "GET", "", params=params)
        payload = {
            "html": resp.text,
            "resolved_url": resp.headers.get("spb-resolved-url") or request.url,
            "initial_status_code": resp.headers.get("spb-initial-status-code"),
        }
        return ProviderResponse(provider=self.name, request=request, payload=payload, status_code=resp.status_code)

    def to_normalized(self, response: ProviderResponse) -> ScrapeResponse:
        request = response.request
        assert isinstance(request, ScrapeRequest)
        raw = str(response.payload.get("html") or "")
        base_url = str(response.payload.get("resolved_url") or request.url)

        title_match = _TITLE.search(raw)
        description_match = _META_DESCRIPTION.search(raw)
        status = response.payload.get("initial_status_code")
        return ScrapeResponse(
            provider=self.name,
            url=base_url,
            markdown=_html_to_text(raw),
            html=raw if request.include_html else None,
            title=htmllib.unescape(title_match.group(1).strip()) if title_match else None,
            description=htmllib.unescape(description_match.group(1)) if description_match else None,
            links=sorted({urljoin(base_url, href) for href in _HREF.findall(raw)}),
            status_code=int(status) if status else response.status_code,
        )

    async def fetch_quota(self) -> ProviderQuota:
        resp = await send(self._client, self.name, "GET", "usage", params={"api_key": self._api_key})
        data = json_body(self.name, resp)
        return ProviderQuota(
            used=int(data.get("used_api_credit") or 0),
            limit=int(data.get("max_api_credit") or 0),
        )
