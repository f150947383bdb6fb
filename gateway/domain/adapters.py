from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Protocol, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field

DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 1.0
DEFAULT_PENALTY = 0.0
DEFAULT_NUM_RESULTS = 10

_TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "gclid",
        "fbclid",
        "msclkid",
        "_ga",
        "ref",
        "source",
    },
)
_WHITESPACE = re.compile(r"\s+")


class Channel(str, Enum):
    """Category of external dependency a provider serves."""

    LLM = "llm"
    SEARCH = "search"
    SCRAPE = "scrape"


class MessageRole(str, Enum):
    """Supported chat message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(slots=True)
class LLMMessage:
    """Unified representation of a chat message."""

    role: MessageRole
    content: str
    name: str | None = None


@dataclass(slots=True)
class LLMCompletionRequest:
    """Domain-level completion request passed to LLM adapters.

    Optional sampling parameters left as ``None`` take the provider default,
    and are hashed as that default so equivalent requests share a cache key.
    """

    model: str
    messages: list[LLMMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    stream: bool = False
    request_id: str = ""
    metadata: Mapping[str, Any] | None = None

    channel = Channel.LLM

    @property
    def effective_temperature(self) -> float:
        return DEFAULT_TEMPERATURE if self.temperature is None else self.temperature

    @property
    def cache_scope(self) -> str:
        return self.model

    @property
    def requested_output_size(self) -> int | None:
        return self.max_tokens

    @property
    def is_streaming(self) -> bool:
        return self.stream

    def cache_payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": m.role.value, "content": m.content.strip(), "name": m.name}
                for m in self.messages
            ],
            "temperature": self.effective_temperature,
            "max_tokens": self.max_tokens,
            "top_p": DEFAULT_TOP_P if self.top_p is None else self.top_p,
            "frequency_penalty": (
                DEFAULT_PENALTY if self.frequency_penalty is None else self.frequency_penalty
            ),
            "presence_penalty": (
                DEFAULT_PENALTY if self.presence_penalty is None else self.presence_penalty
            ),
            "tools": self.tools or None,
            "tool_choice": self.tool_choice,
        }


@dataclass(slots=True)
class SearchRequest:
    """SERP lookup for a keyword."""

    query: str
    country: str = "us"
    language: str = "en"
    num_results: int | None = None
    device: Literal["desktop", "mobile"] = "desktop"
    search_type: Literal["search", "news", "images", "places", "videos"] = "search"
    location: str | None = None
    request_id: str = ""

    channel = Channel.SEARCH

    @property
    def effective_num_results(self) -> int:
        return DEFAULT_NUM_RESULTS if self.num_results is None else self.num_results

    @property
    def cache_scope(self) -> str:
        return self.search_type

    @property
    def requested_output_size(self) -> int | None:
        return self.effective_num_results

    @property
    def is_streaming(self) -> bool:
        return False

    def cache_payload(self) -> dict[str, Any]:
        return {
            "query": _WHITESPACE.sub(" ", self.query).strip().lower(),
            "country": self.country.lower(),
            "language": self.language.lower(),
            "num_results": self.effective_num_results,
            "device": self.device,
            "search_type": self.search_type,
            "location": self.location.lower() if self.location else None,
        }


@dataclass(slots=True)
class ScrapeRequest:
    """Single-page scrape of a URL."""

    url: str
    formats: list[str] = field(default_factory=lambda: ["markdown"])
    only_main_content: bool = True
    include_html: bool = False
    screenshot: bool = False
    wait_for_ms: int = 0
    extraction_prompt: str | None = None
    request_id: str = ""

    channel = Channel.SCRAPE

    @property
    def cache_scope(self) -> str:
        return "page"

    @property
    def requested_output_size(self) -> int | None:
        return None

    @property
    def is_streaming(self) -> bool:
        return False

    def cache_payload(self) -> dict[str, Any]:
        return {
            "url": normalize_url(self.url),
            "formats": sorted(set(self.formats)),
            "only_main_content": self.only_main_content,
            "include_html": self.include_html,
            "screenshot": self.screenshot,
            "wait_for_ms": self.wait_for_ms,
            "extraction_prompt": self.extraction_prompt,
        }


GatewayRequest = Union[LLMCompletionRequest, SearchRequest, ScrapeRequest]


def normalize_url(url: str) -> str:
    """Canonical form of a URL for cache keys.

    Drops tracking parameters and the fragment, sorts the query string and
    lowercases scheme and host. Unparseable input is returned unchanged.
    """

    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    query = sorted(
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in _TRACKING_PARAMS
    )
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", urlencode(query), ""),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NormalizedResponse(BaseModel):
    """Provider-independent response shape returned to callers."""

    provider: str
    fallback: bool = False
    cached: bool = False
    cached_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def units(self) -> int:
        """Billable units carried by this response (tokens, results, bytes)."""
        return 0


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CompletionResponse(NormalizedResponse):
    kind: Literal["completion"] = "completion"
    model: str
    content: str
    usage: Usage = Field(default_factory=Usage)
    finish_reason: str | None = None

    @property
    def units(self) -> int:
        return self.usage.total_tokens


class SearchResult(BaseModel):
    position: int
    title: str
    url: str
    domain: str
    snippet: str = ""
    date: str | None = None


class SearchResponse(NormalizedResponse):
    kind: Literal["search"] = "search"
    query: str
    total_results: int = 0
    results: list[SearchResult] = Field(default_factory=list)
    related_queries: list[str] = Field(default_factory=list)

    @property
    def units(self) -> int:
        return len(self.results)


class ScrapeResponse(NormalizedResponse):
    kind: Literal["scrape"] = "scrape"
    url: str
    markdown: str = ""
    html: str | None = None
    title: str | None = None
    description: str | None = None
    links: list[str] = Field(default_factory=list)
    status_code: int | None = None
    screenshot_url: str | None = None
    extracted: dict[str, Any] | None = None

    @property
    def content_size(self) -> int:
        return len(self.markdown.encode("utf-8")) + len((self.html or "").encode("utf-8"))

    @property
    def units(self) -> int:
        return self.content_size


AnyNormalizedResponse = Annotated[
    Union[CompletionResponse, SearchResponse, ScrapeResponse],
    Field(discriminator="kind"),
]


@dataclass(slots=True)
class ProviderResponse:
    """Raw, provider-shaped response before normalization."""

    provider: str
    request: GatewayRequest
    payload: Mapping[str, Any]
    status_code: int = 200


@dataclass(slots=True)
class ProviderQuota:
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class ProviderAdapter(Protocol):
    """Protocol implemented by all provider adapters."""

    name: str
    channel: Channel

    async def call(self, request: Any) -> ProviderResponse:
        """Execute one provider call in the provider's own request shape."""

    def to_normalized(self, response: ProviderResponse) -> NormalizedResponse:
        """Map a provider-shaped response onto the normalized form."""
