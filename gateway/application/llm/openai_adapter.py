from __future__ import annotations

from typing import Any

import httpx
import tiktoken

from gateway.application.http import json_body, send
from gateway.application.pricing import estimate_response_cost, estimate_tokens
from gateway.domain.adapters import (
    Channel,
    CompletionResponse,
    LLMCompletionRequest,
    LLMMessage,
    ProviderResponse,
    Usage,
)
from gateway.monitoring.metrics import COST_TOTAL, TOKENS_TOTAL

_ENCODING_CACHE: dict[str, tiktoken.Encoding] = {}


def _encoding_for_model(model: str) -> tiktoken.Encoding | None:
    if model in _ENCODING_CACHE:
        return _ENCODING_CACHE[model]
    try:
        encoding = tiktoken.encoding_for_model(model)
    except KeyError:
        return None
    _ENCODING_CACHE[model] = encoding
    return encoding


def _count_tokens(model: str, text: str) -> int:
    encoding = _encoding_for_model(model)
    if encoding is None:
        return estimate_tokens(text)
    return len(encoding.encode(text))


def _to_openai_messages(messages: list[LLMMessage]) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    for m in messages:
        item: dict[str, Any] = {
            "role": m.role.value,
            "content": m.content,
        }
        if m.name:
            item["name"] = m.name
        result.append(item)
    return result


class OpenAIAdapter:
    """OpenAI chat-completions adapter."""

    name = "openai"
    channel = Channel.LLM

    def __init__(self, client: httpx.AsyncClient, *, default_model: str = "gpt-4o") -> None:
        self._client = client
        self._default_model = default_model

    async def call(self, request: LLMCompletionRequest) -> ProviderResponse:
        payload: dict[str, Any] = {
            "model": request.model or self._default_model,
            "messages": _to_openai_messages(request.messages),
            "temperature": request.effective_temperature,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.frequency_penalty is not None:
            payload["frequency_penalty"] = request.frequency_penalty
        if request.presence_penalty is not None:
            payload["presence_penalty"] = request.presence_penalty
        if request.tools:
            payload["tools"] = request.tools
        if request.tool_choice:
            payload["tool_choice"] = request.tool_choice

        resp = await send(
            self._client,
            self.name,
            "POST",
            "chat/completions",
            json=payload,
            headers={"X-Request-ID": request.request_id} if request.request_id else None,
        )
        return ProviderResponse(
            provider=self.name,
            request=request,
            payload=json_body(self.name, resp),
            status_code=resp.status_code,
        )

    def to_normalized(self, response: ProviderResponse) -> CompletionResponse:
        data = response.payload
        request = response.request
        assert isinstance(request, LLMCompletionRequest)
        model = str(data.get("model") or request.model)

        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}
        content = message.get("content") or ""

        # Prefer provider's token counts if present.
        usage_data = data.get("usage") or {}
        prompt_tokens = int(usage_data.get("prompt_tokens") or 0)
        if prompt_tokens == 0:
            prompt_tokens = _count_tokens(model, "\n".join(m.content for m in request.messages))
        completion_tokens = int(usage_data.get("completion_tokens") or 0)
        if completion_tokens == 0 and content:
            completion_tokens = _count_tokens(model, content)

        normalized = CompletionResponse(
            provider=self.name,
            model=model,
            content=content,
            usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
            finish_reason=choice.get("finish_reason"),
        )
        record_usage(self.name, request, normalized)
        return normalized


def record_usage(provider: str, request: LLMCompletionRequest, response: CompletionResponse) -> None:
    TOKENS_TOTAL.labels(provider=provider, model=response.model, type="prompt").inc(
        response.usage.prompt_tokens,
    )
    TOKENS_TOTAL.labels(provider=provider, model=response.model, type="completion").inc(
        response.usage.completion_tokens,
    )
    COST_TOTAL.labels(provider=provider).inc(float(estimate_response_cost(request, response)))
