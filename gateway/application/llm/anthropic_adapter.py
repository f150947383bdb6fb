from __future__ import annotations

from typing import Any

import httpx

from gateway.application.http import json_body, send
from gateway.application.llm.openai_adapter import record_usage
from gateway.application.pricing import estimate_tokens
from gateway.domain.adapters import (
    Channel,
    CompletionResponse,
    LLMCompletionRequest,
    LLMMessage,
    MessageRole,
    ProviderResponse,
    Usage,
)

_DEFAULT_MAX_TOKENS = 1024


def _to_anthropic_messages(messages: list[LLMMessage]) -> tuple[list[dict[str, Any]], str | None]:
    """Convert unified messages into Anthropic roles and system prompt."""

    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for m in messages:
        if m.role == MessageRole.SYSTEM:
            system_parts.append(m.content)
            continue
        role = "assistant" if m.role == MessageRole.ASSISTANT else "user"
        converted.append({"role": role, "content": m.content})

    system_prompt = "\n".join(system_parts) if system_parts else None
    return converted, system_prompt


class AnthropicAdapter:
    """Anthropic messages adapter, used as the LLM backup.

    The logical model requested by the caller belongs to the primary vendor,
    so this adapter always substitutes its own configured model.
    """

    name = "anthropic"
    channel = Channel.LLM

    def __init__(self, client: httpx.AsyncClient, *, model: str = "claude-3-5-sonnet-latest") -> None:
        self._client = client
        self._model = model

    async def call(self, request: LLMCompletionRequest) -> ProviderResponse:
        messages, system_prompt = _to_anthropic_messages(request.messages)

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": request.max_tokens or _DEFAULT_MAX_TOKENS,
            "temperature": min(request.effective_temperature, 1.0),
        }
        if system_prompt:
            payload["system"] = system_prompt
        if request.top_p is not None:
            payload["top_p"] = request.top_p

        resp = await send(
            self._client,
            self.name,
            "POST",
            "messages",
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

        text_parts: list[str] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text") or "")
        content = "".join(text_parts)

        usage_data = data.get("usage") or {}
        prompt_tokens = int(usage_data.get("input_tokens") or 0) or sum(
            estimate_tokens(m.content) for m in request.messages
        )
        completion_tokens = int(usage_data.get("output_tokens") or 0)
        if completion_tokens == 0 and content:
            completion_tokens = estimate_tokens(content)

        normalized = CompletionResponse(
            provider=self.name,
            model=str(data.get("model") or self._model),
            content=content,
            usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
            finish_reason=data.get("stop_reason"),
        )
        record_usage(self.name, request, normalized)
        return normalized
