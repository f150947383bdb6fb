from __future__ import annotations

from typing import Any

import httpx

from gateway.domain.errors import ProviderError
from gateway.monitoring.metrics import PROVIDER_REQUEST_DURATION_SECONDS

_TIMEOUT_STATUSES = frozenset({408, 504})


def raise_for_provider_status(provider: str, resp: httpx.Response) -> None:
    """Translate an HTTP failure status into a ``ProviderError``.

    Throttling (429) and gateway/request timeouts are retryable; everything
    else at or above 400 is not.
    """

    if resp.status_code < 400:
        return
    if resp.status_code == 429:
        raise ProviderError(
            provider=provider,
            message=f"{provider} throttled: {resp.status_code} {resp.text[:200]}",
            status_code=resp.status_code,
            retryable=True,
        )
    if resp.status_code in _TIMEOUT_STATUSES:
        raise ProviderError(
            provider=provider,
            message=f"{provider} timed out upstream: {resp.status_code}",
            status_code=resp.status_code,
            retryable=True,
            timeout=True,
        )
    raise ProviderError(
        provider=provider,
        message=f"{provider} error: {resp.status_code} {resp.text[:200]}",
        status_code=resp.status_code,
    )


async def send(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request and map transport and status failures onto ``ProviderError``."""

    try:
        with PROVIDER_REQUEST_DURATION_SECONDS.labels(provider=provider).time():
            resp = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderError(
            provider=provider,
            message=f"{provider} request timed out: {exc}",
            retryable=True,
            timeout=True,
        ) from exc
    except httpx.RequestError as exc:
        raise ProviderError(
            provider=provider,
            message=f"{provider} network error: {exc}",
        ) from exc
    raise_for_provider_status(provider, resp)
    return resp


def json_body(provider: str, resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError(
            provider=provider,
            message=f"{provider} returned a non-JSON body",
            status_code=resp.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise ProviderError(
            provider=provider,
            message=f"{provider} returned an unexpected payload",
            status_code=resp.status_code,
        )
    return data
