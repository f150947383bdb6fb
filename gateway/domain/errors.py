from __future__ import annotations

from collections.abc import Sequence


class GatewayError(Exception):
    """Base class for every error surfaced by the gateway layer."""


class RateLimited(GatewayError):
    """Admission was throttled; safe to retry after ``retry_after_s``."""

    def __init__(self, *, provider: str, retry_after_s: float, message: str | None = None) -> None:
        super().__init__(message or f"{provider} rate limited, retry after {retry_after_s:.3f}s")
        self.provider = provider
        self.retry_after_s = retry_after_s


class ProviderUnavailable(GatewayError):
    """Provider is not eligible for an attempt; no call was made."""

    def __init__(self, *, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class ProviderError(GatewayError):
    """Error raised by provider adapters with retry hints."""

    def __init__(
        self,
        *,
        provider: str,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        timeout: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable
        self.timeout = timeout

    @property
    def throttled(self) -> bool:
        return self.status_code == 429


class NoProvidersAvailable(GatewayError):
    """Every configured provider for a channel was ineligible or failed."""

    def __init__(self, *, channel: str, errors: Sequence[BaseException] = ()) -> None:
        self.channel = channel
        self.errors = list(errors)
        if self.errors:
            detail = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
            message = f"No providers available for {channel} ({detail})"
        else:
            message = f"No providers available for {channel}"
        super().__init__(message)


class CacheStoreError(GatewayError):
    """The cache store capability failed. Never fatal to a request."""

    def __init__(self, *, operation: str, namespace: str, message: str) -> None:
        super().__init__(f"cache {operation} failed in {namespace}: {message}")
        self.operation = operation
        self.namespace = namespace
