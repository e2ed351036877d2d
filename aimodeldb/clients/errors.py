"""Errors raised by source adapters and LLM provider clients."""

from __future__ import annotations

from typing import Optional


class ProviderError(RuntimeError):
    """Base class for outbound call failures."""


class ProviderHTTPError(ProviderError):
    """Raised when a provider answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        self.message = message
        text = f"HTTP {status_code}"
        super().__init__(f"{text}: {message}" if message else text)


class ProviderResponseError(ProviderError):
    """Raised when a provider reply cannot be interpreted."""


class NoProviderConfigured(ProviderError):
    """Raised when no enabled provider with credentials is available."""


class RateLimitExceeded(ProviderError):
    """Raised when the shared rate governor rejects an outbound call."""

    def __init__(self, key: str, retry_after: Optional[int] = None) -> None:
        self.key = key
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for {key}; retry after {retry_after}s"
        )
