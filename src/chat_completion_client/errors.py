from __future__ import annotations

from typing import Any


class ProviderError(Exception):
    """Base error for chat completion failures."""


class ConfigurationError(ProviderError):
    pass


class RequestError(ProviderError):
    """Upstream answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        status_text: str = "",
        error: Any = None,
        body: str | None = None,
        retry_after_seconds: int | None = None,
    ):
        message = f"Request failed with status {status_code}"
        if status_text:
            message += f" {status_text}"
        provider_message = error.get("message") if isinstance(error, dict) else None
        if isinstance(provider_message, str) and provider_message:
            message += f": {provider_message}"
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text
        self.error = error
        self.body = body
        self.retry_after_seconds = retry_after_seconds


class TransportFailureError(ProviderError):
    """The transport gave up after connection or timeout errors."""


class InvalidResponseError(ProviderError):
    """Stream ended before the upstream signalled completion."""

    def __init__(self, partial: str = "", message: str | None = None):
        super().__init__(message or f"invalid response: {partial}")
        self.partial = partial


class CompletionCancelledError(ProviderError):
    def __init__(self, reason: str | None = None):
        super().__init__(reason or "Completion cancelled")
        self.reason = reason
