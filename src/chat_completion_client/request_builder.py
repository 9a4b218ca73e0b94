"""HTTP request shaping per API flavor (OpenAI-compatible vs Azure)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from .config import PROVIDER_AZURE, PROVIDER_LOCALAI, PROVIDER_OPENAI, TOOL_ID, ProviderConfig
from .errors import ConfigurationError
from .openai_compat import ChatCompletionRequest


def split_model_identifier(model: str) -> str:
    """Strip an optional ``provider:`` prefix, e.g. ``openai:gpt-4o`` -> ``gpt-4o``."""
    _, sep, rest = model.partition(":")
    return rest if sep and rest else model


def _merge_headers(base: dict[str, str], extra: dict[str, str] | None) -> dict[str, str]:
    merged = dict(base)
    for name, value in (extra or {}).items():
        for existing in [k for k in merged if k.lower() == name.lower()]:
            del merged[existing]
        merged[name] = value
    return merged


def _base_headers() -> dict[str, str]:
    return {"user-agent": TOOL_ID, "content-type": "application/json"}


@dataclass(frozen=True)
class OpenAIChatRequest:
    request: ChatCompletionRequest
    base: str
    token: str | None = field(default=None, repr=False)
    extra_headers: dict[str, str] | None = None
    method: str = "POST"

    @property
    def url(self) -> str:
        return self.base.rstrip("/") + "/chat/completions"

    def headers(self) -> dict[str, str]:
        headers = _base_headers()
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        return _merge_headers(headers, self.extra_headers)

    def body(self) -> dict[str, Any]:
        payload = self.request.wire_payload()
        payload["model"] = split_model_identifier(self.request.model)
        payload["stream"] = True
        return payload


@dataclass(frozen=True)
class AzureChatRequest:
    request: ChatCompletionRequest
    base: str
    api_version: str
    token: str | None = field(default=None, repr=False)
    extra_headers: dict[str, str] | None = None
    method: str = "POST"

    @property
    def deployment(self) -> str:
        return split_model_identifier(self.request.model).replace(".", "")

    @property
    def url(self) -> str:
        return f"{self.base.rstrip('/')}/{self.deployment}/chat/completions?api-version={self.api_version}"

    def headers(self) -> dict[str, str]:
        headers = _base_headers()
        if self.token:
            headers["api-key"] = self.token
        return _merge_headers(headers, self.extra_headers)

    def body(self) -> dict[str, Any]:
        # the deployment in the URL path selects the model
        payload = self.request.model_dump(mode="json", exclude_none=True, exclude={"model"})
        payload["stream"] = True
        return payload


ChatHttpRequest = Union[OpenAIChatRequest, AzureChatRequest]


def build_chat_request(
    request: ChatCompletionRequest,
    provider: ProviderConfig,
    *,
    extra_headers: dict[str, str] | None = None,
) -> ChatHttpRequest:
    if provider.type in (PROVIDER_OPENAI, PROVIDER_LOCALAI):
        return OpenAIChatRequest(
            request=request,
            base=provider.base,
            token=provider.token,
            extra_headers=extra_headers,
        )
    if provider.type == PROVIDER_AZURE:
        return AzureChatRequest(
            request=request,
            base=provider.base,
            api_version=provider.azure_api_version,
            token=provider.token,
            extra_headers=extra_headers,
        )
    raise ConfigurationError(f"api type {provider.type!r} not supported")


def encode_body(http_request: ChatHttpRequest) -> bytes:
    return json.dumps(http_request.body(), ensure_ascii=False).encode("utf-8")
