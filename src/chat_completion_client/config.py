from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

MAX_CACHED_TEMPERATURE = 0.01
MAX_CACHED_TOP_P = 0.5
# https://learn.microsoft.com/en-us/azure/ai-services/openai/reference
AZURE_OPENAI_API_VERSION = "2023-09-01-preview"
TOOL_ID = "chat-completion-client"
DEFAULT_CACHE_NAME = "chat"

PROVIDER_OPENAI = "openai"
PROVIDER_AZURE = "azure"
PROVIDER_LOCALAI = "localai"


def _optional_float(name: str, default: float) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in ("", "none", "off"):
        return None
    return float(raw)


class ProviderConfig(BaseModel):
    """Connection settings for one OpenAI-compatible endpoint.

    ``type`` is kept as a plain string so that an unsupported flavor surfaces
    as a ``ConfigurationError`` from the request builder rather than a
    validation error at construction time.
    """

    model_config = ConfigDict(frozen=True)

    type: str = PROVIDER_OPENAI
    base: str = "https://api.openai.com/v1"
    token: str | None = Field(default=None, repr=False)
    source: str | None = None
    azure_api_version: str = AZURE_OPENAI_API_VERSION

    @classmethod
    def from_env(cls, type: str = PROVIDER_OPENAI) -> "ProviderConfig":
        if type == PROVIDER_AZURE:
            base = os.getenv("AZURE_OPENAI_ENDPOINT", "")
            token = os.getenv("AZURE_OPENAI_API_KEY")
            return cls(
                type=type,
                base=base,
                token=token,
                source="env:AZURE_OPENAI_API_KEY" if token else None,
                azure_api_version=os.getenv("AZURE_OPENAI_API_VERSION", AZURE_OPENAI_API_VERSION),
            )
        base = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
        token = os.getenv("OPENAI_API_KEY")
        return cls(type=type, base=base, token=token, source="env:OPENAI_API_KEY" if token else None)


class ClientConfig(BaseModel):
    # Caching
    max_cached_temperature: float | None = Field(
        default_factory=lambda: _optional_float("CHAT_MAX_CACHED_TEMPERATURE", MAX_CACHED_TEMPERATURE)
    )
    max_cached_top_p: float | None = Field(
        default_factory=lambda: _optional_float("CHAT_MAX_CACHED_TOP_P", MAX_CACHED_TOP_P)
    )
    cache_dir: str | None = Field(default_factory=lambda: os.getenv("CHAT_CACHE_DIR") or None)
    cache_fernet_key: str | None = Field(
        default_factory=lambda: os.getenv("CHAT_CACHE_FERNET_KEY") or None, repr=False
    )

    # HTTP behavior
    retries: int = Field(default_factory=lambda: int(os.getenv("CHAT_RETRIES", "3")))
    retry_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_RETRY_DELAY_SECONDS", "1.0"))
    )
    max_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_MAX_DELAY_SECONDS", "30.0"))
    )
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("CHAT_TIMEOUT_SECONDS", "120")))

    # Observability
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
