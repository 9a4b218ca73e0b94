from .client import ChatCompletionClient, CompletionOptions, chat_completion, create_client
from .config import ClientConfig, ProviderConfig
from .contracts import ChatCompletionProgress, CompletionResult, ToolCall
from .errors import (
    CompletionCancelledError,
    ConfigurationError,
    InvalidResponseError,
    ProviderError,
    RequestError,
    TransportFailureError,
)
from .openai_compat import ChatCompletionRequest, ChatMessage, ChatTool
from .response_cache import FileResponseCache, InMemoryResponseCache, get_chat_completion_cache
from .signals import AbortController

__all__ = [
    "AbortController",
    "ChatCompletionClient",
    "ChatCompletionProgress",
    "ChatCompletionRequest",
    "ChatMessage",
    "ChatTool",
    "ClientConfig",
    "CompletionCancelledError",
    "CompletionOptions",
    "CompletionResult",
    "ConfigurationError",
    "FileResponseCache",
    "InMemoryResponseCache",
    "InvalidResponseError",
    "ProviderConfig",
    "ProviderError",
    "RequestError",
    "ToolCall",
    "TransportFailureError",
    "chat_completion",
    "create_client",
    "get_chat_completion_cache",
]
