from __future__ import annotations

import inspect
import json
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .cache_key import resolve_cache_key
from .config import ClientConfig, ProviderConfig
from .contracts import ChatCompletionProgress, CompletionResult
from .errors import (
    CompletionCancelledError,
    ConfigurationError,
    InvalidResponseError,
    ProviderError,
    RequestError,
    TransportFailureError,
)
from .logging import configure_logging
from .metrics import cache_lookups_total, completion_latency_seconds, completions_total
from .openai_compat import ChatCompletionRequest
from .request_builder import build_chat_request, encode_body, split_model_identifier
from .response_cache import ResponseCache, get_chat_completion_cache
from .signals import AbortSignal
from .streaming import ChatStreamDecoder
from .tokens import estimate_tokens as default_estimate_tokens
from .tracing import Trace
from .transport import create_fetch, parse_retry_after

log = structlog.get_logger()

PartialCallback = Callable[[ChatCompletionProgress], Awaitable[None] | None]
TokenEstimator = Callable[[str, str], int]


@dataclass
class CompletionOptions:
    """Per-call knobs. ``None`` falls back to the client configuration."""

    cache: bool | None = None
    cache_name: str | None = None
    partial_cb: PartialCallback | None = None
    max_cached_temperature: float | None = None
    max_cached_top_p: float | None = None
    retry: int | None = None
    retry_delay: float | None = None
    max_delay: float | None = None
    signal: AbortSignal | None = None
    headers: dict[str, str] | None = None


def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


async def _notify(callback: PartialCallback | None, progress: ChatCompletionProgress) -> None:
    if callback is None:
        return
    res = callback(progress)
    if inspect.isawaitable(res):
        await res


def _outcome_for(exc: ProviderError) -> str:
    if isinstance(exc, RequestError):
        return "request_error"
    if isinstance(exc, InvalidResponseError):
        return "invalid_response"
    if isinstance(exc, CompletionCancelledError):
        return "cancelled"
    if isinstance(exc, ConfigurationError):
        return "configuration_error"
    if isinstance(exc, TransportFailureError):
        return "transport_error"
    return "error"


async def _request_error(resp: httpx.Response) -> RequestError:
    body: str | None
    try:
        body = (await resp.aread()).decode("utf-8", errors="replace")
    except httpx.HTTPError:
        body = None

    error: Any = None
    if body:
        try:
            parsed = json.loads(body)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            error = parsed.get("error")

    return RequestError(
        resp.status_code,
        resp.reason_phrase,
        error,
        body,
        parse_retry_after(resp.headers.get("retry-after")),
    )


class ChatCompletionClient:
    """
    Streaming chat-completion client for OpenAI-compatible endpoints.

    One ``complete`` call runs check-cache -> send -> decode stream -> update
    cache sequentially. Concurrent calls share nothing but the response cache.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        cache: ResponseCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        estimate_tokens: TokenEstimator | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.config = config or ClientConfig()
        self._cache = cache
        self._http_client = http_client
        self._estimate_tokens: TokenEstimator = estimate_tokens or default_estimate_tokens
        self._sleeper = sleeper

    def cache_for(self, name: str | None = None) -> ResponseCache:
        if self._cache is not None:
            return self._cache
        return get_chat_completion_cache(
            name,
            cache_dir=self.config.cache_dir,
            fernet_key=self.config.cache_fernet_key,
        )

    async def complete(
        self,
        request: ChatCompletionRequest | Mapping[str, Any],
        provider: ProviderConfig | Mapping[str, Any],
        options: CompletionOptions | None = None,
        trace: Trace | None = None,
    ) -> CompletionResult:
        if not isinstance(request, ChatCompletionRequest):
            request = ChatCompletionRequest.model_validate(request)
        if not isinstance(provider, ProviderConfig):
            provider = ProviderConfig.model_validate(provider)
        options = options or CompletionOptions()
        trace = trace or Trace()

        structlog.contextvars.bind_contextvars(completion_id=uuid.uuid4().hex[:12])
        started = time.monotonic()
        try:
            result = await self._complete(request, provider, options, trace)
        except ProviderError as e:
            completions_total.labels(outcome=_outcome_for(e)).inc()
            raise
        finally:
            completion_latency_seconds.observe(max(0.0, time.monotonic() - started))
            structlog.contextvars.unbind_contextvars("completion_id")

        if result.cached:
            outcome = "cache_hit"
        elif result.finish_reason == "tool_calls":
            outcome = "tool_calls"
        elif result.finish_reason == "length":
            outcome = "truncated"
        else:
            outcome = "done"
        completions_total.labels(outcome=outcome).inc()
        return result

    async def _complete(
        self,
        request: ChatCompletionRequest,
        provider: ProviderConfig,
        options: CompletionOptions,
        trace: Trace,
    ) -> CompletionResult:
        model = split_model_identifier(request.model)
        cache = self.cache_for(options.cache_name)
        cache_key = resolve_cache_key(
            request,
            provider,
            use_cache=options.cache,
            max_cached_temperature=_pick(options.max_cached_temperature, self.config.max_cached_temperature),
            max_cached_top_p=_pick(options.max_cached_top_p, self.config.max_cached_top_p),
        )
        trace.item_value("caching", cache_key is not None)

        if cache_key is None:
            cache_lookups_total.labels(result="skip").inc()
        else:
            cached = await cache.get(cache_key)
            if cached is not None:
                cache_lookups_total.labels(result="hit").inc()
                fingerprint = await cache.fingerprint(cache_key)
                trace.item_value("cache hit", fingerprint)
                log.info("chat_cache_hit", model=model, key=fingerprint[:16])
                await _notify(
                    options.partial_cb,
                    ChatCompletionProgress(
                        response_so_far=cached,
                        tokens_so_far=self._estimate_tokens(model, cached),
                        response_chunk=cached,
                    ),
                )
                # only answers that finished with "stop" are ever stored
                return CompletionResult(text=cached, finish_reason="stop", cached=True)
            cache_lookups_total.labels(result="miss").inc()

        http_request = build_chat_request(request, provider, extra_headers=options.headers)
        trace.item_value("url", f"[{http_request.url}]({http_request.url})")
        if request.response_format is not None:
            trace.item_value("response_format", request.response_format)
        if request.tools:
            trace.item_value("tools", ", ".join(f"`{t.function.name}`" for t in request.tools))
            trace.details_fenced("schema", [t.model_dump(mode="json", exclude_none=True) for t in request.tools])
        body = http_request.body()
        trace.details_fenced("messages", body, "json")

        signal = options.signal
        if signal is not None and signal.aborted:
            raise CompletionCancelledError(getattr(signal, "reason", None))

        transport = create_fetch(
            retries=_pick(options.retry, self.config.retries),
            retry_delay=_pick(options.retry_delay, self.config.retry_delay_seconds),
            max_delay=_pick(options.max_delay, self.config.max_delay_seconds),
            timeout_seconds=self.config.timeout_seconds,
            client=self._http_client,
            sleeper=self._sleeper,
            trace=trace,
        )
        decoder = ChatStreamDecoder(model, self._estimate_tokens, trace=trace)
        cancelled = False
        try:
            async with transport.stream(
                http_request.method,
                http_request.url,
                headers=http_request.headers(),
                content=encode_body(http_request),
            ) as resp:
                trace.item_value("response", f"{resp.status_code} {resp.reason_phrase}")
                if not resp.is_success:
                    err = await _request_error(resp)
                    trace.error(f"request error: {resp.status_code}")
                    log.warning(
                        "chat_request_error",
                        status_code=err.status_code,
                        retry_after_seconds=err.retry_after_seconds,
                        body=(err.body or "")[:500],
                    )
                    raise err

                try:
                    async for chunk in resp.aiter_bytes():
                        if signal is not None and signal.aborted:
                            cancelled = True
                            break
                        delta = decoder.feed(chunk)
                        if delta:
                            await _notify(
                                options.partial_cb,
                                ChatCompletionProgress(
                                    response_so_far=decoder.state.text,
                                    tokens_so_far=decoder.state.tokens,
                                    response_chunk=delta,
                                ),
                            )
                except httpx.HTTPError as e:
                    raise TransportFailureError("Upstream stream interrupted.") from e
        finally:
            await transport.close()

        state = decoder.state
        if cancelled:
            log.info("chat_cancelled", model=model, chars=len(state.text))
            raise CompletionCancelledError(getattr(signal, "reason", None))

        if not state.accepts_end_of_stream:
            trace.error("invalid response")
            trace.fence(state.pending)
            log.warning("chat_invalid_response", model=model, pending=state.pending[:500])
            raise InvalidResponseError(state.pending)

        if state.finish_reason == "stop" and cache_key is not None:
            await cache.set(cache_key, state.text)
            log.debug("chat_cache_set", model=model)

        return CompletionResult(
            text=state.text,
            finish_reason=state.finish_reason,  # type: ignore[arg-type]
            tool_calls=state.completed_tool_calls(),
            cached=False,
        )


def create_client(
    config: ClientConfig | None = None,
    *,
    providers: Iterable[ProviderConfig] = (),
    **kwargs: Any,
) -> ChatCompletionClient:
    """Configure logging (with provider secrets redacted) and build a client."""
    config = config or ClientConfig()
    secrets = [p.token for p in providers if p.token]
    if config.cache_fernet_key:
        secrets.append(config.cache_fernet_key)
    configure_logging(level=config.log_level, fmt=config.log_format, secrets=secrets)
    return ChatCompletionClient(config, **kwargs)


_default_client: ChatCompletionClient | None = None


async def chat_completion(
    request: ChatCompletionRequest | Mapping[str, Any],
    provider: ProviderConfig | Mapping[str, Any],
    options: CompletionOptions | None = None,
    *,
    trace: Trace | None = None,
) -> CompletionResult:
    global _default_client
    if _default_client is None:
        _default_client = ChatCompletionClient()
    return await _default_client.complete(request, provider, options, trace)
