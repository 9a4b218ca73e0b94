"""Cache eligibility and canonical cache keys for chat requests."""

from __future__ import annotations

from typing import Any

from .config import MAX_CACHED_TEMPERATURE, MAX_CACHED_TOP_P, ProviderConfig
from .openai_compat import ChatCompletionRequest

# Fields that identify who asked or how to reach the endpoint, not what answer is wanted.
_PROVIDER_FIELDS_EXCLUDED = {"token", "source"}


def _below(value: float | None, ceiling: float | None) -> bool:
    if value is None or ceiling is None:
        return True
    return value < ceiling


def is_cache_eligible(
    request: ChatCompletionRequest,
    *,
    use_cache: bool | None = None,
    max_cached_temperature: float | None = MAX_CACHED_TEMPERATURE,
    max_cached_top_p: float | None = MAX_CACHED_TOP_P,
) -> bool:
    """Decide whether the response to ``request`` may be served from or stored in the cache.

    ``use_cache=True`` forces caching, ``use_cache=False`` disables it, and
    ``None`` applies the automatic rule: no seed, no tools, and sampling
    parameters under their ceilings. A ``None`` ceiling disables that check.
    """
    if use_cache is True:
        return True
    if use_cache is False:
        return False
    if request.seed is not None:
        return False
    if request.tools:
        return False
    return _below(request.temperature, max_cached_temperature) and _below(request.top_p, max_cached_top_p)


def build_cache_key(request: ChatCompletionRequest, provider: ProviderConfig) -> dict[str, Any]:
    return {
        "request": request.wire_payload(),
        "provider": provider.model_dump(mode="json", exclude=_PROVIDER_FIELDS_EXCLUDED),
    }


def resolve_cache_key(
    request: ChatCompletionRequest,
    provider: ProviderConfig,
    *,
    use_cache: bool | None = None,
    max_cached_temperature: float | None = MAX_CACHED_TEMPERATURE,
    max_cached_top_p: float | None = MAX_CACHED_TOP_P,
) -> dict[str, Any] | None:
    if not is_cache_eligible(
        request,
        use_cache=use_cache,
        max_cached_temperature=max_cached_temperature,
        max_cached_top_p=max_cached_top_p,
    ):
        return None
    return build_cache_key(request, provider)
