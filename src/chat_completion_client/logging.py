from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog


_SENSITIVE_KEYS = {
    "authorization",
    "api-key",
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "fernet_key",
    "cache_fernet_key",
}
_SENSITIVE_FRAGMENTS = ("token", "secret", "password", "api_key", "api-key", "apikey")

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


def _is_sensitive_key(key: Any) -> bool:
    key_str = str(key).lower()
    if key_str in _SENSITIVE_KEYS:
        return True
    # token counters are telemetry, not credentials
    if key_str.endswith("tokens") or key_str.startswith("tokens_"):
        return False
    return any(fragment in key_str for fragment in _SENSITIVE_FRAGMENTS)


def redact(value: Any, *, secrets: Iterable[str] = ()) -> Any:
    """Scrub registered secrets and credential-looking fields from ``value``."""
    secrets_norm = [s for s in secrets if isinstance(s, str) and s]
    return _redact_obj(value, secrets=secrets_norm)


def _redact_str(value: str, *, secrets: list[str]) -> str:
    out = value
    for secret in secrets:
        if secret in out:
            out = out.replace(secret, "[REDACTED]")
    return _BEARER_RE.sub("Bearer [REDACTED]", out)


def _redact_obj(obj: Any, *, secrets: list[str]) -> Any:
    if isinstance(obj, str):
        return _redact_str(obj, secrets=secrets)
    if isinstance(obj, list):
        return [_redact_obj(v, secrets=secrets) for v in obj]
    if isinstance(obj, tuple):
        return tuple(_redact_obj(v, secrets=secrets) for v in obj)
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if _is_sensitive_key(k) else _redact_obj(v, secrets=secrets)
            for k, v in obj.items()
        }
    return obj


def _make_redaction_processor(*, secrets: list[str]) -> Processor:
    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], redact(event_dict, secrets=secrets))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        # always on: strips Authorization/api-key fields even when no secret is registered
        _make_redaction_processor(secrets=list(secrets or [])),
    ]

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        cache_logger_on_first_use=True,
    )
