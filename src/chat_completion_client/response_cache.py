from __future__ import annotations

import asyncio
import hashlib
import json
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from .config import DEFAULT_CACHE_NAME
from .crypto import decrypt_text, encrypt_text, fernet_from_key_str

log = structlog.get_logger()


def key_fingerprint(key: Any) -> str:
    canonical = json.dumps(key, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@runtime_checkable
class ResponseCache(Protocol):
    async def get(self, key: Any) -> str | None: ...

    async def set(self, key: Any, value: str) -> None: ...

    async def fingerprint(self, key: Any) -> str: ...


class InMemoryResponseCache:
    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: Any) -> str | None:
        return self._entries.get(key_fingerprint(key))

    async def set(self, key: Any, value: str) -> None:
        async with self._lock:
            self._entries[key_fingerprint(key)] = value

    async def fingerprint(self, key: Any) -> str:
        return key_fingerprint(key)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FileResponseCache:
    """
    Append-only JSON-lines response cache.

    Each line holds one record ``{"sha", "key", "val"}``; on load the last
    record for a fingerprint wins. With a Fernet key every line is stored
    encrypted, so prompts and answers are not readable at rest.
    """

    def __init__(self, path: str | Path, *, fernet_key: str | None = None):
        self.path = Path(path)
        self._fernet = fernet_from_key_str(fernet_key) if fernet_key else None
        self._entries: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    def _decode_line(self, line: str) -> dict[str, Any]:
        raw = decrypt_text(self._fernet, line) if self._fernet else line
        record = json.loads(raw)
        if not isinstance(record, dict) or not isinstance(record.get("sha"), str):
            raise ValueError("Cache record must be an object with a 'sha' field.")
        return record

    def _encode_record(self, record: dict[str, Any]) -> str:
        raw = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
        return encrypt_text(self._fernet, raw) if self._fernet else raw

    def _load(self) -> dict[str, str]:
        entries: dict[str, str] = {}
        if not self.path.exists():
            return entries
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = self._decode_line(line)
                except ValueError as e:
                    log.warning("response_cache_corrupt_line", path=str(self.path), line=lineno, error=str(e))
                    continue
                if isinstance(record.get("val"), str):
                    entries[record["sha"]] = record["val"]
        log.debug("response_cache_loaded", path=str(self.path), entries=len(entries))
        return entries

    async def _ensure_loaded(self) -> dict[str, str]:
        if self._entries is None:
            async with self._lock:
                if self._entries is None:
                    self._entries = self._load()
        return self._entries

    async def get(self, key: Any) -> str | None:
        entries = await self._ensure_loaded()
        return entries.get(key_fingerprint(key))

    async def set(self, key: Any, value: str) -> None:
        entries = await self._ensure_loaded()
        sha = key_fingerprint(key)
        line = self._encode_record({"sha": sha, "key": key, "val": value})
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
            entries[sha] = value

    async def fingerprint(self, key: Any) -> str:
        return key_fingerprint(key)

    async def clear(self) -> None:
        async with self._lock:
            self.path.unlink(missing_ok=True)
            self._entries = {}


_caches: dict[tuple[str, str | None], InMemoryResponseCache | FileResponseCache] = {}


def get_chat_completion_cache(
    name: str | None = None,
    *,
    cache_dir: str | Path | None = None,
    fernet_key: str | None = None,
) -> InMemoryResponseCache | FileResponseCache:
    """Process-wide cache for a namespace; file backed when ``cache_dir`` is given."""
    name = name or DEFAULT_CACHE_NAME
    slot = (name, str(cache_dir) if cache_dir is not None else None)
    cache = _caches.get(slot)
    if cache is None:
        if cache_dir is None:
            cache = InMemoryResponseCache()
        else:
            cache = FileResponseCache(Path(cache_dir) / f"{name}.jsonl", fernet_key=fernet_key)
        _caches[slot] = cache
    return cache
