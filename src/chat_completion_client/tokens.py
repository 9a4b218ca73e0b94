from __future__ import annotations

import functools

import tiktoken

from .request_builder import split_model_identifier

DEFAULT_ENCODING = "o200k_base"


@functools.lru_cache(maxsize=64)
def _encoding_for(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding(DEFAULT_ENCODING)


def estimate_tokens(model: str, text: str) -> int:
    if not text:
        return 0
    encoding = _encoding_for(split_model_identifier(model))
    return len(encoding.encode(text, disallowed_special=()))
