from __future__ import annotations

import json
from typing import Any

import httpx


def sse(payload: Any) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n"


def delta_chunk(content: str | None = None, *, finish_reason: str | None = None, tool_calls=None) -> dict:
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    choice: dict[str, Any] = {"index": 0, "delta": delta}
    if finish_reason is not None:
        choice["finish_reason"] = finish_reason
    return {"id": "chatcmpl-1", "object": "chat.completion.chunk", "choices": [choice]}


def tool_fragment(index: int, *, arguments: str = "", id: str | None = None, name: str | None = None) -> dict:
    function: dict[str, Any] = {"arguments": arguments}
    if name is not None:
        function["name"] = name
    fragment: dict[str, Any] = {"index": index, "function": function}
    if id is not None:
        fragment["id"] = id
        fragment["type"] = "function"
    return fragment


def stream_response(*chunks: bytes | str, status_code: int = 200, headers: dict[str, str] | None = None) -> httpx.Response:
    async def body():
        for chunk in chunks:
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk

    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream", **(headers or {})},
        content=body(),
    )


def char_count(_model: str, text: str) -> int:
    return len(text)


async def no_sleep(_: float) -> None:
    return None
