"""
Incremental decoding of an OpenAI chat-completion SSE stream.

The decoder is fed raw body chunks in arrival order. Chunk boundaries carry no
meaning: a chunk may end mid-line or in the middle of a multi-byte character,
so both the byte decoder and the line buffer keep state between calls.
"""

from __future__ import annotations

import codecs
import re
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog
from pydantic import ValidationError

from .contracts import ToolCall
from .metrics import stream_discarded_payloads_total
from .openai_compat import ChatCompletionChunk, ChunkChoice, ToolCallDelta
from .tracing import Trace

log = structlog.get_logger()

DONE_PAYLOAD = "[DONE]"

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


@dataclass
class _ToolCallBuffer:
    id: str | None
    name: str | None
    arguments: str = ""

    def freeze(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, arguments=self.arguments)


@dataclass
class StreamState:
    text: str = ""
    tool_calls: dict[int, _ToolCallBuffer] = field(default_factory=dict)
    finish_reason: str | None = None
    terminated: bool = False
    pending: str = ""
    tokens: int = 0
    discarded: int = 0

    @property
    def accepts_end_of_stream(self) -> bool:
        # a truncated answer may end without [DONE]
        return self.terminated or self.finish_reason == "length"

    def completed_tool_calls(self) -> list[ToolCall]:
        return [self.tool_calls[index].freeze() for index in sorted(self.tool_calls)]


class SSELineBuffer:
    """Splits text into complete lines, holding back the unterminated tail."""

    def __init__(self) -> None:
        self.pending = ""

    def feed(self, text: str) -> list[str]:
        lines = _LINE_BREAK_RE.split(self.pending + text)
        self.pending = lines.pop()
        return lines


def _data_payload(line: str) -> str | None:
    if not line.startswith("data:"):
        return None
    return line[len("data:") :].strip()


class ChatStreamDecoder:
    def __init__(
        self,
        model: str,
        estimate_tokens: Callable[[str, str], int],
        *,
        trace: Trace | None = None,
    ):
        self.model = model
        self.state = StreamState()
        self._estimate_tokens = estimate_tokens
        self._trace = trace or Trace()
        self._lines = SSELineBuffer()
        self._bytes = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes | str) -> str:
        """Consume one body chunk; return the text appended by it (possibly empty)."""
        text = self._bytes.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        before = len(self.state.text)
        for line in self._lines.feed(text):
            payload = _data_payload(line)
            if payload:
                self._handle_payload(payload)
        self.state.pending = self._lines.pending
        return self.state.text[before:]

    def _discard(self, reason: str, **fields: object) -> None:
        self.state.discarded += 1
        stream_discarded_payloads_total.labels(reason=reason).inc()
        log.warning(f"chat_{reason}", **fields)

    def _handle_payload(self, payload: str) -> None:
        state = self.state
        if payload == DONE_PAYLOAD:
            state.terminated = True
            return
        if state.terminated:
            self._discard("tokens_after_done", payload=payload[:200])
            return

        try:
            chunk = ChatCompletionChunk.model_validate_json(payload)
        except ValidationError:
            self._discard("invalid_json", payload=payload[:200])
            return

        if not chunk.choices:
            return
        if len(chunk.choices) != 1:
            self._discard("multiple_choices", choices=len(chunk.choices))
            return

        choice = chunk.choices[0]
        delta = choice.delta
        if delta is not None and isinstance(delta.content, str):
            state.tokens += self._estimate_tokens(self.model, delta.content)
            state.text += delta.content
        elif delta is not None and delta.tool_calls:
            self._merge_tool_calls(delta.tool_calls)
        self._handle_finish_reason(choice)

    def _merge_tool_calls(self, fragments: list[ToolCallDelta]) -> None:
        for fragment in fragments:
            function = fragment.function
            entry = self.state.tool_calls.get(fragment.index)
            if entry is None:
                entry = _ToolCallBuffer(id=fragment.id, name=function.name if function else None)
                self.state.tool_calls[fragment.index] = entry
            else:
                entry.id = entry.id or fragment.id
                if function is not None and not entry.name:
                    entry.name = function.name
            if function is not None and function.arguments:
                entry.arguments += function.arguments

    def _handle_finish_reason(self, choice: ChunkChoice) -> None:
        reason = choice.finish_reason
        if not reason:
            return
        state = self.state
        if reason in ("stop", "tool_calls"):
            state.finish_reason = reason
            state.terminated = True
        elif reason == "length":
            state.finish_reason = reason
            log.warning("chat_response_truncated", model=self.model, tokens=state.tokens)
            self._trace.error("response too long, increase max_tokens.")
        else:
            log.info("chat_unknown_finish_reason", finish_reason=reason, choice=choice.model_dump())
