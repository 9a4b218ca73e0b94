from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

FinishReason = Literal["stop", "length", "tool_calls"]


@dataclass(frozen=True)
class ToolCall:
    id: str | None
    name: str | None
    arguments: str = ""


@dataclass(frozen=True)
class ChatCompletionProgress:
    response_so_far: str
    tokens_so_far: int
    response_chunk: str


@dataclass(frozen=True)
class CompletionResult:
    text: str
    finish_reason: FinishReason | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    cached: bool = False

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"

    @property
    def needs_tool_calls(self) -> bool:
        return self.finish_reason == "tool_calls"
