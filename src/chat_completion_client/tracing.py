from __future__ import annotations

import json
from typing import Any


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def _fence_for(text: str) -> str:
    fence = "```"
    while fence in text:
        fence += "`"
    return fence


class Trace:
    """Trace sink. The base class drops everything."""

    def item_value(self, name: str, value: Any) -> None:
        pass

    def details_fenced(self, title: str, value: Any, lang: str | None = None) -> None:
        pass

    def fence(self, text: Any, lang: str | None = None) -> None:
        pass

    def error(self, message: str) -> None:
        pass


class MarkdownTrace(Trace):
    """Collects a markdown report of a completion call."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    @property
    def content(self) -> str:
        return "".join(self._parts)

    def _fenced(self, value: Any, lang: str | None) -> str:
        text = _render(value)
        fence = _fence_for(text)
        return f"\n{fence}{lang or ''}\n{text}\n{fence}\n"

    def item_value(self, name: str, value: Any) -> None:
        rendered = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
        self._parts.append(f"- {name}: {rendered}\n")

    def details_fenced(self, title: str, value: Any, lang: str | None = None) -> None:
        if lang is None and not isinstance(value, str):
            lang = "json"
        self._parts.append(f"\n<details><summary>{title}</summary>\n{self._fenced(value, lang)}\n</details>\n")

    def fence(self, text: Any, lang: str | None = None) -> None:
        self._parts.append(self._fenced(text, lang))

    def error(self, message: str) -> None:
        self._parts.append(f"\n> [!CAUTION]\n> {message}\n")
