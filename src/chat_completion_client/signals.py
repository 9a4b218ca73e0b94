from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class AbortSignal(Protocol):
    @property
    def aborted(self) -> bool: ...


class _Signal:
    def __init__(self) -> None:
        self._aborted = False
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted


class AbortController:
    """Owner side of a cancellation signal polled between stream chunks."""

    def __init__(self) -> None:
        self._signal = _Signal()

    @property
    def signal(self) -> AbortSignal:
        return self._signal

    def abort(self, reason: str | None = None) -> None:
        if self._signal._aborted:
            return
        self._signal.reason = reason
        self._signal._aborted = True
