"""Outbound text batching for streamed deltas."""

from __future__ import annotations

import time
from typing import Callable


class FlushBuffer:
    """Hold partial text until it is large enough or old enough to send.

    ``push`` returns the text to emit once the pending buffer reaches
    ``min_chars`` characters or ``min_interval`` seconds have passed since the
    previous flush; otherwise it returns ``None``.
    """

    __slots__ = ("_pending", "_size", "_last_flush", "_min_chars", "_min_interval", "_clock")

    def __init__(
        self,
        *,
        min_chars: int = 3,
        min_interval: float = 0.016,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pending: list[str] = []
        self._size = 0
        self._min_chars = min_chars
        self._min_interval = min_interval
        self._clock = clock
        self._last_flush = clock()

    @property
    def pending(self) -> str:
        return "".join(self._pending)

    def push(self, text: str) -> str | None:
        if text:
            self._pending.append(text)
            self._size += len(text)
        if not self._pending:
            return None
        if (
            self._size >= self._min_chars
            or self._clock() - self._last_flush >= self._min_interval
        ):
            return self.flush()
        return None

    def flush(self) -> str | None:
        """Return and clear everything pending, or ``None`` when empty."""

        if not self._pending:
            return None
        text = "".join(self._pending)
        self._pending.clear()
        self._size = 0
        self._last_flush = self._clock()
        return text or None


__all__ = ["FlushBuffer"]
