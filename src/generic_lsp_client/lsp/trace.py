"""Trace output channel for protocol-level messages."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

from generic_lsp_client.disposable import Disposable

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES = 10_000


class TraceSink(Disposable):
    """Named, append-only text channel.

    Lines are mirrored to the ``generic_lsp_client.lsp.trace`` logger at
    DEBUG level and to any subscribed listeners. Only the most recent
    ``max_lines`` lines are kept.
    """

    def __init__(self, name: str, max_lines: int = DEFAULT_MAX_LINES) -> None:
        super().__init__(name=name)
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._listeners: list[Callable[[str], None]] = []

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def append_line(self, text: str) -> None:
        if self.is_disposed:
            return
        for line in text.splitlines() or [""]:
            self._lines.append(line)
            logger.debug("[%s] %s", self.name, line)
            for listener in list(self._listeners):
                listener(line)

    def subscribe(self, listener: Callable[[str], None]) -> Disposable:
        """Receive every appended line until the returned handle is disposed."""
        self._listeners.append(listener)

        def release() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposable(release, name=f"{self.name} listener")

    def dispose(self) -> None:
        self._listeners.clear()
        super().dispose()
