"""Released-once resource handles."""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Disposable:
    """Wraps a release callback that runs at most once."""

    def __init__(self, release: Callable[[], None] | None = None, name: str = "") -> None:
        self._release = release
        self.name = name
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        release, self._release = self._release, None
        if release is not None:
            release()
        logger.debug("Disposed %s", self.name or self)
