"""Bridge on-disk file changes to the language server.

Editors only report edits to open documents. Changes made by external tools
or VCS checkouts are picked up here with watchdog and forwarded to the
session as ``workspace/didChangeWatchedFiles`` notifications.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from generic_lsp_client.disposable import Disposable
from generic_lsp_client.lsp.scope import WatchRule
from generic_lsp_client.lsp.utils import glob_matches, path_to_uri

logger = logging.getLogger(__name__)


class FileChangeType(IntEnum):
    """LSP FileChangeType values."""

    CREATED = 1
    CHANGED = 2
    DELETED = 3


@dataclass(frozen=True)
class FileEvent:
    """A single watched-file change."""

    uri: str
    type: FileChangeType

    def to_dict(self) -> dict[str, Any]:
        """Convert to LSP FileEvent format."""
        return {"uri": self.uri, "type": int(self.type)}


class GlobEventHandler(FileSystemEventHandler):
    """Filters watchdog events under one root by a glob and emits FileEvents.

    Runs on the watchdog observer thread; ``emit`` must be thread-safe.
    """

    def __init__(self, root: Path, pattern: str, emit: Callable[[FileEvent], None]) -> None:
        super().__init__()
        self.root = root
        self.pattern = pattern
        self._emit = emit

    def _maybe_emit(self, raw_path: str | bytes, change: FileChangeType) -> None:
        path = Path(raw_path.decode() if isinstance(raw_path, bytes) else raw_path)
        try:
            rel = path.relative_to(self.root)
        except ValueError:
            return
        if glob_matches(rel.as_posix(), self.pattern):
            self._emit(FileEvent(uri=path_to_uri(path), type=change))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._maybe_emit(event.src_path, FileChangeType.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._maybe_emit(event.src_path, FileChangeType.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._maybe_emit(event.src_path, FileChangeType.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._maybe_emit(event.src_path, FileChangeType.DELETED)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._maybe_emit(dest, FileChangeType.CREATED)


class FileWatchBridge(Disposable):
    """Recursive watch over every workspace root for one glob.

    Events are handed from the observer thread to the event loop and
    delivered in order to ``forward`` in batches.
    """

    def __init__(
        self,
        rule: WatchRule,
        roots: Sequence[Path],
        forward: Callable[[list[FileEvent]], Awaitable[None]],
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        super().__init__(self._halt, name=f"watcher {rule.glob}")
        self.rule = rule
        self.roots = [Path(r).resolve() for r in roots]
        self._forward = forward
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[FileEvent] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self.handlers: list[GlobEventHandler] = []

    @property
    def is_running(self) -> bool:
        return self._pump_task is not None and not self._pump_task.done()

    def start(self) -> None:
        """Begin watching. Must be called from the event loop thread."""
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._pump_task = asyncio.create_task(self._pump())

        self._observer = self._observer_factory()
        try:
            for root in self.roots:
                handler = GlobEventHandler(root, self.rule.glob, self._emit_threadsafe)
                self.handlers.append(handler)
                self._observer.schedule(handler, str(root), recursive=True)
            self._observer.start()
        except BaseException:
            # Emitters started before the failing one are still running
            try:
                self._observer.stop()
            except Exception:
                logger.debug("Failed to stop watcher after start error", exc_info=True)
            self._observer = None
            self.dispose()
            raise
        logger.info("Watching %s under %d root(s)", self.rule.glob, len(self.roots))

    def _emit_threadsafe(self, event: FileEvent) -> None:
        if self._loop is None or self._queue is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def _pump(self) -> None:
        assert self._queue is not None
        while True:
            batch = [await self._queue.get()]
            while not self._queue.empty():
                batch.append(self._queue.get_nowait())
            logger.debug("Forwarding %d file event(s)", len(batch))
            try:
                await self._forward(batch)
            except Exception:
                logger.exception("Failed to forward file events")

    def _halt(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer = None
        if self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None
        self.handlers.clear()

    async def stop(self) -> None:
        """Stop the observer thread and the forwarding task."""
        if self._observer is not None:
            observer, self._observer = self._observer, None
            observer.stop()
            if observer.is_alive():
                await asyncio.to_thread(observer.join)
        if self._pump_task is not None:
            task, self._pump_task = self._pump_task, None
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.dispose()
