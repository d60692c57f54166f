"""Session lifecycle: one handle per language server instance.

A ``SessionHandle`` moves strictly forward through
``UNINITIALIZED -> STARTING -> RUNNING -> STOPPING -> STOPPED``.
``SessionManager`` owns the current handle and decides what a second
``start()`` does while the previous handle is still alive.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path

from sansio_lsp_client.structs import Diagnostic

from generic_lsp_client.config import Settings
from generic_lsp_client.lsp.client import LanguageClient, SessionBackend
from generic_lsp_client.lsp.errors import SessionAlreadyStartedError, SessionError, SessionNotRunningError
from generic_lsp_client.lsp.launch import LaunchSpec
from generic_lsp_client.lsp.scope import Document, DocumentScopeFilter, ScopeRule, WatchRule
from generic_lsp_client.lsp.trace import TraceSink
from generic_lsp_client.lsp.watcher import FileEvent, FileWatchBridge

logger = logging.getLogger(__name__)

BackendFactory = Callable[[LaunchSpec, Settings, TraceSink], SessionBackend]


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self is SessionState.STOPPED


class RestartPolicy(Enum):
    """What ``SessionManager.start`` does while a handle is still alive."""

    ORPHAN = "orphan"
    STOP_PREVIOUS = "stop_previous"
    REJECT = "reject"


class SessionHandle:
    """Live connection to one language server process.

    Document events are only forwarded while the handle is RUNNING and only
    for documents accepted by the scope filter.
    """

    def __init__(
        self,
        backend: SessionBackend,
        scope: ScopeRule,
        watch: WatchRule,
        trace: TraceSink,
        roots: Sequence[Path],
    ) -> None:
        self.backend = backend
        self.scope = scope
        self.watch = watch
        self.trace = trace
        self.roots = list(roots)
        self.filter = DocumentScopeFilter(scope)
        self.state = SessionState.UNINITIALIZED
        self.bridge: FileWatchBridge | None = None
        self.shutdown_acknowledged: bool | None = None
        self._versions: dict[str, int] = {}

    def __repr__(self) -> str:
        return f"<SessionHandle {self.state.value} scope={self.scope.language_id!r}>"

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def open_documents(self) -> list[str]:
        return list(self._versions)

    async def start(self, timeout: float) -> None:
        """Spawn the server and wait for the handshake, then start watching files.

        Raises whatever the backend or file watcher raises (``OSError`` on
        spawn failure, ``TimeoutError`` or ``HandshakeError`` on a failed
        handshake). The server is shut down before the error propagates and
        the handle is STOPPED afterwards.
        """
        if self.state is not SessionState.UNINITIALIZED:
            raise SessionError(f"Session cannot be started from state {self.state.value}")

        self.state = SessionState.STARTING
        try:
            await self.backend.start(timeout)
            self.bridge = FileWatchBridge(self.watch, self.roots, self.notify_file_changes)
            self.bridge.start()
        except BaseException:
            await self._abort(timeout)
            raise
        self.state = SessionState.RUNNING

    async def _abort(self, timeout: float) -> None:
        self.state = SessionState.STOPPING
        try:
            self.shutdown_acknowledged = await self.backend.shutdown(timeout)
        except Exception:
            logger.exception("Failed to shut down language server after a failed start")
        finally:
            self.state = SessionState.STOPPED

    async def stop(self, timeout: float) -> None:
        """Stop the server; bounded by ``timeout`` before forced termination."""
        if self.state in (SessionState.STOPPING, SessionState.STOPPED):
            return
        if self.state is SessionState.UNINITIALIZED:
            self.state = SessionState.STOPPED
            return

        self.state = SessionState.STOPPING
        try:
            if self.bridge is not None:
                await self.bridge.stop()
        finally:
            try:
                self.shutdown_acknowledged = await self.backend.shutdown(timeout)
            finally:
                self.state = SessionState.STOPPED
                self._versions.clear()

    def _require_running(self) -> None:
        if not self.is_running:
            raise SessionNotRunningError(f"Session is {self.state.value}, not running")

    async def open_document(self, doc: Document) -> bool:
        """Forward ``textDocument/didOpen``.

        Returns:
            False if the document is out of scope and was ignored
        """
        if not self.filter.matches(doc):
            return False
        self._require_running()
        self._versions[doc.uri] = doc.version
        await self.backend.did_open(doc)
        return True

    async def change_document(self, doc: Document, text: str) -> bool:
        """Forward a full-text ``textDocument/didChange`` with a bumped version."""
        if not self.filter.matches(doc):
            return False
        self._require_running()
        version = self._versions.get(doc.uri, doc.version) + 1
        self._versions[doc.uri] = version
        await self.backend.did_change(Document(doc.uri, doc.language_id, version, text))
        return True

    async def save_document(self, doc: Document) -> bool:
        if not self.filter.matches(doc):
            return False
        self._require_running()
        await self.backend.did_save(doc)
        return True

    async def close_document(self, doc: Document) -> bool:
        if not self.filter.matches(doc):
            return False
        self._require_running()
        self._versions.pop(doc.uri, None)
        await self.backend.did_close(doc)
        return True

    async def notify_file_changes(self, changes: Sequence[FileEvent]) -> None:
        """Forward watched-file changes (the file watch bridge's channel)."""
        if not changes:
            return
        if not self.is_running:
            logger.debug("Dropping %d file event(s): session is %s", len(changes), self.state.value)
            return
        await self.backend.did_change_watched_files(changes)

    async def change_workspace_folders(self, added: Sequence[Path] = (), removed: Sequence[Path] = ()) -> None:
        self._require_running()
        await self.backend.did_change_workspace_folders(added, removed)
        for root in removed:
            if root in self.roots:
                self.roots.remove(root)
        self.roots.extend(root for root in added if root not in self.roots)

    def diagnostics(self, uri: str) -> list[Diagnostic]:
        return self.backend.diagnostics(uri)


class SessionManager:
    """Owns the session handle for one activation context.

    ``handle`` is set by ``start`` and is never cleared by ``stop``; use
    ``status`` rather than comparing ``handle`` against None.
    """

    def __init__(
        self,
        settings: Settings,
        backend_factory: BackendFactory = LanguageClient,
        restart_policy: RestartPolicy | None = None,
    ) -> None:
        self.settings = settings
        self.backend_factory = backend_factory
        self.restart_policy = restart_policy or RestartPolicy(settings.restart_policy)
        self.handle: SessionHandle | None = None
        self.orphaned_handles: list[SessionHandle] = []

    @property
    def status(self) -> SessionState:
        if self.handle is None:
            return SessionState.UNINITIALIZED
        return self.handle.state

    async def start(
        self,
        spec: LaunchSpec,
        scope: ScopeRule,
        watch: WatchRule,
        trace: TraceSink,
    ) -> SessionHandle:
        """Construct a new handle and start it.

        Returns once the handshake completes. Spawn failures propagate.
        """
        previous = self.handle
        if previous is not None and not previous.state.is_terminal:
            if self.restart_policy is RestartPolicy.REJECT:
                raise SessionAlreadyStartedError(f"A session is already {previous.state.value}")
            if self.restart_policy is RestartPolicy.STOP_PREVIOUS:
                logger.info("Stopping previous session before restart")
                await previous.stop(self.settings.shutdown_timeout)
            else:
                logger.warning("Starting a new session while %r is still alive; it will not be stopped", previous)
                self.orphaned_handles.append(previous)

        backend = self.backend_factory(spec, self.settings, trace)
        handle = SessionHandle(backend, scope, watch, trace, self.settings.workspace_roots)
        self.handle = handle
        await handle.start(self.settings.init_timeout)
        logger.info("Session running (command: %s)", spec.command)
        return handle

    async def stop(self) -> None:
        """Stop the current handle; a no-op if none was ever started."""
        if self.handle is None:
            return
        await self.handle.stop(self.settings.shutdown_timeout)
