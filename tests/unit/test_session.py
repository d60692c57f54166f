"""Tests for the session handle and manager."""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest

from generic_lsp_client.config import Settings
from generic_lsp_client.lsp.errors import SessionAlreadyStartedError, SessionError, SessionNotRunningError
from generic_lsp_client.lsp.launch import LaunchSpec
from generic_lsp_client.lsp.scope import Document, ScopeRule, WatchRule
from generic_lsp_client.lsp.session import RestartPolicy, SessionManager, SessionState
from generic_lsp_client.lsp.trace import TraceSink
from generic_lsp_client.lsp.watcher import FileChangeType, FileEvent

if TYPE_CHECKING:
    from conftest import FakeBackendFactory

SCOPE = ScopeRule()
WATCH = WatchRule.for_extension()


def _manager(settings: Settings, factory: "FakeBackendFactory", policy: RestartPolicy | None = None) -> SessionManager:
    return SessionManager(settings, backend_factory=factory, restart_policy=policy)


async def _start(manager: SessionManager, spec: LaunchSpec):  # noqa: ANN202
    return await manager.start(spec, SCOPE, WATCH, TraceSink("trace"))


class TestLifecycle:
    """State machine tests."""

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, test_settings: Settings, backend_factory: "FakeBackendFactory") -> None:
        manager = _manager(test_settings, backend_factory)
        assert manager.status is SessionState.UNINITIALIZED
        assert await manager.stop() is None
        assert manager.handle is None
        assert backend_factory.backends == []

    @pytest.mark.asyncio
    async def test_start_then_stop(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)

        assert handle.state is SessionState.RUNNING
        assert manager.status is SessionState.RUNNING
        assert backend_factory.last.spec == spec
        assert handle.bridge is not None and handle.bridge.is_running

        await manager.stop()
        assert handle.state is SessionState.STOPPED
        assert handle.shutdown_acknowledged is True
        assert backend_factory.last.shutdown_calls == 1
        assert handle.bridge.is_disposed
        # The reference is kept after stop; status carries the lifecycle
        assert manager.handle is handle
        assert manager.status is SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_twice_shuts_down_once(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        await _start(manager, spec)
        await manager.stop()
        await manager.stop()
        assert backend_factory.last.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_unacknowledged_shutdown_still_completes(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        backend_factory.acknowledge_shutdown = False
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)
        await manager.stop()
        assert handle.state is SessionState.STOPPED
        assert handle.shutdown_acknowledged is False

    @pytest.mark.asyncio
    async def test_launch_failure_propagates(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        backend_factory.start_error = FileNotFoundError(2, "No such file or directory", "generic-language-server")
        manager = _manager(test_settings, backend_factory)
        with pytest.raises(FileNotFoundError):
            await _start(manager, spec)
        assert manager.status is SessionState.STOPPED
        assert manager.handle is not None and manager.handle.bridge is None
        assert backend_factory.last.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_missing_workspace_root_shuts_server_down(
        self, workspace: Path, tmp_path: Path, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        settings = Settings(workspace_roots=[workspace, tmp_path / "missing"], shutdown_timeout=0.5)
        manager = _manager(settings, backend_factory)
        with pytest.raises(OSError):
            await _start(manager, spec)

        assert manager.status is SessionState.STOPPED
        assert manager.handle is not None
        assert manager.handle.bridge is not None and not manager.handle.bridge.is_running
        assert backend_factory.last.shutdown_calls == 1

        await manager.stop()
        assert backend_factory.last.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_watcher_stop_failure_still_shuts_server_down(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)
        assert handle.bridge is not None
        bridge = handle.bridge
        bridge.stop = AsyncMock(side_effect=RuntimeError("watcher failed"))  # type: ignore[method-assign]

        try:
            with pytest.raises(RuntimeError, match="watcher failed"):
                await manager.stop()
        finally:
            bridge.dispose()

        assert handle.state is SessionState.STOPPED
        assert backend_factory.last.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_handle_cannot_restart(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)
        await manager.stop()
        with pytest.raises(SessionError):
            await handle.start(1.0)


class TestOrdering:
    """Nothing reaches the server before the handshake completes."""

    @pytest.mark.asyncio
    async def test_no_events_before_handshake(
        self,
        test_settings: Settings,
        backend_factory: "FakeBackendFactory",
        spec: LaunchSpec,
        gen_document: Document,
    ) -> None:
        backend_factory.gate_handshake = True
        manager = _manager(test_settings, backend_factory)
        start_task = asyncio.create_task(_start(manager, spec))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert manager.status is SessionState.STARTING
        assert not start_task.done()
        handle = manager.handle
        assert handle is not None

        with pytest.raises(SessionNotRunningError):
            await handle.open_document(gen_document)
        await handle.notify_file_changes([FileEvent(gen_document.uri, FileChangeType.CHANGED)])
        assert handle.bridge is None
        assert backend_factory.last.events == []

        backend_factory.last.handshake.set()
        assert await start_task is handle
        assert handle.state is SessionState.RUNNING

        assert await handle.open_document(gen_document)
        assert backend_factory.last.events == [("open", gen_document)]
        await manager.stop()


class TestDocumentSync:
    """Scope-gated document synchronization."""

    @pytest.mark.asyncio
    async def test_out_of_scope_documents_are_ignored(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)
        for doc in (
            Document(uri="file:///a.rs", language_id="rust"),
            Document(uri="untitled:Untitled-1", language_id="gen"),
        ):
            assert await handle.open_document(doc) is False
            assert await handle.change_document(doc, "x") is False
            assert await handle.save_document(doc) is False
            assert await handle.close_document(doc) is False
        assert backend_factory.last.events == []
        await manager.stop()

    @pytest.mark.asyncio
    async def test_full_document_lifecycle(
        self,
        test_settings: Settings,
        backend_factory: "FakeBackendFactory",
        spec: LaunchSpec,
        gen_document: Document,
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)

        await handle.open_document(gen_document)
        await handle.change_document(gen_document, "let x = 2\n")
        await handle.change_document(gen_document, "let x = 3\n")
        await handle.save_document(gen_document)
        assert handle.open_documents == [gen_document.uri]
        await handle.close_document(gen_document)
        assert handle.open_documents == []

        events = backend_factory.last.events
        assert [kind for kind, _ in events] == ["open", "change", "change", "save", "close"]
        assert [doc.version for kind, doc in events if kind == "change"] == [1, 2]
        assert events[2][1].text == "let x = 3\n"
        await manager.stop()

    @pytest.mark.asyncio
    async def test_events_rejected_after_stop(
        self,
        test_settings: Settings,
        backend_factory: "FakeBackendFactory",
        spec: LaunchSpec,
        gen_document: Document,
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)
        await manager.stop()
        with pytest.raises(SessionNotRunningError):
            await handle.open_document(gen_document)
        with pytest.raises(SessionNotRunningError):
            await handle.change_workspace_folders(added=[Path("/tmp")])

    @pytest.mark.asyncio
    async def test_file_changes_forwarded_while_running(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)
        change = FileEvent("file:///w/a.gen", FileChangeType.CREATED)
        await handle.notify_file_changes([change])
        await handle.notify_file_changes([])
        assert backend_factory.last.events == [("files", [change])]
        await manager.stop()

    @pytest.mark.asyncio
    async def test_workspace_folders(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec, tmp_path: Path
    ) -> None:
        manager = _manager(test_settings, backend_factory)
        handle = await _start(manager, spec)
        extra = tmp_path / "extra"
        original = handle.roots[0]
        await handle.change_workspace_folders(added=[extra], removed=[original])
        assert handle.roots == [extra]
        assert backend_factory.last.events == [("folders", ([extra], [original]))]
        await manager.stop()


class TestRestartPolicy:
    """A second start() while a session is alive."""

    @pytest.mark.asyncio
    async def test_orphan_keeps_first_handle_running(
        self,
        test_settings: Settings,
        backend_factory: "FakeBackendFactory",
        spec: LaunchSpec,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.WARNING, logger="generic_lsp_client")
        manager = _manager(test_settings, backend_factory)
        first = await _start(manager, spec)
        second = await _start(manager, spec)

        assert first is not second
        assert manager.handle is second
        assert first.state is SessionState.RUNNING
        assert second.state is SessionState.RUNNING
        assert backend_factory.backends[0].shutdown_calls == 0
        assert manager.orphaned_handles == [first]
        assert "will not be stopped" in caplog.text

        await manager.stop()
        assert first.state is SessionState.RUNNING
        await first.stop(test_settings.shutdown_timeout)

    @pytest.mark.asyncio
    async def test_orphan_is_default(self, test_settings: Settings, backend_factory: "FakeBackendFactory") -> None:
        assert _manager(test_settings, backend_factory).restart_policy is RestartPolicy.ORPHAN

    @pytest.mark.asyncio
    async def test_stop_previous(
        self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec
    ) -> None:
        manager = _manager(test_settings, backend_factory, RestartPolicy.STOP_PREVIOUS)
        first = await _start(manager, spec)
        second = await _start(manager, spec)
        assert first.state is SessionState.STOPPED
        assert backend_factory.backends[0].shutdown_calls == 1
        assert manager.handle is second
        assert manager.orphaned_handles == []
        await manager.stop()

    @pytest.mark.asyncio
    async def test_reject(self, test_settings: Settings, backend_factory: "FakeBackendFactory", spec: LaunchSpec) -> None:
        manager = _manager(test_settings, backend_factory, RestartPolicy.REJECT)
        first = await _start(manager, spec)
        with pytest.raises(SessionAlreadyStartedError):
            await _start(manager, spec)
        assert manager.handle is first
        assert len(backend_factory.backends) == 1

        await manager.stop()
        second = await _start(manager, spec)
        assert manager.handle is second
        await manager.stop()

    def test_policy_from_settings(self, backend_factory: "FakeBackendFactory", workspace: Path) -> None:
        settings = Settings(workspace_roots=[workspace], restart_policy="reject")
        assert SessionManager(settings, backend_factory).restart_policy is RestartPolicy.REJECT
