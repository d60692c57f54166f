"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
from dotenv import load_dotenv

from generic_lsp_client.config import Settings
from generic_lsp_client.lsp.client import SessionBackend
from generic_lsp_client.lsp.launch import LaunchSpec
from generic_lsp_client.lsp.scope import Document
from generic_lsp_client.lsp.trace import TraceSink
from generic_lsp_client.lsp.watcher import FileEvent

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item

# Load environment variables from .env file
load_dotenv()


def pytest_configure(config: "Config") -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")


def pytest_collection_modifyitems(items: list["Item"]) -> None:
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


class FakeBackend(SessionBackend):
    """In-memory session backend recording everything forwarded to it.

    The handshake can be held open with ``gate_handshake`` and released by
    setting ``handshake``.
    """

    def __init__(
        self,
        spec: LaunchSpec,
        settings: Settings,
        trace: TraceSink,
        *,
        start_error: BaseException | None = None,
        gate_handshake: bool = False,
        acknowledge_shutdown: bool = True,
    ) -> None:
        self.spec = spec
        self.settings = settings
        self.trace = trace
        self.start_error = start_error
        self.acknowledge_shutdown = acknowledge_shutdown
        self.handshake = asyncio.Event()
        if not gate_handshake:
            self.handshake.set()
        self.started = False
        self.shutdown_calls = 0
        self.events: list[tuple[str, Any]] = []

    async def start(self, timeout: float) -> None:
        self.started = True
        if self.start_error is not None:
            raise self.start_error
        await self.handshake.wait()

    async def shutdown(self, timeout: float) -> bool:
        self.shutdown_calls += 1
        return self.acknowledge_shutdown

    async def did_open(self, doc: Document) -> None:
        self.events.append(("open", doc))

    async def did_change(self, doc: Document) -> None:
        self.events.append(("change", doc))

    async def did_save(self, doc: Document) -> None:
        self.events.append(("save", doc))

    async def did_close(self, doc: Document) -> None:
        self.events.append(("close", doc))

    async def did_change_watched_files(self, changes: Sequence[FileEvent]) -> None:
        self.events.append(("files", list(changes)))

    async def did_change_workspace_folders(self, added: Sequence[Path], removed: Sequence[Path]) -> None:
        self.events.append(("folders", (list(added), list(removed))))


class FakeBackendFactory:
    """Backend factory handed to SessionManager; keeps every backend it built."""

    def __init__(self) -> None:
        self.backends: list[FakeBackend] = []
        self.start_error: BaseException | None = None
        self.gate_handshake = False
        self.acknowledge_shutdown = True

    def __call__(self, spec: LaunchSpec, settings: Settings, trace: TraceSink) -> FakeBackend:
        backend = FakeBackend(
            spec,
            settings,
            trace,
            start_error=self.start_error,
            gate_handshake=self.gate_handshake,
            acknowledge_shutdown=self.acknowledge_shutdown,
        )
        self.backends.append(backend)
        return backend

    @property
    def last(self) -> FakeBackend:
        return self.backends[-1]


@pytest.fixture
def backend_factory() -> FakeBackendFactory:
    return FakeBackendFactory()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Empty workspace root."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def test_settings(workspace: Path) -> Settings:
    """Settings with short timeouts and a temporary workspace."""
    return Settings(workspace_roots=[workspace], init_timeout=2.0, shutdown_timeout=0.5)


@pytest.fixture
def spec() -> LaunchSpec:
    return LaunchSpec(command="generic-language-server", environment={"RUST_LOG": "debug"})


@pytest.fixture
def gen_document(workspace: Path) -> Document:
    path = workspace / "main.gen"
    path.write_text("let x = 1\n", encoding="utf-8")
    return Document.from_path(path)

