"""LSP connection to the Generic language server using sansio-lsp-client.

This module wraps sansio-lsp-client (Sans-I/O) with asyncio subprocess I/O.
``SessionBackend`` is the seam the session layer talks to; ``LanguageClient``
is the real implementation that spawns the server process.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sansio_lsp_client.client import ClientState
from sansio_lsp_client.client import Client as SansioClient
from sansio_lsp_client.events import (
    ConfigurationRequest,
    Event,
    Initialized,
    LogMessage,
    PublishDiagnostics,
    RegisterCapabilityRequest,
    ResponseError,
    ShowMessage,
    Shutdown,
    WorkDoneProgressCreate,
)
from sansio_lsp_client.structs import (
    Diagnostic,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
    WorkspaceFolder,
)

from generic_lsp_client.config import Settings
from generic_lsp_client.defaults import CLIENT_NAME, PROCESS_KILL_GRACE
from generic_lsp_client.lsp.errors import HandshakeError
from generic_lsp_client.lsp.launch import LaunchSpec
from generic_lsp_client.lsp.scope import Document
from generic_lsp_client.lsp.trace import TraceSink
from generic_lsp_client.lsp.watcher import FileEvent

logger = logging.getLogger(__name__)

_LOG_LEVELS = {1: logging.ERROR, 2: logging.WARNING, 3: logging.INFO, 4: logging.DEBUG, 5: logging.DEBUG}
_HEADER_RE = re.compile(rb"Content-Length:\s*(\d+)\r\n(?:[^\r\n]*\r\n)*\r\n")
_STDERR_TAIL = 20
_EXIT_GRACE = 0.5


def workspace_folder(root: Path) -> WorkspaceFolder:
    """Build an LSP workspace folder for a root directory."""
    root = root.resolve()
    return WorkspaceFolder(uri=root.as_uri(), name=root.name or str(root))


class SessionBackend(ABC):
    """Connection to one language server instance."""

    @abstractmethod
    async def start(self, timeout: float) -> None:
        """Spawn the server and complete the initialize handshake."""

    @abstractmethod
    async def shutdown(self, timeout: float) -> bool:
        """Shut the server down.

        Returns:
            True if the server acknowledged ``shutdown`` within ``timeout``,
            False if it had to be terminated.
        """

    @abstractmethod
    async def did_open(self, doc: Document) -> None: ...

    @abstractmethod
    async def did_change(self, doc: Document) -> None: ...

    @abstractmethod
    async def did_save(self, doc: Document) -> None: ...

    @abstractmethod
    async def did_close(self, doc: Document) -> None: ...

    @abstractmethod
    async def did_change_watched_files(self, changes: Sequence[FileEvent]) -> None: ...

    @abstractmethod
    async def did_change_workspace_folders(self, added: Sequence[Path], removed: Sequence[Path]) -> None: ...

    def diagnostics(self, uri: str) -> list[Diagnostic]:
        """Most recently published diagnostics for ``uri``."""
        return []


class _ProtocolClient(SansioClient):
    """Adds the watched-files notification missing from the base client."""

    def did_change_watched_files(self, changes: list[dict[str, Any]]) -> None:
        assert self._state == ClientState.NORMAL
        self._send_notification(method="workspace/didChangeWatchedFiles", params={"changes": changes})


def _split_frames(data: bytes | bytearray) -> tuple[list[str], int]:
    """Extract JSON bodies from a buffer of Content-Length framed messages.

    Returns the bodies of all complete frames and the number of bytes they
    occupy; a trailing partial frame is left for the next call.
    """
    bodies: list[str] = []
    pos = 0
    while True:
        match = _HEADER_RE.search(data, pos)
        if match is None:
            break
        start = match.end()
        end = start + int(match.group(1))
        if end > len(data):
            break
        bodies.append(data[start:end].decode("utf-8", errors="replace"))
        pos = end
    return bodies, pos


def _summarize(body: str) -> str:
    try:
        message = json.loads(body)
    except ValueError:
        return body
    if "method" in message:
        suffix = f" ({message['id']})" if "id" in message else ""
        return f"{message['method']}{suffix}"
    return f"response ({message.get('id')})"


@dataclass
class LanguageClient(SessionBackend):
    """Generic language server client.

    Wraps sansio-lsp-client for protocol handling and manages the server
    subprocess via asyncio.
    """

    spec: LaunchSpec
    settings: Settings
    trace: TraceSink | None = None

    _process: asyncio.subprocess.Process | None = field(default=None, init=False)
    _client: _ProtocolClient | None = field(default=None, init=False)
    _diagnostics: dict[str, list[Diagnostic]] = field(
        default_factory=lambda: dict[str, list[Diagnostic]](),
        init=False,
    )
    _initialized_event: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _initialized: bool = field(default=False, init=False)
    _init_error: str | None = field(default=None, init=False)
    _read_task: asyncio.Task[None] | None = field(default=None, init=False)
    _stderr_task: asyncio.Task[None] | None = field(default=None, init=False)
    _stderr_lines: list[str] = field(default_factory=lambda: list[str](), init=False)
    _recv_trace_buf: bytearray = field(default_factory=bytearray, init=False)

    @property
    def is_initialized(self) -> bool:
        """Check if the handshake has completed."""
        return self._initialized

    @property
    def is_alive(self) -> bool:
        """Check if the server process is still running."""
        return self._process is not None and self._process.returncode is None

    @property
    def _tracing(self) -> bool:
        return self.trace is not None and self.settings.trace != "off"

    def _trace(self, direction: str, body: str) -> None:
        assert self.trace is not None
        text = body if self.settings.trace == "verbose" else _summarize(body)
        self.trace.append_line(f"[Trace - {direction}] {text}")

    def _stderr_tail(self) -> str:
        return "stderr:\n" + "\n".join(self._stderr_lines[-_STDERR_TAIL:])

    async def start(self, timeout: float) -> None:
        """Start the server and initialize the connection.

        Spawn errors (missing binary, permission denied) propagate unchanged.

        Args:
            timeout: Initialization timeout in seconds
        """
        roots = self.settings.workspace_roots
        cwd = str(roots[0]) if roots else None
        logger.info("Starting %s: %s", CLIENT_NAME, " ".join(self.spec.argv()))

        self._process = await asyncio.create_subprocess_exec(
            *self.spec.argv(),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self.spec.environment,
            cwd=cwd,
        )

        self._client = _ProtocolClient(
            process_id=os.getpid(),
            root_uri=self.settings.root_uri,
            workspace_folders=[workspace_folder(root) for root in roots],
            trace=self.settings.trace,
        )

        # Flush the initialize request
        await self._flush()

        self._read_task = asyncio.create_task(self._read_loop())
        if self._process.stderr:
            self._stderr_task = asyncio.create_task(self._read_stderr(self._process.stderr))

        # Wait for initialized (or early process exit)
        try:
            await asyncio.wait_for(self._initialized_event.wait(), timeout=timeout)
        except TimeoutError:
            parts = [
                f"Language server did not initialize within {timeout}s",
                f"process alive: {self.is_alive}, exit code: {self._process.returncode}",
            ]
            if self._stderr_lines:
                parts.append(self._stderr_tail())
            raise TimeoutError("\n".join(parts)) from None
        if self._init_error:
            raise HandshakeError(self._init_error)

    async def _flush(self) -> None:
        """Flush the sansio client send buffer to subprocess stdin."""
        if self._client is None or self._process is None or self._process.stdin is None:
            return
        data = self._client.send()
        if data:
            if self._tracing:
                for body in _split_frames(data)[0]:
                    self._trace("send", body)
            self._process.stdin.write(data)
            await self._process.stdin.drain()

    async def _read_loop(self) -> None:
        """Read from subprocess stdout and feed to sansio client."""
        assert self._process is not None and self._process.stdout is not None
        assert self._client is not None
        try:
            while not self._process.stdout.at_eof():
                data = await self._process.stdout.read(4096)
                if not data:
                    break
                if self._tracing:
                    self._recv_trace_buf += data
                    bodies, consumed = _split_frames(self._recv_trace_buf)
                    del self._recv_trace_buf[:consumed]
                    for body in bodies:
                        self._trace("recv", body)
                for event in self._client.recv(data):
                    await self._handle_event(event)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Error in LSP read loop: %s", e)
        finally:
            # Process exited before initialization: fail start() right away
            if not self._initialized:
                rc = None
                if self._process is not None:
                    with contextlib.suppress(TimeoutError):
                        rc = await asyncio.wait_for(self._process.wait(), timeout=_EXIT_GRACE)
                if rc is None:
                    parts = ["Language server closed its output before initialization"]
                else:
                    parts = [f"Language server exited before initialization (exit code: {rc})"]
                if self._stderr_task and not self._stderr_task.done():
                    await asyncio.sleep(0.1)
                if self._stderr_lines:
                    parts.append(self._stderr_tail())
                self._init_error = "\n".join(parts)
                self._initialized_event.set()

    async def _read_stderr(self, stderr: asyncio.StreamReader) -> None:
        """Read server stderr, log it, and buffer for error reports."""
        while not stderr.at_eof():
            try:
                line = await stderr.readline()
            except asyncio.CancelledError:
                break
            except Exception:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug("[server stderr] %s", text)
                self._stderr_lines.append(text)
                del self._stderr_lines[:-_STDERR_TAIL]

    async def _handle_event(self, event: Event) -> None:
        """Dispatch a sansio-lsp-client Event."""
        if isinstance(event, Initialized):
            self._initialized = True
            self._initialized_event.set()
            logger.info("Language server initialized (capabilities: %s)", list(event.capabilities.keys()))
            # sansio queues the `initialized` notification
            await self._flush()

        elif isinstance(event, Shutdown):
            self._shutdown_event.set()

        elif isinstance(event, PublishDiagnostics):
            self._diagnostics[event.uri] = list(event.diagnostics)
            logger.debug("Received %d diagnostics for %s", len(event.diagnostics), event.uri)

        elif isinstance(event, (WorkDoneProgressCreate, RegisterCapabilityRequest)):
            event.reply()
            await self._flush()

        elif isinstance(event, ConfigurationRequest):
            event.reply(result=[{}] * len(event.items))
            await self._flush()

        elif isinstance(event, LogMessage):
            logger.log(_LOG_LEVELS.get(event.type.value, logging.DEBUG), "[server] %s", event.message)
            if self.trace is not None:
                self.trace.append_line(event.message)

        elif isinstance(event, ShowMessage):
            logger.log(_LOG_LEVELS.get(event.type.value, logging.INFO), "[server message] %s", event.message)

        elif isinstance(event, ResponseError):
            logger.error("LSP error: code=%s %s", event.code, event.message)

    # =========================================================================
    # Synchronization
    # =========================================================================

    async def did_open(self, doc: Document) -> None:
        assert self._client is not None
        self._client.did_open(
            TextDocumentItem(uri=doc.uri, languageId=doc.language_id, version=doc.version, text=doc.text),
        )
        await self._flush()

    async def did_change(self, doc: Document) -> None:
        assert self._client is not None
        self._client.did_change(
            VersionedTextDocumentIdentifier(uri=doc.uri, version=doc.version),
            [TextDocumentContentChangeEvent.whole_document_change(doc.text)],
        )
        await self._flush()

    async def did_save(self, doc: Document) -> None:
        assert self._client is not None
        self._client.did_save(TextDocumentIdentifier(uri=doc.uri), text=doc.text)
        await self._flush()

    async def did_close(self, doc: Document) -> None:
        assert self._client is not None
        self._client.did_close(TextDocumentIdentifier(uri=doc.uri))
        self._diagnostics.pop(doc.uri, None)
        await self._flush()

    async def did_change_watched_files(self, changes: Sequence[FileEvent]) -> None:
        assert self._client is not None
        self._client.did_change_watched_files([change.to_dict() for change in changes])
        await self._flush()

    async def did_change_workspace_folders(self, added: Sequence[Path], removed: Sequence[Path]) -> None:
        assert self._client is not None
        self._client.did_change_workspace_folders(
            added=[workspace_folder(root) for root in added],
            removed=[workspace_folder(root) for root in removed],
        )
        await self._flush()

    def diagnostics(self, uri: str) -> list[Diagnostic]:
        return list(self._diagnostics.get(uri, []))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def shutdown(self, timeout: float) -> bool:
        """Shutdown the server, terminating it if it does not acknowledge."""
        if self._stderr_task:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task

        acknowledged = False
        if self._initialized and self._client is not None and self.is_alive:
            try:
                self._client.shutdown()
                await self._flush()
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
                acknowledged = True
                self._client.exit()
                await self._flush()
            except TimeoutError:
                logger.warning("Language server did not acknowledge shutdown within %ss", timeout)
            except Exception as e:
                logger.warning("Error during LSP shutdown: %s", e)

        if self._read_task:
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task

        if self._process:
            if acknowledged:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._process.wait(), timeout=PROCESS_KILL_GRACE)
            if self._process.returncode is None:
                logger.warning("Terminating language server (pid %s)", self._process.pid)
                with contextlib.suppress(ProcessLookupError):
                    self._process.terminate()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=PROCESS_KILL_GRACE)
                except TimeoutError:
                    with contextlib.suppress(ProcessLookupError):
                        self._process.kill()
                    await self._process.wait()
            self._process = None

        self._initialized = False
        logger.info("Language server shutdown complete")
        return acknowledged
