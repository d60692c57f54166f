"""Activation entry points for the Generic language client.

``activate`` wires the launch resolver, document scope, trace channel and
session manager together and starts the session. ``deactivate`` stops it.
The host (the CLI, or an embedding application) owns the
``ExtensionContext`` and guarantees the two are never run concurrently.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from generic_lsp_client.config import Settings
from generic_lsp_client.defaults import (
    FILE_EXTENSION,
    FILE_SCHEME,
    HELLO_WORLD_COMMAND,
    LANGUAGE_ID,
    TRACE_CHANNEL_NAME,
)
from generic_lsp_client.disposable import Disposable
from generic_lsp_client.lsp.client import LanguageClient
from generic_lsp_client.lsp.errors import SessionAlreadyStartedError
from generic_lsp_client.lsp.launch import resolve_server_options
from generic_lsp_client.lsp.scope import ScopeRule, WatchRule
from generic_lsp_client.lsp.session import BackendFactory, SessionHandle, SessionManager, SessionState
from generic_lsp_client.lsp.trace import TraceSink

logger = logging.getLogger(__name__)

CommandHandler = Callable[..., Any]


class CommandRegistry:
    """Host command palette.

    Handlers never fail observably: exceptions are logged and swallowed.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}

    def __contains__(self, command_id: str) -> bool:
        return command_id in self._handlers

    def register_command(self, command_id: str, handler: CommandHandler) -> Disposable:
        if command_id in self._handlers:
            raise ValueError(f"Command already registered: {command_id}")
        self._handlers[command_id] = handler

        def release() -> None:
            self._handlers.pop(command_id, None)

        return Disposable(release, name=f"command {command_id}")

    def execute_command(self, command_id: str, *args: Any) -> None:  # noqa: ANN401
        handler = self._handlers.get(command_id)
        if handler is None:
            raise KeyError(f"Unknown command: {command_id}")
        try:
            handler(*args)
        except Exception:
            logger.exception("Command %s failed", command_id)


@dataclass
class ExtensionContext:
    """State the host hands to activate/deactivate."""

    settings: Settings
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    commands: CommandRegistry = field(default_factory=CommandRegistry)
    subscriptions: list[Disposable] = field(default_factory=list)
    backend_factory: BackendFactory = LanguageClient
    trace_listener: Callable[[str], None] | None = None
    session_manager: SessionManager | None = None
    trace: TraceSink | None = None

    def dispose(self) -> None:
        """Release every subscription (host shutdown)."""
        for disposable in reversed(self.subscriptions):
            disposable.dispose()


def hello_world(uri: object = None) -> None:
    """Auxiliary command: logs its argument and does nothing else."""
    logger.info("Running command registered as %s", HELLO_WORLD_COMMAND)
    logger.info("%s", uri)


async def activate(context: ExtensionContext) -> SessionHandle:
    """Start the language client for ``context``.

    Returns once the server handshake completes. Spawn failures propagate
    to the caller untranslated.

    Raises SessionAlreadyStartedError if the context's session is still
    starting or running; call ``deactivate`` first.
    """
    manager = context.session_manager
    if manager is not None and manager.status in (SessionState.STARTING, SessionState.RUNNING):
        raise SessionAlreadyStartedError(f"Session is already {manager.status.value}")

    context.subscriptions.append(context.commands.register_command(HELLO_WORLD_COMMAND, hello_world))

    trace = TraceSink(TRACE_CHANNEL_NAME)
    context.trace = trace
    context.subscriptions.append(trace)
    if context.trace_listener is not None:
        context.subscriptions.append(trace.subscribe(context.trace_listener))

    options = resolve_server_options(context.environ)
    spec = options.select(debug=context.settings.debug)
    logger.info("Server command: %s", spec.command)

    scope = ScopeRule(scheme=FILE_SCHEME, language_id=LANGUAGE_ID)
    watch = WatchRule.for_extension(FILE_EXTENSION)

    if context.session_manager is None:
        context.session_manager = SessionManager(context.settings, context.backend_factory)

    logger.info("Running Generic LSP extension")
    return await context.session_manager.start(spec, scope, watch, trace)


async def _stop_and_dispose(context: ExtensionContext, manager: SessionManager) -> None:
    try:
        await manager.stop()
    finally:
        context.dispose()


def deactivate(context: ExtensionContext) -> Awaitable[None] | None:
    """Stop the session for ``context``.

    Returns the stop completion, or None when no session was ever started.
    Never raises synchronously.
    """
    logger.info("Exiting Generic LSP extension")
    try:
        manager = context.session_manager
        if manager is None or manager.handle is None:
            context.dispose()
            return None
        return _stop_and_dispose(context, manager)
    except Exception:
        logger.exception("Deactivation failed")
        return None
