"""Shared CLI argument definitions for generic-lsp-client.

Every command that starts a session accepts the same options; they are
defined once here and turned into ``Settings`` by ``build_settings``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from generic_lsp_client.config import Settings
from generic_lsp_client.defaults import (
    DEFAULT_INIT_TIMEOUT,
    DEFAULT_RESTART_POLICY,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TRACE,
    RESTART_POLICIES,
    TRACE_LEVELS,
)
from generic_lsp_client.utils import create_literal_validator

_validate_trace = create_literal_validator("trace level", TRACE_LEVELS)
_validate_restart_policy = create_literal_validator("restart policy", RESTART_POLICIES)

WorkspaceOption = Annotated[
    list[Path] | None,
    typer.Option(
        "--workspace",
        "-w",
        help="Workspace root (repeat for multi-root workspaces; default: current directory)",
        file_okay=False,
    ),
]

TraceOption = Annotated[
    str,
    typer.Option(
        "--trace",
        "-t",
        help="Protocol trace level (off/messages/verbose)",
        envvar="GENLSP_TRACE",
        callback=_validate_trace,
        show_default=True,
    ),
]

InitTimeoutOption = Annotated[
    float,
    typer.Option(
        "--init-timeout",
        help="Seconds to wait for the server handshake",
        envvar="GENLSP_INIT_TIMEOUT",
        show_default=True,
    ),
]

ShutdownTimeoutOption = Annotated[
    float,
    typer.Option(
        "--shutdown-timeout",
        help="Seconds to wait for the server to acknowledge shutdown before terminating it",
        envvar="GENLSP_SHUTDOWN_TIMEOUT",
        show_default=True,
    ),
]

RestartPolicyOption = Annotated[
    str,
    typer.Option(
        "--restart-policy",
        help="Behaviour of a second start while a session is alive (orphan/stop_previous/reject)",
        envvar="GENLSP_RESTART_POLICY",
        callback=_validate_restart_policy,
        show_default=True,
    ),
]

LogFileOption = Annotated[
    Path | None,
    typer.Option(
        "--log-file",
        help="Write logs to this file",
        envvar="GENLSP_LOG_FILE",
    ),
]

DebugOption = Annotated[
    bool,
    typer.Option(
        "--debug/--no-debug",
        help="Use the debug launch profile and log at DEBUG level",
        envvar="GENLSP_DEBUG",
    ),
]


def build_settings(
    workspace: list[Path] | None = None,
    trace: str = DEFAULT_TRACE,
    init_timeout: float = DEFAULT_INIT_TIMEOUT,
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    restart_policy: str = DEFAULT_RESTART_POLICY,
    log_file: Path | None = None,
    debug: bool = False,
) -> Settings:
    """Create Settings from parsed CLI arguments."""
    settings = Settings(
        init_timeout=init_timeout,
        shutdown_timeout=shutdown_timeout,
        trace=trace,  # type: ignore[arg-type]
        restart_policy=restart_policy,  # type: ignore[arg-type]
        log_file=log_file,
        debug=debug,
    )
    if workspace:
        settings.workspace_roots = [root.resolve() for root in workspace]
    return settings
