"""Configuration management for the Generic LSP client.

All configuration is managed through CLI arguments, which can be set via
environment variables using Typer's envvar feature. The two process-boundary
variables (``SERVER_PATH`` and ``RUST_LOG``) are deliberately not settings:
they are only read by the launch resolver.

Run `generic-lsp-client --help` to see all available options.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from generic_lsp_client.defaults import (
    DEFAULT_INIT_TIMEOUT,
    DEFAULT_RESTART_POLICY,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TRACE,
)


def _default_workspace_roots() -> list[Path]:
    return [Path.cwd()]


@dataclass
class Settings:
    """Application settings.

    Default values are imported from generic_lsp_client.defaults module.
    """

    # Workspace roots watched and announced to the server
    workspace_roots: list[Path] = field(default_factory=_default_workspace_roots)

    # Session timeouts (seconds)
    init_timeout: float = DEFAULT_INIT_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT

    # Protocol tracing
    trace: Literal["off", "messages", "verbose"] = DEFAULT_TRACE

    # What a second start() does while a session is still alive
    restart_policy: Literal["orphan", "stop_previous", "reject"] = DEFAULT_RESTART_POLICY

    # Logging
    log_file: Path | None = None
    debug: bool = False

    @property
    def root_uri(self) -> str | None:
        """URI of the first workspace root, if any."""
        if not self.workspace_roots:
            return None
        return self.workspace_roots[0].resolve().as_uri()
