"""Launch configuration for the Generic language server process.

The server binary defaults to ``generic-language-server`` and can be
redirected with ``SERVER_PATH``. The server always runs with ``RUST_LOG``
forced to ``debug`` so its stderr is useful in the trace output.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from generic_lsp_client.defaults import (
    DEFAULT_SERVER_COMMAND,
    SERVER_PATH_ENV,
    VERBOSITY_ENV,
    VERBOSITY_LEVEL,
)

logger = logging.getLogger(__name__)


class LaunchSpec(BaseModel):
    """How to invoke the language server process."""

    model_config = ConfigDict(frozen=True)

    command: str = Field(..., description="Executable name or path")
    environment: dict[str, str] = Field(default_factory=dict, description="Full process environment")

    def argv(self) -> list[str]:
        """Argument vector for the subprocess call."""
        return [self.command]


class ServerOptions(BaseModel):
    """Run-mode and debug-mode launch profiles."""

    model_config = ConfigDict(frozen=True)

    run: LaunchSpec
    debug: LaunchSpec

    def select(self, debug: bool = False) -> LaunchSpec:
        return self.debug if debug else self.run


def resolve(env: Mapping[str, str]) -> LaunchSpec:
    """Compute the launch spec from an environment mapping.

    The command comes from ``SERVER_PATH`` when it is set and non-empty,
    otherwise the default binary name is used. No check is made that the
    command exists; a missing binary surfaces when the session starts.

    Args:
        env: Environment to inherit (usually ``os.environ``)

    Returns:
        LaunchSpec with the inherited environment plus the verbosity override
    """
    command = env.get(SERVER_PATH_ENV) or DEFAULT_SERVER_COMMAND
    logger.debug("Resolved server command: %s", command)

    environment = dict(env)
    environment[VERBOSITY_ENV] = VERBOSITY_LEVEL
    return LaunchSpec(command=command, environment=environment)


def resolve_server_options(env: Mapping[str, str]) -> ServerOptions:
    """Resolve both launch profiles.

    Run and debug currently share a single resolution, so the two specs
    are always equal for the same ``env``.
    """
    spec = resolve(env)
    return ServerOptions(run=spec, debug=spec)
