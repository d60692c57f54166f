"""Default values shared by the configuration, launch resolver and CLI."""

from __future__ import annotations

# Process boundary
DEFAULT_SERVER_COMMAND = "generic-language-server"
SERVER_PATH_ENV = "SERVER_PATH"
VERBOSITY_ENV = "RUST_LOG"
VERBOSITY_LEVEL = "debug"

# Document scope
LANGUAGE_ID = "gen"
FILE_SCHEME = "file"
FILE_EXTENSION = "gen"

# Client identity
CLIENT_NAME = "Generic language server"
TRACE_CHANNEL_NAME = "Generic Language Server trace"

# Auxiliary command
HELLO_WORLD_COMMAND = "helloworld.helloWorld"

# Timeouts (seconds)
DEFAULT_INIT_TIMEOUT = 45.0
DEFAULT_SHUTDOWN_TIMEOUT = 5.0
PROCESS_KILL_GRACE = 5.0

DEFAULT_TRACE = "off"
DEFAULT_RESTART_POLICY = "orphan"

TRACE_LEVELS = ("off", "messages", "verbose")
RESTART_POLICIES = ("orphan", "stop_previous", "reject")


def watch_glob(extension: str = FILE_EXTENSION) -> str:
    """Recursive glob matching every file with the given extension."""
    return f"**/*.{extension}"
