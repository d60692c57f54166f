"""Session lifecycle errors.

Spawn failures are not listed here: the ``OSError`` raised when the server
binary cannot be executed propagates unchanged.
"""

from __future__ import annotations


class SessionError(RuntimeError):
    """Base class for session lifecycle errors."""


class SessionNotRunningError(SessionError):
    """A document or file event was offered to a session that is not running."""


class SessionAlreadyStartedError(SessionError):
    """start() was called while a session is still alive (``reject`` policy)."""


class HandshakeError(SessionError):
    """The server exited or closed its output before completing the initialize handshake."""
