"""LSP session support for the Generic language.

The Generic language server is an external process spoken to over stdio
using sansio-lsp-client for protocol handling and asyncio subprocess for
I/O. This package only manages that session's lifecycle: how the process
is launched, which documents and file changes reach it, and how it is
started and stopped.
"""

from __future__ import annotations

from generic_lsp_client.lsp.errors import (
    HandshakeError,
    SessionAlreadyStartedError,
    SessionError,
    SessionNotRunningError,
)
from generic_lsp_client.lsp.launch import LaunchSpec, ServerOptions, resolve, resolve_server_options
from generic_lsp_client.lsp.scope import Document, DocumentScopeFilter, ScopeRule, WatchRule
from generic_lsp_client.lsp.session import RestartPolicy, SessionHandle, SessionManager, SessionState
from generic_lsp_client.lsp.trace import TraceSink

__all__ = [
    "Document",
    "DocumentScopeFilter",
    "HandshakeError",
    "LaunchSpec",
    "RestartPolicy",
    "ScopeRule",
    "ServerOptions",
    "SessionAlreadyStartedError",
    "SessionError",
    "SessionHandle",
    "SessionManager",
    "SessionNotRunningError",
    "SessionState",
    "TraceSink",
    "WatchRule",
    "resolve",
    "resolve_server_options",
]
