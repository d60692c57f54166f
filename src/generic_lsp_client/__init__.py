"""Lifecycle manager for a Generic language server session."""

__version__ = "0.1.0"
