"""URI and glob helpers used by the document scope and file watcher."""

from __future__ import annotations

from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse


def path_to_uri(file_path: str | Path) -> str:
    """Convert a file system path to a file:// URI.

    Args:
        file_path: File system path (string or Path object)

    Returns:
        file:// URI string
    """
    return Path(file_path).resolve().as_uri()


def uri_scheme(uri: str) -> str:
    """Return the scheme of a URI ("" when there is none)."""
    return urlparse(uri).scheme


def glob_matches(relative_path: str | PurePosixPath, pattern: str) -> bool:
    """Match a root-relative path against a ``**``-style glob.

    ``fnmatch`` lets ``*`` cross directory separators, which is what a
    recursive ``**/*.ext`` pattern wants, except that a leading ``**/``
    must also match files sitting directly in the root.
    """
    rel = str(relative_path).replace("\\", "/")
    if fnmatchcase(rel, pattern):
        return True
    return pattern.startswith("**/") and fnmatchcase(rel, pattern[3:])
