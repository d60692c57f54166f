"""Document scope and file-watch rules for a session."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from generic_lsp_client.defaults import FILE_EXTENSION, FILE_SCHEME, LANGUAGE_ID, watch_glob
from generic_lsp_client.lsp.utils import path_to_uri, uri_scheme


@dataclass(frozen=True)
class Document:
    """An editor document offered to the session."""

    uri: str
    language_id: str
    version: int = 0
    text: str = ""

    @property
    def scheme(self) -> str:
        return uri_scheme(self.uri)

    @classmethod
    def from_path(cls, path: Path, language_id: str | None = None) -> Document:
        """Build a document from a file on disk.

        The language id is inferred from the extension when not given.
        """
        if language_id is None:
            language_id = LANGUAGE_ID if path.suffix == f".{FILE_EXTENSION}" else path.suffix.lstrip(".")
        return cls(uri=path_to_uri(path), language_id=language_id, text=path.read_text(encoding="utf-8"))


class ScopeRule(BaseModel):
    """Documents synchronized with the session (both fields must match)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    scheme: str = FILE_SCHEME
    language_id: str = Field(default=LANGUAGE_ID, alias="languageId")

    def matches(self, doc: Document) -> bool:
        return doc.scheme == self.scheme and doc.language_id == self.language_id


class WatchRule(BaseModel):
    """Glob of files whose on-disk changes are forwarded to the session."""

    model_config = ConfigDict(frozen=True)

    glob: str

    @classmethod
    def for_extension(cls, extension: str = FILE_EXTENSION) -> WatchRule:
        return cls(glob=watch_glob(extension))


class DocumentScopeFilter:
    """Pure predicate selecting in-scope documents."""

    def __init__(self, rule: ScopeRule | None = None) -> None:
        self.rule = rule or ScopeRule()

    def matches(self, doc: Document) -> bool:
        return self.rule.matches(doc)

    __call__ = matches
