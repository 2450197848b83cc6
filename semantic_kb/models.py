"""
Data classes shared by the storage layer and the knowledge base facade.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

SNIPPET_LENGTH = 300
ELLIPSIS = "..."


@dataclass(frozen=True)
class Document:
    """A single ingested document.

    Attributes
    ----------
    id:
        Opaque uuid4 string assigned at ingestion.
    name:
        Display name (the source file name, or a generic label for inline text).
    category:
        Open tag such as ``"documents"`` or ``"video-transcript"``.
    content:
        Full extracted text.  Never empty.
    source_path:
        Original file the content came from, if any.
    backup_path:
        Copy retained inside the knowledge base's backup directory, if any.
    file_type:
        Lower-cased extension (``"pdf"``, ``"md"``) or a synthetic tag.
    created_at:
        ISO-8601 UTC timestamp set once at ingestion.
    """

    id: str
    name: str
    category: str
    content: str
    source_path: Optional[str] = None
    backup_path: Optional[str] = None
    file_type: str = ""
    created_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SearchResult:
    """A document paired with its cosine similarity to the query."""

    document: Document
    relevance: float
    snippet: str

    def to_dict(self) -> dict:
        return {
            "document": self.document.to_dict(),
            "relevance": self.relevance,
            "snippet": self.snippet,
        }


def make_snippet(content: str, length: int = SNIPPET_LENGTH) -> str:
    """Return the first *length* characters of *content*, ``...``-terminated if cut."""
    if len(content) > length:
        return content[:length] + ELLIPSIS
    return content


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
