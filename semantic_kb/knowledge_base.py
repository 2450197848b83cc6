"""
Knowledge base facade: ingestion and semantic search over one SQLite file.

The facade owns an in-memory list of documents that mirrors the
``documents`` table.  It is loaded once at construction and updated in the
same write-locked step as storage on every mutation, so listing and the
result join in :meth:`KnowledgeBase.search` never touch the database.

Usage::

    kb = init("kb.db", model_dir="models/bge-small-zh")
    kb.add_document(path="notes/meeting.md")
    for result in kb.search("quarterly budget", limit=5):
        print(result.relevance, result.document.name, result.snippet)
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from typing import TYPE_CHECKING, Optional

from .embedder import DEFAULT_DIMENSION, EmbeddingProvider, create_embedder
from .errors import DimensionMismatchError, DocumentNotFoundError, ParseError
from .locks import ReadWriteLock
from .models import SNIPPET_LENGTH, Document, SearchResult, make_snippet, utc_now_iso
from .parser import file_extension, parse_document
from .storage import Database, DocumentStore, VectorStore

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "documents"
VIDEO_TRANSCRIPT = "video-transcript"
DEFAULT_SEARCH_LIMIT = 5

_TRANSCRIPT_NAME = "Video transcript"
_TEXT_NAME = "Text note"


class KnowledgeBase:
    """Documents, their embeddings, and the operations to ingest and query them.

    Parameters
    ----------
    db_path:
        SQLite file holding both the vector and document tables.
    model_dir:
        Optional ONNX model directory.  Missing or broken models fall back
        to hash embeddings.
    embedder:
        Explicit provider, overriding *model_dir* (mainly for tests).
    backup_dir:
        Default backup directory for :meth:`add_document`.
    dimension:
        Dimension of the fallback hash embedder.
    pooling:
        Pooling mode passed to the ONNX embedder.
    snippet_length:
        Characters of content shown in each search result.
    """

    def __init__(
        self,
        db_path: str,
        model_dir: Optional[str] = None,
        *,
        embedder: Optional[EmbeddingProvider] = None,
        backup_dir: Optional[str] = None,
        dimension: int = DEFAULT_DIMENSION,
        pooling: str = "cls",
        snippet_length: int = SNIPPET_LENGTH,
    ) -> None:
        self._db = Database(db_path)
        self._vectors = VectorStore(self._db)
        self._store = DocumentStore(self._db)
        self._embedder = embedder or create_embedder(model_dir, dimension, pooling)
        self._backup_dir = backup_dir
        self._snippet_length = snippet_length
        self._lock = ReadWriteLock()

        docs = self._store.load_all()
        docs.sort(key=lambda d: d.created_at)
        self._documents: list[Document] = docs
        logger.info("Loaded %d documents from %s", len(docs), db_path)

        stale = self._stale_dimensions()
        if stale:
            logger.warning(
                "Stored vectors have dimension(s) %s but the active embedder "
                "produces %d; search is disabled until the store is cleared",
                sorted(stale), self._embedder.dimension,
            )

    @classmethod
    def from_config(cls, config: "Config") -> "KnowledgeBase":
        return cls(
            config.DB_PATH,
            config.MODEL_DIR or None,
            backup_dir=config.BACKUP_DIR or None,
            dimension=config.EMBEDDING_DIMENSION,
            pooling=config.EMBEDDING_POOLING,
            snippet_length=config.SNIPPET_LENGTH,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> "KnowledgeBase":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def is_semantic(self) -> bool:
        return self._embedder.is_semantic

    @property
    def dimension(self) -> int:
        return self._embedder.dimension

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_document(
        self,
        path: Optional[str] = None,
        content: Optional[str] = None,
        category: str = DEFAULT_CATEGORY,
        backup_dir: Optional[str] = None,
    ) -> Document:
        """Parse (unless *content* is given), embed and store a document.

        Parameters
        ----------
        path:
            Source file.  Parsed by extension unless *content* is supplied.
        content:
            Text to store verbatim, e.g. a speech-to-text transcript.
        category:
            Free-form tag.  ``"video-transcript"`` also keeps the transcript
            text next to the backed-up source file.
        backup_dir:
            Where to keep a copy of the source material.  Defaults to the
            directory configured on the instance; ``None`` on both disables
            backups.

        Raises
        ------
        DocumentNotFoundError
            *path* does not exist and no *content* was given.
        ParseError
            Neither input given, unsupported format, or empty text.
        EmbeddingError
            The provider failed.  Nothing has been written to storage.
        StorageError
            The database write failed.  Both tables are rolled back.
        """
        text, name, source_path, file_type = self._resolve_input(path, content, category)
        if not text.strip():
            raise ParseError("Document content is empty")

        doc_id = str(uuid.uuid4())

        backup_dir = backup_dir or self._backup_dir
        backup_path = None
        if backup_dir:
            backup_path = _backup_source(doc_id, source_path, text, category, backup_dir)

        vector = self._embedder.embed(text)

        doc = Document(
            id=doc_id,
            name=name,
            category=category,
            content=text,
            source_path=source_path,
            backup_path=backup_path,
            file_type=file_type,
            created_at=utc_now_iso(),
        )

        with self._lock.write():
            with self._db.transaction():
                self._vectors.insert(doc.id, vector)
                self._store.save(doc)
            self._documents.append(doc)

        logger.info(
            "Added document %s '%s' [%s] (%d chars)",
            doc.id, doc.name, doc.category, len(doc.content),
        )
        return doc

    def _resolve_input(
        self,
        path: Optional[str],
        content: Optional[str],
        category: str,
    ) -> tuple[str, str, Optional[str], str]:
        """Return ``(text, name, source_path, file_type)`` for the inputs."""
        if path is not None:
            path = os.fspath(path)
            if content is None:
                if not os.path.exists(path):
                    raise DocumentNotFoundError(f"Document not found: {path}")
                text = parse_document(path)
            else:
                text = content
            name = os.path.basename(path) or "unknown"
            return text, name, os.path.abspath(path), file_extension(path)

        if content is not None:
            if category == VIDEO_TRANSCRIPT:
                return content, _TRANSCRIPT_NAME, None, "mp4"
            return content, _TEXT_NAME, None, "txt"

        raise ParseError("Either a file path or content must be supplied")

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[SearchResult]:
        """Return up to *limit* documents ranked by cosine similarity to *query*.

        Raises
        ------
        DimensionMismatchError
            The store holds vectors from a provider with another dimension.
        """
        query_vec = self._embedder.embed(query)

        stale = self._stale_dimensions()
        if stale:
            raise DimensionMismatchError(
                f"Stored vectors have dimension(s) {sorted(stale)} but the "
                f"embedder produces {self._embedder.dimension}; clear the "
                "knowledge base and re-add its documents"
            )

        hits = self._vectors.search(query_vec, limit)

        results: list[SearchResult] = []
        with self._lock.read():
            by_id = {doc.id: doc for doc in self._documents}
            for doc_id, relevance in hits:
                doc = by_id.get(doc_id)
                if doc is None:
                    continue
                results.append(SearchResult(
                    document=doc,
                    relevance=relevance,
                    snippet=make_snippet(doc.content, self._snippet_length),
                ))
        logger.debug("Search %r returned %d result(s)", query[:60], len(results))
        return results

    def _stale_dimensions(self) -> set[int]:
        return self._vectors.dimensions() - {self._embedder.dimension}

    def list_documents(self) -> list[Document]:
        """Snapshot of all documents in insertion order."""
        with self._lock.read():
            return list(self._documents)

    def get_document(self, document_id: str) -> Document:
        with self._lock.read():
            for doc in self._documents:
                if doc.id == document_id:
                    return doc
        raise DocumentNotFoundError(f"No document with id {document_id}")

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def delete_document(self, document_id: str) -> None:
        """Remove a document and its vector.  Unknown ids are ignored."""
        with self._lock.write():
            with self._db.transaction():
                self._vectors.delete(document_id)
                self._store.delete(document_id)
            self._documents = [d for d in self._documents if d.id != document_id]
        logger.info("Deleted document %s", document_id)

    def clear_all(self) -> None:
        """Remove every document and vector."""
        with self._lock.write():
            self._vectors.clear_all()
            self._documents.clear()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict:
        with self._lock.read():
            cached = len(self._documents)
        return {
            "db_path": self._db.path,
            "documents": cached,
            "stored_documents": self._store.count(),
            "vectors": self._vectors.count(),
            "embedder": "onnx" if self.is_semantic else "hash",
            "dimension": self.dimension,
            "stored_dimensions": sorted(self._vectors.dimensions()),
        }


# ---------------------------------------------------------------------------
# Backup helpers
# ---------------------------------------------------------------------------

def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(text)


def _backup_source(
    doc_id: str,
    source_path: Optional[str],
    text: str,
    category: str,
    backup_dir: str,
) -> Optional[str]:
    """Copy the source material into *backup_dir*.

    Returns the backup file path, or ``None`` when nothing could be written.
    Failures are logged and never raised.
    """
    prefix = doc_id[:8]
    try:
        os.makedirs(backup_dir, exist_ok=True)
    except OSError as exc:
        logger.warning("Cannot create backup directory %s: %s", backup_dir, exc)
        return None

    if source_path and os.path.isfile(source_path):
        file_name = os.path.basename(source_path)
        backup_file = os.path.join(backup_dir, f"{prefix}_{file_name}")
        try:
            shutil.copy2(source_path, backup_file)
        except OSError as exc:
            logger.warning("Backup copy of %s failed: %s", source_path, exc)
            backup_file = None

        if category == VIDEO_TRANSCRIPT:
            stem = os.path.splitext(file_name)[0] or "video"
            txt_file = os.path.join(backup_dir, f"{prefix}_{stem}.txt")
            try:
                _write_text(txt_file, text)
            except OSError as exc:
                logger.warning("Transcript backup %s failed: %s", txt_file, exc)
        return backup_file

    txt_file = os.path.join(backup_dir, f"{prefix}_transcript.txt")
    try:
        _write_text(txt_file, text)
    except OSError as exc:
        logger.warning("Text backup %s failed: %s", txt_file, exc)
        return None
    return txt_file


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------

def init(
    storage_path: str,
    model_dir: Optional[str] = None,
    **kwargs,
) -> KnowledgeBase:
    """Open (or create) the knowledge base stored at *storage_path*.

    Raises
    ------
    StorageError
        If the database cannot be opened.
    """
    return KnowledgeBase(storage_path, model_dir, **kwargs)
