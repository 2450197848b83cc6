"""
SQLite-backed storage for the knowledge base.

One database file holds two tables:

* ``document_vectors``: raw little-endian float32 embeddings keyed by
  document id, searched by brute-force cosine similarity with numpy.
* ``documents``: document metadata and full text.

Both tables share a single connection guarded by one re-entrant lock, so
every statement is serialised and a :meth:`Database.transaction` block can
span writes to both tables atomically.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Sequence

import numpy as np

from .errors import StorageError
from .models import Document, utc_now_iso

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS document_vectors (
    document_id TEXT PRIMARY KEY,
    embedding   BLOB    NOT NULL,
    dimension   INTEGER NOT NULL,
    created_at  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    category    TEXT NOT NULL,
    content     TEXT NOT NULL,
    source_path TEXT,
    backup_path TEXT,
    file_type   TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_document_id ON document_vectors(document_id);
"""

# Applied to databases created before these columns existed.
_MIGRATIONS = {
    "backup_path": "ALTER TABLE documents ADD COLUMN backup_path TEXT",
    "file_type": "ALTER TABLE documents ADD COLUMN file_type TEXT NOT NULL DEFAULT ''",
}

# ---------------------------------------------------------------------------
# Vector helpers
# ---------------------------------------------------------------------------

def vec_to_bytes(vec: Sequence[float]) -> bytes:
    """Serialise a vector to little-endian float32 bytes."""
    return np.asarray(vec, dtype="<f4").tobytes()


def bytes_to_vec(buf: bytes, dimension: int | None = None) -> np.ndarray:
    """Deserialise little-endian float32 bytes, truncated to *dimension*."""
    usable = len(buf) - len(buf) % 4
    arr = np.frombuffer(buf[:usable], dtype="<f4").astype(np.float32)
    if dimension is not None:
        arr = arr[:dimension]
    return arr


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Vectors of different length, and any vector with zero norm, score 0.0.
    """
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        return 0.0
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / (norm_a * norm_b)


def _cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between *query* (1-D) and each row of *matrix*."""
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0], dtype=np.float32)
    row_norms = np.linalg.norm(matrix, axis=1)
    scores = np.zeros(matrix.shape[0], dtype=np.float32)
    nonzero = row_norms > 0
    scores[nonzero] = (matrix[nonzero] @ query) / (row_norms[nonzero] * query_norm)
    return scores


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class Database:
    """Shared SQLite connection for the vector and document tables.

    Parameters
    ----------
    db_path:
        Path to the SQLite file.  Parent directories are created.  Pass
        ``":memory:"`` for a throwaway database.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._lock = threading.RLock()
        self._depth = 0
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        try:
            self._conn: sqlite3.Connection | None = sqlite3.connect(
                db_path, check_same_thread=False
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._init_schema()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open database {db_path}: {exc}") from exc
        logger.debug("[Database] Opened %s", db_path)

    @property
    def path(self) -> str:
        return self._db_path

    def _init_schema(self) -> None:
        """Create tables and add any columns missing from older files."""
        conn = self._conn
        conn.executescript(_SCHEMA)
        cols = {row[1] for row in conn.execute("PRAGMA table_info(documents)")}
        for column, stmt in _MIGRATIONS.items():
            if column not in cols:
                conn.execute(stmt)
                logger.info("[Database] Added column documents.%s", column)
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection under the storage lock.

        Nested blocks join the outermost one; only the outermost commits or
        rolls back.  ``sqlite3.Error`` is re-raised as :class:`StorageError`.
        """
        with self._lock:
            if self._conn is None:
                raise StorageError("Database is closed")
            self._depth += 1
            try:
                yield self._conn
                if self._depth == 1:
                    self._conn.commit()
            except sqlite3.Error as exc:
                if self._depth == 1:
                    self._conn.rollback()
                raise StorageError(str(exc)) from exc
            except BaseException:
                if self._depth == 1:
                    self._conn.rollback()
                raise
            finally:
                self._depth -= 1

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error:
                    pass
                self._conn = None


# ---------------------------------------------------------------------------
# VectorStore
# ---------------------------------------------------------------------------

class VectorStore:
    """Document id → embedding table with exact cosine-similarity search."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, document_id: str, vector: Sequence[float]) -> None:
        """Insert or replace the vector stored for *document_id*."""
        vec_bytes = vec_to_bytes(vector)
        dimension = len(vec_bytes) // 4
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO document_vectors "
                "(document_id, embedding, dimension, created_at) VALUES (?, ?, ?, ?)",
                (document_id, vec_bytes, dimension, utc_now_iso()),
            )
        logger.debug("[VectorStore] Stored %d-dim vector for %s", dimension, document_id)

    def search(self, query_vector: Sequence[float], limit: int) -> list[tuple[str, float]]:
        """Return the *limit* most similar ``(document_id, similarity)`` pairs.

        Every stored vector is scored; rows whose dimension differs from the
        query score 0.0.  Results are sorted by descending similarity.
        """
        if limit <= 0:
            return []
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT document_id, embedding, dimension FROM document_vectors"
            ).fetchall()
        if not rows:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        ids = [row[0] for row in rows]
        scores = np.zeros(len(rows), dtype=np.float32)

        # Score same-dimension rows in one batch, everything else stays 0.0
        matching = [
            i for i, (_, buf, dim) in enumerate(rows)
            if dim == query.shape[0] and len(buf) >= dim * 4
        ]
        if matching:
            matrix = np.stack([bytes_to_vec(rows[i][1], rows[i][2]) for i in matching])
            scores[matching] = _cosine_similarity_batch(query, matrix)

        order = np.argsort(-scores, kind="stable")[:limit]
        return [(ids[i], float(scores[i])) for i in order]

    def delete(self, document_id: str) -> None:
        """Remove the vector for *document_id*; absent ids are ignored."""
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM document_vectors WHERE document_id = ?", (document_id,)
            )

    def clear_all(self) -> None:
        """Remove every vector row and every document row."""
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM document_vectors")
            conn.execute("DELETE FROM documents")
        logger.info("[VectorStore] Cleared all vectors and documents")

    def count(self) -> int:
        with self._db.transaction() as conn:
            row = conn.execute("SELECT COUNT(*) FROM document_vectors").fetchone()
        return row[0] if row else 0

    def dimensions(self) -> set[int]:
        """Distinct dimensions currently stored."""
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT dimension FROM document_vectors"
            ).fetchall()
        return {row[0] for row in rows}


# ---------------------------------------------------------------------------
# DocumentStore
# ---------------------------------------------------------------------------

_DOCUMENT_COLUMNS = (
    "id, name, category, content, source_path, backup_path, file_type, created_at"
)


def _row_to_document(row: tuple) -> Document:
    return Document(
        id=row[0],
        name=row[1],
        category=row[2],
        content=row[3],
        source_path=row[4],
        backup_path=row[5],
        file_type=row[6] or "",
        created_at=row[7],
    )


class DocumentStore:
    """Document id → metadata and content table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def save(self, doc: Document) -> None:
        """Insert or replace *doc*."""
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO documents ({_DOCUMENT_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    doc.id, doc.name, doc.category, doc.content,
                    doc.source_path, doc.backup_path, doc.file_type, doc.created_at,
                ),
            )

    def load_all(self) -> list[Document]:
        """Return every stored document (order unspecified)."""
        with self._db.transaction() as conn:
            rows = conn.execute(f"SELECT {_DOCUMENT_COLUMNS} FROM documents").fetchall()
        return [_row_to_document(row) for row in rows]

    def get(self, document_id: str) -> Document | None:
        with self._db.transaction() as conn:
            row = conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def delete(self, document_id: str) -> None:
        """Remove *document_id*; absent ids are ignored."""
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))

    def count(self) -> int:
        with self._db.transaction() as conn:
            row = conn.execute("SELECT COUNT(*) FROM documents").fetchone()
        return row[0] if row else 0
