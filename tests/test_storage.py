"""
Unit tests for the SQLite vector and document stores.
"""
import os
import sqlite3
import struct
import tempfile
import unittest

import numpy as np

from semantic_kb.errors import StorageError
from semantic_kb.models import Document
from semantic_kb.storage import (
    Database,
    DocumentStore,
    VectorStore,
    bytes_to_vec,
    cosine_similarity,
    vec_to_bytes,
)


def _doc(doc_id: str, content: str = "hello") -> Document:
    return Document(
        id=doc_id,
        name=f"{doc_id}.txt",
        category="documents",
        content=content,
        source_path=None,
        backup_path=None,
        file_type="txt",
        created_at="2024-01-01T00:00:00+00:00",
    )


# ---------------------------------------------------------------------------
# Test: vector helpers
# ---------------------------------------------------------------------------

class TestCosineSimilarity(unittest.TestCase):

    def test_identical_vectors(self):
        self.assertAlmostEqual(cosine_similarity([1.0, 2.0], [1.0, 2.0]), 1.0, places=6)

    def test_orthogonal_vectors(self):
        self.assertEqual(cosine_similarity([1.0, 0.0], [0.0, 1.0]), 0.0)

    def test_length_mismatch_is_zero(self):
        self.assertEqual(cosine_similarity([1.0, 0.0, 0.0], [1.0, 0.0]), 0.0)

    def test_zero_vector_is_zero_either_side(self):
        self.assertEqual(cosine_similarity([0.0, 0.0], [1.0, 1.0]), 0.0)
        self.assertEqual(cosine_similarity([1.0, 1.0], [0.0, 0.0]), 0.0)

    def test_bytes_are_little_endian_float32(self):
        buf = vec_to_bytes([1.0, -2.5, 3.25])
        self.assertEqual(len(buf), 12)
        self.assertEqual(buf, struct.pack("<3f", 1.0, -2.5, 3.25))
        np.testing.assert_array_equal(bytes_to_vec(buf), np.array([1.0, -2.5, 3.25], dtype=np.float32))

    def test_bytes_to_vec_truncates_to_dimension(self):
        buf = vec_to_bytes([1.0, 2.0, 3.0])
        self.assertEqual(len(bytes_to_vec(buf, 2)), 2)


# ---------------------------------------------------------------------------
# Test: VectorStore
# ---------------------------------------------------------------------------

class TestVectorStore(unittest.TestCase):
    """Tests for the brute-force cosine-similarity table."""

    def setUp(self):
        self._tmpdir = tempfile.mkdtemp()
        self.db = Database(os.path.join(self._tmpdir, "kb.db"))
        self.store = VectorStore(self.db)

    def tearDown(self):
        self.db.close()

    def test_insert_and_search(self):
        self.store.insert("p1", [1.0, 0.0, 0.0])
        self.store.insert("p2", [0.0, 1.0, 0.0])
        self.store.insert("p3", [0.7, 0.7, 0.0])

        results = self.store.search([1.0, 0.0, 0.0], limit=2)
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0][0], "p1")
        self.assertAlmostEqual(results[0][1], 1.0, places=5)
        self.assertEqual(results[1][0], "p3")

    def test_search_sorted_descending(self):
        self.store.insert("a", [1.0, 0.0])
        self.store.insert("b", [0.6, 0.8])
        self.store.insert("c", [0.0, 1.0])
        scores = [s for _, s in self.store.search([1.0, 0.1], limit=10)]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertEqual(len(scores), 3)

    def test_insert_replaces_existing(self):
        self.store.insert("p1", [1.0, 0.0])
        self.store.insert("p1", [0.0, 1.0])
        self.assertEqual(self.store.count(), 1)

        results = self.store.search([0.0, 1.0], limit=1)
        self.assertEqual(results[0][0], "p1")
        self.assertAlmostEqual(results[0][1], 1.0, places=5)

    def test_stored_byte_length_is_dimension_times_four(self):
        self.store.insert("p1", [0.5] * 384)
        with self.db.transaction() as conn:
            blob, dim = conn.execute(
                "SELECT embedding, dimension FROM document_vectors WHERE document_id = 'p1'"
            ).fetchone()
        self.assertEqual(dim, 384)
        self.assertEqual(len(blob), 384 * 4)

    def test_mismatched_dimension_scores_zero(self):
        self.store.insert("short", [1.0, 0.0])
        self.store.insert("long", [1.0, 0.0, 0.0])
        results = dict(self.store.search([1.0, 0.0, 0.0], limit=5))
        self.assertEqual(results["short"], 0.0)
        self.assertAlmostEqual(results["long"], 1.0, places=5)

    def test_zero_vectors_score_zero(self):
        self.store.insert("zero", [0.0, 0.0])
        self.store.insert("one", [1.0, 0.0])
        results = dict(self.store.search([1.0, 0.0], limit=5))
        self.assertEqual(results["zero"], 0.0)

        results = self.store.search([0.0, 0.0], limit=5)
        self.assertTrue(all(score == 0.0 for _, score in results))

    def test_search_empty_store(self):
        self.assertEqual(self.store.search([1.0, 0.0, 0.0], limit=5), [])

    def test_search_zero_limit(self):
        self.store.insert("p1", [1.0, 0.0])
        self.assertEqual(self.store.search([1.0, 0.0], limit=0), [])

    def test_delete_is_idempotent(self):
        self.store.insert("p1", [1.0, 0.0])
        self.store.delete("p1")
        self.store.delete("p1")
        self.assertEqual(self.store.count(), 0)

    def test_clear_all_wipes_both_tables(self):
        docs = DocumentStore(self.db)
        docs.save(_doc("p1"))
        self.store.insert("p1", [1.0, 0.0])
        self.store.clear_all()
        self.assertEqual(self.store.count(), 0)
        self.assertEqual(docs.count(), 0)

    def test_dimensions(self):
        self.store.insert("a", [1.0, 0.0])
        self.store.insert("b", [1.0, 0.0, 0.0])
        self.assertEqual(self.store.dimensions(), {2, 3})


# ---------------------------------------------------------------------------
# Test: DocumentStore
# ---------------------------------------------------------------------------

class TestDocumentStore(unittest.TestCase):

    def setUp(self):
        self._tmpdir = tempfile.mkdtemp()
        self.db_path = os.path.join(self._tmpdir, "kb.db")
        self.db = Database(self.db_path)
        self.store = DocumentStore(self.db)

    def tearDown(self):
        self.db.close()

    def test_save_and_load_all(self):
        self.store.save(_doc("a", "alpha"))
        self.store.save(_doc("b", "beta"))
        loaded = {d.id: d for d in self.store.load_all()}
        self.assertEqual(set(loaded), {"a", "b"})
        self.assertEqual(loaded["a"], _doc("a", "alpha"))

    def test_save_is_upsert(self):
        self.store.save(_doc("a", "one"))
        self.store.save(_doc("a", "two"))
        self.assertEqual(self.store.count(), 1)
        self.assertEqual(self.store.get("a").content, "two")

    def test_get_missing(self):
        self.assertIsNone(self.store.get("nope"))

    def test_delete_missing_is_safe(self):
        self.store.delete("nope")

    def test_persists_across_connections(self):
        self.store.save(_doc("a"))
        self.db.close()
        db = Database(self.db_path)
        try:
            self.assertEqual([d.id for d in DocumentStore(db).load_all()], ["a"])
        finally:
            db.close()


# ---------------------------------------------------------------------------
# Test: Database
# ---------------------------------------------------------------------------

class TestDatabase(unittest.TestCase):

    def setUp(self):
        self._tmpdir = tempfile.mkdtemp()
        self.db_path = os.path.join(self._tmpdir, "nested", "kb.db")

    def test_creates_parent_directories(self):
        db = Database(self.db_path)
        db.close()
        self.assertTrue(os.path.isfile(self.db_path))

    def test_migrates_old_documents_table(self):
        os.makedirs(os.path.dirname(self.db_path))
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "CREATE TABLE documents (id TEXT PRIMARY KEY, name TEXT NOT NULL, "
            "category TEXT NOT NULL, content TEXT NOT NULL, source_path TEXT, "
            "created_at TEXT NOT NULL)"
        )
        conn.execute(
            "INSERT INTO documents VALUES ('old', 'old.txt', 'documents', 'legacy', NULL, "
            "'2023-01-01T00:00:00+00:00')"
        )
        conn.commit()
        conn.close()

        db = Database(self.db_path)
        try:
            doc = DocumentStore(db).get("old")
            self.assertEqual(doc.content, "legacy")
            self.assertIsNone(doc.backup_path)
            self.assertEqual(doc.file_type, "")
        finally:
            db.close()

    def test_transaction_rolls_back_both_tables(self):
        db = Database(self.db_path)
        vectors, docs = VectorStore(db), DocumentStore(db)
        try:
            with self.assertRaises(RuntimeError):
                with db.transaction():
                    vectors.insert("a", [1.0, 0.0])
                    docs.save(_doc("a"))
                    raise RuntimeError("crash between writes")
            self.assertEqual(vectors.count(), 0)
            self.assertEqual(docs.count(), 0)
        finally:
            db.close()

    def test_sqlite_errors_become_storage_errors(self):
        db = Database(self.db_path)
        try:
            with self.assertRaises(StorageError):
                with db.transaction() as conn:
                    conn.execute("SELECT * FROM missing_table")
        finally:
            db.close()

    def test_closed_database_raises(self):
        db = Database(self.db_path)
        db.close()
        with self.assertRaises(StorageError):
            VectorStore(db).count()

    def test_unopenable_path_raises_storage_error(self):
        # A directory cannot be opened as a database file
        os.makedirs(self.db_path)
        with self.assertRaises(StorageError):
            Database(self.db_path)
