"""
SQLite-backed vector store for knowledge chunks.

Two tables live in a single database file:
    - documents: chunk text, JSON metadata, collection and base-document flag
    - vectors:   JSON-serialized embedding, one row per document

Similarity search is a linear scan with cosine similarity computed in
Python. That is fine for thousands of chunks and is the scaling ceiling of
this store; there is no index.
"""

import json
import logging
import math
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from capellan.models.document import (
    DEFAULT_COLLECTION,
    Chunk,
    CollectionStats,
    SearchResult,
    StoreStats,
    metadata_from_dict,
    metadata_to_dict,
)
from capellan.rag.errors import StoreFailure

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when the lengths differ or either vector has zero norm, so
    embeddings from different models never poison a search.
    """
    if len(a) != len(b) or not a:
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, similarity))


@dataclass
class BatchInsertResult:
    """Outcome of add_batch: how many chunks landed and which ones did not."""
    inserted: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class VectorStore:
    """Chunk store with collection-scoped cosine search."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        # Serializes writers inside this process; SQLite locks the file across processes
        self._write_lock = threading.Lock()
        self.init_db()

    @contextmanager
    def get_conn(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self):
        """Create the schema and migrate databases written by older versions.

        Older files lack the `collection` and `is_base_document` columns.
        They are added with their defaults and NULLs are backfilled, so the
        step is safe to run on every start.
        """
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        try:
            with self._write_lock, self.get_conn() as conn:
                conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    collection TEXT NOT NULL DEFAULT 'user',
                    is_base_document INTEGER NOT NULL DEFAULT 0,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """)
                conn.execute("""
                CREATE TABLE IF NOT EXISTS vectors (
                    document_id TEXT PRIMARY KEY,
                    embedding TEXT NOT NULL,
                    FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """)

                # --- Safe Schema Migration ---
                cursor = conn.execute("PRAGMA table_info(documents)")
                columns = [row[1] for row in cursor.fetchall()]
                migrations = [
                    ("collection", "ALTER TABLE documents ADD COLUMN collection TEXT NOT NULL DEFAULT 'user'"),
                    ("is_base_document", "ALTER TABLE documents ADD COLUMN is_base_document INTEGER NOT NULL DEFAULT 0"),
                ]
                for column_name, sql in migrations:
                    if column_name not in columns:
                        logger.info(f"[VECTOR_STORE] Adding '{column_name}' column to documents table")
                        conn.execute(sql)

                # --- Data Backfill for Migrated Rows ---
                conn.execute("UPDATE documents SET collection = ? WHERE collection IS NULL", (DEFAULT_COLLECTION,))
                conn.execute("UPDATE documents SET is_base_document = 0 WHERE is_base_document IS NULL")

                conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_source ON documents(json_extract(metadata, '$.source'))")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_chunk ON documents(chunk_index)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"[VECTOR_STORE] Failed to initialize database at {self.db_path}: {e}")
            raise StoreFailure(f"Failed to initialize vector store at {self.db_path}: {e}") from e

        logger.info(f"[VECTOR_STORE] SQLite vector database initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _upsert(conn, chunk: Chunk, collection: str, is_base_document: bool):
        conn.execute("""
            INSERT INTO documents (id, content, metadata, chunk_index, collection, is_base_document)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                content = excluded.content,
                metadata = excluded.metadata,
                chunk_index = excluded.chunk_index,
                collection = excluded.collection,
                is_base_document = excluded.is_base_document;
        """, (
            chunk.id,
            chunk.content,
            json.dumps(metadata_to_dict(chunk.metadata), ensure_ascii=False),
            chunk.chunk_index,
            collection,
            1 if is_base_document else 0,
        ))
        conn.execute("""
            INSERT INTO vectors (document_id, embedding)
            VALUES (?, ?)
            ON CONFLICT(document_id) DO UPDATE SET embedding = excluded.embedding;
        """, (chunk.id, json.dumps(list(chunk.embedding))))

    def add(self, chunk: Chunk, collection: Optional[str] = None, is_base_document: Optional[bool] = None):
        """Insert or replace one chunk, committing its row and embedding together.

        `None` arguments keep the chunk's own collection / base flag.

        Raises:
            StoreFailure: If the write fails; nothing is left half-written.
        """
        collection = collection or chunk.collection
        is_base = chunk.is_base_document if is_base_document is None else is_base_document
        try:
            with self._write_lock, self.get_conn() as conn:
                with conn:
                    self._upsert(conn, chunk, collection, is_base)
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"[VECTOR_STORE] Failed to add document {chunk.id}: {e}")
            raise StoreFailure(f"Failed to add document {chunk.id}: {e}") from e

        chunk.collection = collection
        chunk.is_base_document = is_base
        logger.debug(f"[VECTOR_STORE] Added {chunk.id} (source={chunk.source}, collection={collection})")

    def add_batch(
        self,
        chunks: Iterable[Chunk],
        collection: Optional[str] = None,
        is_base_document: Optional[bool] = None,
    ) -> BatchInsertResult:
        """Insert chunks one transaction each, continuing past bad rows.

        Returns:
            BatchInsertResult with the number inserted and (id, error) pairs
            for every chunk that could not be written.

        Raises:
            StoreFailure: If the database cannot be opened at all.
        """
        result = BatchInsertResult()
        try:
            with self._write_lock, self.get_conn() as conn:
                for chunk in chunks:
                    target = collection or chunk.collection
                    is_base = chunk.is_base_document if is_base_document is None else is_base_document
                    try:
                        with conn:
                            self._upsert(conn, chunk, target, is_base)
                    except (sqlite3.Error, TypeError, ValueError) as e:
                        logger.error(f"[VECTOR_STORE] Failed to add document {chunk.id} in batch: {e}")
                        result.failed.append((chunk.id, str(e)))
                        continue
                    chunk.collection = target
                    chunk.is_base_document = is_base
                    result.inserted += 1
        except sqlite3.Error as e:
            logger.error(f"[VECTOR_STORE] Batch insert aborted after {result.inserted} documents: {e}")
            raise StoreFailure(f"Batch insert aborted after {result.inserted} documents: {e}") from e

        logger.info(
            f"[VECTOR_STORE] Batch added {result.inserted} documents"
            + (f", {len(result.failed)} failed" if result.failed else "")
        )
        return result

    def _delete(self, where: str, params: tuple, description: str) -> int:
        try:
            with self._write_lock, self.get_conn() as conn:
                with conn:
                    # Explicit vector delete keeps files created without the cascade clean too
                    conn.execute(
                        f"DELETE FROM vectors WHERE document_id IN (SELECT id FROM documents {where})",
                        params,
                    )
                    cursor = conn.execute(f"DELETE FROM documents {where}", params)
                    deleted = cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"[VECTOR_STORE] Failed to delete {description}: {e}")
            raise StoreFailure(f"Failed to delete {description}: {e}") from e

        logger.info(f"[VECTOR_STORE] Deleted {deleted} documents ({description})")
        return deleted

    def delete_by_source(self, source: str) -> int:
        """Remove every chunk (and embedding) whose metadata source matches."""
        return self._delete("WHERE json_extract(metadata, '$.source') = ?", (source,), f"source={source}")

    def clear_collection(self, collection: str) -> int:
        return self._delete("WHERE collection = ?", (collection,), f"collection={collection}")

    def clear_all(self) -> int:
        return self._delete("", (), "all")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_chunk(row, embedding: List[float]) -> Chunk:
        return Chunk(
            id=row["id"],
            content=row["content"],
            embedding=embedding,
            metadata=metadata_from_dict(json.loads(row["metadata"])),
            chunk_index=row["chunk_index"],
            collection=row["collection"],
            is_base_document=bool(row["is_base_document"]),
        )

    def search(
        self,
        query_embedding: Sequence[float],
        limit: int = 5,
        threshold: float = 0.7,
        collections: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        """Find the chunks most similar to a query embedding.

        Args:
            query_embedding: Vector of the query.
            limit: Maximum number of results.
            threshold: Minimum cosine similarity to keep a result.
            collections: Restrict the scan to these collections (all if None).

        Returns:
            Results sorted by descending similarity; equal scores keep
            insertion order.

        Raises:
            StoreFailure: If the read fails.
        """
        if limit <= 0:
            return []

        sql = """
            SELECT d.id, d.content, d.metadata, d.chunk_index, d.collection,
                   d.is_base_document, v.embedding
            FROM documents d
            JOIN vectors v ON d.id = v.document_id
        """
        params: tuple = ()
        if collections is not None:
            if not collections:
                return []
            placeholders = ",".join("?" * len(collections))
            sql += f" WHERE d.collection IN ({placeholders})"
            params = tuple(collections)
        sql += " ORDER BY d.rowid"

        try:
            with self.get_conn() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"[VECTOR_STORE] Failed to search similar documents: {e}")
            raise StoreFailure(f"Failed to search similar documents: {e}") from e

        results: List[SearchResult] = []
        for row in rows:
            try:
                embedding = json.loads(row["embedding"])
                similarity = cosine_similarity(query_embedding, embedding)
                if similarity < threshold:
                    continue
                results.append(SearchResult(chunk=self._row_to_chunk(row, embedding), similarity=similarity))
            except (ValueError, TypeError) as e:
                logger.warning(f"[VECTOR_STORE] Skipping unreadable document {row['id']}: {e}")

        # list.sort is stable, so ties stay in insertion order
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    def has_base_documents(self, collection: Optional[str] = None) -> bool:
        sql = "SELECT 1 FROM documents WHERE is_base_document = 1"
        params: tuple = ()
        if collection is not None:
            sql += " AND collection = ?"
            params = (collection,)
        with self.get_conn() as conn:
            return conn.execute(sql + " LIMIT 1", params).fetchone() is not None

    def get_collections(self) -> List[str]:
        with self.get_conn() as conn:
            rows = conn.execute("SELECT DISTINCT collection FROM documents ORDER BY collection").fetchall()
        return [row[0] for row in rows]

    def count(self) -> int:
        with self.get_conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def stats(self) -> StoreStats:
        with self.get_conn() as conn:
            count = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            sources = conn.execute("""
                SELECT json_extract(metadata, '$.source') AS source FROM documents
                GROUP BY source ORDER BY MIN(rowid)
            """).fetchall()
            types = conn.execute("""
                SELECT json_extract(metadata, '$.type') AS type, COUNT(*) AS count
                FROM documents
                GROUP BY json_extract(metadata, '$.type')
            """).fetchall()

        return StoreStats(
            document_count=count,
            sources=[row[0] for row in sources],
            types={row["type"]: row["count"] for row in types},
        )

    def collection_stats(self, collection: str) -> CollectionStats:
        with self.get_conn() as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,)
            ).fetchone()[0]
            sources = conn.execute("""
                SELECT json_extract(metadata, '$.source') AS source FROM documents
                WHERE collection = ? GROUP BY source ORDER BY MIN(rowid)
            """, (collection,)).fetchall()

        return CollectionStats(document_count=count, sources=[row[0] for row in sources])

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def vacuum(self):
        with self._write_lock, self.get_conn() as conn:
            conn.execute("VACUUM")
        logger.info("[VECTOR_STORE] Vector store vacuumed")

    def optimize(self):
        with self._write_lock, self.get_conn() as conn:
            conn.execute("ANALYZE")
            conn.execute("PRAGMA optimize")
            conn.commit()
        logger.info("[VECTOR_STORE] Vector store analyzed and optimized")

    def integrity_report(self) -> dict:
        """Count rows that break the one-embedding-per-document invariant."""
        with self.get_conn() as conn:
            orphaned = conn.execute("""
                SELECT COUNT(*) FROM vectors v
                LEFT JOIN documents d ON d.id = v.document_id
                WHERE d.id IS NULL
            """).fetchone()[0]
            missing = conn.execute("""
                SELECT COUNT(*) FROM documents d
                LEFT JOIN vectors v ON d.id = v.document_id
                WHERE v.document_id IS NULL
            """).fetchone()[0]
            check = conn.execute("PRAGMA integrity_check").fetchone()[0]

        return {
            "orphaned_vectors": orphaned,
            "documents_without_vectors": missing,
            "integrity_check": check,
        }
