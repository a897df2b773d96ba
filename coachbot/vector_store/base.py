"""Shared schema and row helpers for embedding stores backed by SQLite."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import numpy as np

from coachbot.config import config
from coachbot.db import connect, prepare_database, run_in_thread, utc_now
from coachbot.embeddings import ensure_embedding_shape
from coachbot.models import EmbeddingRecord

logger = config.get_logger(__name__)

ROW_COLUMNS = (
    "id, experience_id, content, embedding, metadata, doc_id, chunk_index, created_at"
)


class BaseEmbeddingStore:
    """Common schema management and async API for embedding stores.

    Embedding vectors always live in SQLite as float32 blobs. Subclasses only
    decide how similarity search over those rows is performed.
    """

    backend = "base"
    store_errors: tuple[type[Exception], ...] = (sqlite3.Error,)

    def __init__(self, db_path: Path, dimensions: int | None = None) -> None:
        """Initialize the store and ensure its schema exists.

        Args:
            db_path: Path to the SQLite database file.
            dimensions: Required embedding length.
        """
        self.db_path = prepare_database(db_path)
        self.dimensions = dimensions or config.EMBEDDING_DIMENSIONS
        self._create_tables()

    def _create_tables(self) -> None:
        """Create the embeddings table and its indexes if they don't exist."""
        with connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS embeddings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    experience_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    doc_id TEXT,
                    chunk_index INTEGER,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute(
                (
                    "CREATE INDEX IF NOT EXISTS idx_embeddings_experience "
                    "ON embeddings(experience_id)"
                ),
            )
            cursor.execute(
                (
                    "CREATE INDEX IF NOT EXISTS idx_embeddings_document "
                    "ON embeddings(experience_id, doc_id)"
                ),
            )
            conn.commit()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> EmbeddingRecord:
        """Hydrate an EmbeddingRecord from an embeddings row.

        Returns:
            Record with its float32 vector decoded from the blob.
        """
        return EmbeddingRecord(
            id=int(row["id"]),
            experience_id=row["experience_id"],
            content=row["content"],
            embedding=np.frombuffer(row["embedding"], dtype=np.float32),
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=row["created_at"],
        )

    def _insert_record(self, record: EmbeddingRecord) -> int:
        metadata: dict[str, Any] = dict(record.metadata)
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO embeddings (
                    experience_id,
                    content,
                    embedding,
                    metadata,
                    doc_id,
                    chunk_index,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.experience_id,
                    record.content,
                    np.asarray(record.embedding, dtype=np.float32).tobytes(),
                    json.dumps(metadata),
                    metadata.get("doc_id"),
                    metadata.get("chunk_index"),
                    record.created_at or utc_now(),
                ),
            )
            conn.commit()
            row_id = cursor.lastrowid
        if row_id is None:
            msg = "Failed to insert embedding row"
            raise sqlite3.OperationalError(msg)
        return int(row_id)

    def _delete_document_rows(self, experience_id: str, doc_id: str) -> list[int]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id FROM embeddings WHERE experience_id = ? AND doc_id = ?",
                (experience_id, doc_id),
            ).fetchall()
            ids = [int(row["id"]) for row in rows]
            conn.execute(
                "DELETE FROM embeddings WHERE experience_id = ? AND doc_id = ?",
                (experience_id, doc_id),
            )
            conn.commit()
        return ids

    def _fetch_experience_rows(self, experience_id: str) -> list[EmbeddingRecord]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {ROW_COLUMNS} FROM embeddings "  # noqa: S608
                "WHERE experience_id = ? ORDER BY id",
                (experience_id,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _fetch_rows_by_id(self, ids: list[int]) -> dict[int, EmbeddingRecord]:
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {ROW_COLUMNS} FROM embeddings "  # noqa: S608
                f"WHERE id IN ({placeholders})",
                ids,
            ).fetchall()
        return {int(row["id"]): self._row_to_record(row) for row in rows}

    def _sample_contents(self, experience_id: str, limit: int) -> list[str]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT content FROM embeddings WHERE experience_id = ? "
                "ORDER BY id LIMIT ?",
                (experience_id, limit),
            ).fetchall()
        return [row["content"] for row in rows]

    def _count(self, experience_id: str | None) -> int:
        with connect(self.db_path) as conn:
            if experience_id is None:
                row = conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM embeddings WHERE experience_id = ?",
                    (experience_id,),
                ).fetchone()
        return int(row[0])

    # Backend hooks

    def _on_added(self, record_id: int, vector: np.ndarray) -> None:
        """Hook for backends that keep a secondary index."""

    def _on_removed(self, record_ids: list[int]) -> None:
        """Hook for backends that keep a secondary index."""

    def _match(
        self,
        query: np.ndarray,
        experience_id: str,
        threshold: float,
        limit: int,
    ) -> list[tuple[EmbeddingRecord, float]]:
        raise NotImplementedError

    # Async API

    async def add_record(self, record: EmbeddingRecord) -> int:
        """Persist one embedded chunk.

        Returns:
            Row id of the stored record.

        Raises:
            MalformedEmbeddingError: If the vector has the wrong shape.
            PersistenceError: If the insert fails.
        """
        vector = np.asarray(record.embedding, dtype=np.float32)
        ensure_embedding_shape(vector, self.dimensions)

        def _add() -> int:
            record_id = self._insert_record(record)
            self._on_added(record_id, vector)
            return record_id

        record_id = await run_in_thread(
            "embedding insert", _add, errors=self.store_errors
        )
        record.id = record_id
        return record_id

    async def delete_document_embeddings(self, experience_id: str, doc_id: str) -> int:
        """Delete every embedding derived from one training document.

        Returns:
            Number of embeddings removed.
        """

        def _delete() -> int:
            ids = self._delete_document_rows(experience_id, doc_id)
            self._on_removed(ids)
            return len(ids)

        removed = await run_in_thread(
            "embedding delete", _delete, errors=self.store_errors
        )
        logger.info("Removed %d embeddings for document %s", removed, doc_id)
        return removed

    async def match_embeddings(
        self,
        query: np.ndarray,
        experience_id: str,
        threshold: float,
        limit: int,
    ) -> list[tuple[EmbeddingRecord, float]]:
        """Nearest-neighbour search scoped to one experience.

        Args:
            query: Query embedding.
            experience_id: Only records of this experience are considered.
            threshold: Minimum cosine similarity to include.
            limit: Maximum number of results.

        Returns:
            (record, similarity) pairs in descending similarity order.

        Raises:
            PersistenceError: If the search fails.
        """
        if limit <= 0:
            return []
        query = np.asarray(query, dtype=np.float32)
        return await run_in_thread(
            "similarity search",
            self._match,
            query,
            experience_id,
            threshold,
            limit,
            errors=self.store_errors,
        )

    async def sample_contents(self, experience_id: str, limit: int) -> list[str]:
        """Unranked chunk contents for an experience, oldest first.

        Returns:
            Up to ``limit`` chunk texts.
        """
        return await run_in_thread(
            "sample fetch", self._sample_contents, experience_id, limit
        )

    async def count(self, experience_id: str | None = None) -> int:
        """Count stored embeddings, optionally for one experience.

        Returns:
            Number of embedding rows.
        """
        return await run_in_thread("embedding count", self._count, experience_id)

    async def save(self) -> None:
        """Flush any secondary index to disk."""

    async def load(self) -> None:
        """Load any secondary index from disk."""
