"""FAISS-accelerated embedding store with SQLite as the source of truth."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import faiss
import numpy as np

from coachbot.config import config
from coachbot.db import connect, run_in_thread
from coachbot.models import EmbeddingRecord  # noqa: TC001
from coachbot.vector_store.base import BaseEmbeddingStore

logger = config.get_logger(__name__)


class FaissVectorStore(BaseEmbeddingStore):
    """Vector storage using a FAISS inner-product index keyed by row id.

    One index covers every experience; searches over-fetch by
    ``raw_top_k_multiplier`` and widen until enough rows of the requested
    experience pass the threshold.
    """

    backend = "faiss"
    store_errors = (sqlite3.Error, RuntimeError)

    def __init__(
        self,
        db_path: Path = Path("data/coachbot.db"),
        index_path: Path = Path("data/faiss/index.faiss"),
        raw_top_k_multiplier: int = 4,
        dimensions: int | None = None,
    ) -> None:
        """Configure FAISS-backed vector store."""
        self.index_path = Path(index_path)
        self.index_path.parent.mkdir(exist_ok=True, parents=True)
        self.raw_top_k_multiplier = max(1, raw_top_k_multiplier)
        self._lock = threading.Lock()
        super().__init__(db_path, dimensions)
        self.index = self._load_or_rebuild()

    @staticmethod
    def _normalize_embedding(embedding: np.ndarray) -> np.ndarray:
        """Normalize embedding for cosine similarity using inner product search.

        Returns:
            Normalized (1, d) float32 matrix.
        """
        vector = np.array(embedding, dtype="float32").reshape(1, -1)
        if np.linalg.norm(vector) > 0:
            faiss.normalize_L2(vector)
        return vector

    def _new_index(self) -> faiss.IndexIDMap:
        logger.info("Initialized FAISS IndexIDMap with dimension %d", self.dimensions)
        return faiss.IndexIDMap(faiss.IndexFlatIP(self.dimensions))

    @property
    def _blob_size(self) -> int:
        return self.dimensions * np.dtype(np.float32).itemsize

    def _rebuild_index(self) -> faiss.IndexIDMap:
        """Rebuild the index from the embedding blobs in SQLite.

        Blobs of another length, left by a different embedding model, are
        not indexed.

        Returns:
            Index containing every embedding of the configured length.
        """
        index = self._new_index()
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, embedding FROM embeddings WHERE length(embedding) = ?",
                (self._blob_size,),
            ).fetchall()
        if rows:
            vectors = np.vstack([
                self._normalize_embedding(np.frombuffer(row["embedding"], np.float32))
                for row in rows
            ])
            ids = np.asarray([row["id"] for row in rows], dtype="int64")
            index.add_with_ids(vectors, ids)  # pyright: ignore[reportCallIssue]
        logger.info("Rebuilt FAISS index with %d vectors", index.ntotal)
        return index

    def _load_or_rebuild(self) -> faiss.IndexIDMap:
        """Read the persisted index, rebuilding it when stale or missing.

        Returns:
            Index consistent with the embeddings table.
        """
        if not self.index_path.exists():
            logger.warning(
                "FAISS index not found at %s; rebuilding from database",
                self.index_path,
            )
            return self._rebuild_index()

        index = faiss.read_index(str(self.index_path))
        if not isinstance(index, (faiss.IndexIDMap, faiss.IndexIDMap2)):
            logger.warning(
                "Loaded FAISS index is %s; rebuilding with IndexIDMap",
                type(index).__name__,
            )
            return self._rebuild_index()

        with connect(self.db_path) as conn:
            stored = conn.execute(
                "SELECT COUNT(*) FROM embeddings WHERE length(embedding) = ?",
                (self._blob_size,),
            ).fetchone()[0]
        if index.d != self.dimensions or index.ntotal != stored:
            logger.warning(
                "FAISS index out of sync (%d vectors, %d rows); rebuilding",
                index.ntotal,
                stored,
            )
            return self._rebuild_index()

        logger.info(
            "Loaded FAISS index from %s with %d vectors",
            self.index_path,
            index.ntotal,
        )
        return index

    def _on_added(self, record_id: int, vector: np.ndarray) -> None:
        with self._lock:
            self.index.add_with_ids(  # pyright: ignore[reportCallIssue]
                self._normalize_embedding(vector),
                np.asarray([record_id], dtype="int64"),
            )

    def _on_removed(self, record_ids: list[int]) -> None:
        if not record_ids:
            return
        with self._lock:
            self.index.remove_ids(np.asarray(record_ids, dtype="int64"))

    def _match(
        self,
        query: np.ndarray,
        experience_id: str,
        threshold: float,
        limit: int,
    ) -> list[tuple[EmbeddingRecord, float]]:
        normalized_query = self._normalize_embedding(query)
        raw_top_k = max(limit, self.raw_top_k_multiplier * limit)

        while True:
            with self._lock:
                total = self.index.ntotal
                if total == 0:
                    return []
                raw_top_k = min(raw_top_k, total)
                search = self.index.search
                scores, vector_ids = search(  # pyright: ignore[reportCallIssue]
                    normalized_query, raw_top_k
                )

            candidates = [
                (int(vector_id), float(score))
                for score, vector_id in zip(scores[0], vector_ids[0], strict=True)
                if int(vector_id) != -1  # faiss returns -1 for empty results
            ]
            rows = self._fetch_rows_by_id([vector_id for vector_id, _ in candidates])

            results: list[tuple[EmbeddingRecord, float]] = []
            for vector_id, score in candidates:
                if score < threshold:
                    break
                record = rows.get(vector_id)
                if record is None or record.experience_id != experience_id:
                    continue
                results.append((record, score))
                if len(results) >= limit:
                    break

            exhausted = raw_top_k >= total
            below_threshold = bool(candidates) and candidates[-1][1] < threshold
            if len(results) >= limit or exhausted or below_threshold:
                return results
            raw_top_k *= 2

    def _write_index(self) -> None:
        with self._lock:
            faiss.write_index(self.index, str(self.index_path))
        logger.info("Saved FAISS index to %s", self.index_path)

    async def save(self) -> None:
        """Persist FAISS index to disk."""
        await run_in_thread(
            "index save", self._write_index, errors=self.store_errors
        )

    async def load(self) -> None:
        """Reload the FAISS index from disk, rebuilding if it is stale."""
        index = await run_in_thread(
            "index load", self._load_or_rebuild, errors=self.store_errors
        )
        with self._lock:
            self.index = index
