"""SQLite embedding store with brute-force numpy similarity search."""

from __future__ import annotations

from pathlib import Path

import numpy as np

from coachbot.config import config
from coachbot.models import EmbeddingRecord  # noqa: TC001
from coachbot.vector_store.base import BaseEmbeddingStore

logger = config.get_logger(__name__)


class SQLiteVectorStore(BaseEmbeddingStore):
    """Vector storage scanning an experience's blobs with numpy."""

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path = Path("data/coachbot.db"),
        dimensions: int | None = None,
    ) -> None:
        """Initialize the SQLiteVectorStore.

        Args:
            db_path: Path to the SQLite database file.
            dimensions: Required embedding length.
        """
        super().__init__(db_path, dimensions)

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and document embeddings.

        Zero vectors score 0 against everything.

        Returns:
            np.ndarray: Array of cosine similarity scores
                    between the query and each document embedding.
        """
        query_norm = np.linalg.norm(query_embedding)
        doc_norms = np.linalg.norm(embeddings, axis=1)
        denominator = doc_norms * query_norm
        dots = embeddings @ query_embedding
        return np.divide(
            dots,
            denominator,
            out=np.zeros_like(dots, dtype=np.float64),
            where=denominator > 0,
        )

    def _match(
        self,
        query: np.ndarray,
        experience_id: str,
        threshold: float,
        limit: int,
    ) -> list[tuple[EmbeddingRecord, float]]:
        rows = self._fetch_experience_rows(experience_id)
        records = [row for row in rows if row.embedding.shape[0] == self.dimensions]
        if len(records) != len(rows):
            logger.warning(
                "Skipping %d embeddings for experience %s whose length is not %d",
                len(rows) - len(records),
                experience_id,
                self.dimensions,
            )
        if not records:
            return []

        matrix = np.vstack([record.embedding for record in records])
        similarities = self.cosine_similarity(query, matrix)
        top_indices = np.argsort(similarities)[::-1]

        results: list[tuple[EmbeddingRecord, float]] = []
        for idx in top_indices:
            score = float(similarities[idx])
            if score < threshold or len(results) >= limit:
                break
            results.append((records[idx], score))

        logger.info(
            "Matched %d of %d embeddings for experience %s",
            len(results),
            len(records),
            experience_id,
        )
        return results
