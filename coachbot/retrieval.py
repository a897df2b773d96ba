"""Similarity-based context retrieval scoped to one experience."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import config
from .errors import PersistenceError

if TYPE_CHECKING:
    from .embeddings import EmbeddingService
    from .vector_store import BaseEmbeddingStore

logger = config.get_logger(__name__)


class ContextRetriever:
    """Finds the training chunks most relevant to a query."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: BaseEmbeddingStore,
        match_threshold: float | None = None,
    ) -> None:
        """Initialize the retriever.

        Args:
            embedding_service: Embeds queries.
            vector_store: Store searched for matching chunks.
            match_threshold: Minimum cosine similarity. If None, uses
                config.RETRIEVAL_MATCH_THRESHOLD.
        """
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.match_threshold = (
            match_threshold
            if match_threshold is not None
            else config.RETRIEVAL_MATCH_THRESHOLD
        )

    async def retrieve(
        self, query: str, experience_id: str, limit: int | None = None
    ) -> list[str]:
        """Return chunk contents ordered by decreasing similarity.

        When similarity search fails the retriever degrades to an unranked
        sample of the experience's chunks, and to no context at all if that
        fails too.

        Args:
            query: Text to match against stored chunks.
            experience_id: Only chunks of this experience are returned.
            limit: Maximum number of chunks. If None, uses config.RETRIEVAL_LIMIT.

        Returns:
            Up to ``limit`` chunk contents.

        Raises:
            CoachBotError: If embedding the query fails.
        """
        limit = limit if limit is not None else config.RETRIEVAL_LIMIT
        query_embedding = await self.embedding_service.embed(query)

        try:
            matches = await self.vector_store.match_embeddings(
                query_embedding,
                experience_id,
                threshold=self.match_threshold,
                limit=limit,
            )
        except PersistenceError:
            logger.exception(
                "Similarity search failed for experience %s; "
                "falling back to unranked chunks",
                experience_id,
            )
        else:
            for record, score in matches:
                logger.debug(
                    "Matched chunk %s with similarity %.4f", record.id, score
                )
            return [record.content for record, _ in matches]

        try:
            return await self.vector_store.sample_contents(experience_id, limit)
        except PersistenceError:
            logger.exception(
                "Fallback chunk fetch failed for experience %s", experience_id
            )
            return []
