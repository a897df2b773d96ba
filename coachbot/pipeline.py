"""Ingestion pipeline orchestrating Chunk -> Embed -> Store for training data."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from .config import config
from .document_processing import TextChunker
from .embeddings import ensure_embedding_shape
from .errors import (
    EmptyContentError,
    IngestionError,
    NoChunksError,
    NotFoundError,
)
from .models import EmbeddingRecord, FileKind, TrainingDocument

if TYPE_CHECKING:
    from .embeddings import EmbeddingService
    from .repository import Repository
    from .vector_store import BaseEmbeddingStore

logger = config.get_logger(__name__)


class IngestionPipeline:
    """Turns training documents into stored, searchable embeddings."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: BaseEmbeddingStore,
        repository: Repository,
        chunker: TextChunker | None = None,
    ) -> None:
        """Initialize the ingestion pipeline.

        Args:
            embedding_service: Embeds each chunk.
            vector_store: Destination for embedding records.
            repository: Store for training document rows.
            chunker: Text splitter. If None, built from config.CHUNK_SIZE,
                config.CHUNK_OVERLAP and config.MAX_CHUNKS.
        """
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.repository = repository
        self.chunker = chunker or TextChunker(
            chunk_size=config.CHUNK_SIZE,
            overlap=config.CHUNK_OVERLAP,
            max_chunks=config.MAX_CHUNKS,
        )

    async def _ingest_chunk(
        self,
        experience_id: str,
        chunk: str,
        chunk_index: int,
        doc_id: str | None,
    ) -> int:
        embedding = await self.embedding_service.embed(chunk)
        ensure_embedding_shape(embedding, self.vector_store.dimensions)
        return await self.vector_store.add_record(
            EmbeddingRecord(
                experience_id=experience_id,
                content=chunk,
                embedding=embedding,
                metadata={"doc_id": doc_id, "chunk_index": chunk_index},
            )
        )

    async def ingest(
        self, experience_id: str, content: str, doc_id: str | None = None
    ) -> int:
        """Chunk, embed and persist content for an experience.

        Chunks are processed concurrently. A failing chunk does not roll back
        siblings that were already stored.

        Args:
            experience_id: Owner of the resulting embeddings.
            content: Raw training text.
            doc_id: Training document the chunks belong to, if any.

        Returns:
            Number of chunks persisted.

        Raises:
            EmptyContentError: If content is blank.
            NoChunksError: If chunking produced nothing.
            IngestionError: If any chunk fails; names the lowest failing index.
        """
        if not content or not content.strip():
            msg = "Content cannot be empty"
            raise EmptyContentError(msg)

        chunks = self.chunker.chunk(content)
        if not chunks:
            msg = "No chunks generated from content"
            raise NoChunksError(msg)

        logger.info(
            "Ingesting %d chunks for experience %s (doc %s)",
            len(chunks),
            experience_id,
            doc_id,
        )

        try:
            results = await asyncio.gather(
                *(
                    self._ingest_chunk(experience_id, chunk, index, doc_id)
                    for index, chunk in enumerate(chunks)
                ),
                return_exceptions=True,
            )
        finally:
            await self.vector_store.save()

        for index, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(
                    "Chunk %d of %d failed for experience %s: %s",
                    index,
                    len(chunks),
                    experience_id,
                    result,
                )
                raise IngestionError(index, len(chunks), result) from result
            if isinstance(result, BaseException):
                raise result

        logger.info(
            "Stored %d embeddings for experience %s", len(chunks), experience_id
        )
        return len(chunks)

    async def save_document(  # noqa: PLR0913
        self,
        experience_id: str,
        content: str,
        *,
        file_name: str | None = None,
        file_type: FileKind = FileKind.TEXT,
        doc_id: str | None = None,
    ) -> tuple[TrainingDocument, int]:
        """Create or replace a training document and ingest its content.

        Updating a document purges its previous embeddings before re-ingesting.

        Returns:
            Tuple of (stored document, number of chunks ingested).

        Raises:
            EmptyContentError: If content is blank.
            NotFoundError: If doc_id names no document of the experience.
        """
        if not content or not content.strip():
            msg = "No content provided"
            raise EmptyContentError(msg)

        if doc_id:
            document = await self.repository.update_document(
                experience_id, doc_id, content, file_name, file_type
            )
            if document is None:
                msg = f"Training document '{doc_id}' not found"
                raise NotFoundError(msg)
            await self.vector_store.delete_document_embeddings(experience_id, doc_id)
        else:
            document = await self.repository.create_document(
                experience_id, content, file_name, file_type
            )

        chunks = await self.ingest(experience_id, content, doc_id=document.id)
        return document, chunks

    async def delete_document(self, experience_id: str, doc_id: str) -> None:
        """Delete a training document together with its embeddings.

        Raises:
            NotFoundError: If doc_id names no document of the experience.
        """
        document = await self.repository.get_document(experience_id, doc_id)
        if document is None:
            msg = f"Training document '{doc_id}' not found"
            raise NotFoundError(msg)

        await self.vector_store.delete_document_embeddings(experience_id, doc_id)
        await self.repository.delete_document(experience_id, doc_id)
        await self.vector_store.save()
        logger.info("Deleted training document %s", doc_id)

    async def list_documents(self, experience_id: str) -> list[TrainingDocument]:
        """List training documents for an experience, newest first.

        Returns:
            Possibly empty list of documents.
        """
        return await self.repository.list_documents(experience_id)
