"""CoachBot - retrieval-augmented community chatbot service."""

from .document_processing import DocumentLoader, TextChunker, chunk_text
from .embeddings import EmbeddingService, validate_embedding
from .generation import ResponseGenerator, build_system_prompt
from .intake import MessageReconciler, extract_question, mentions_bot
from .models import (
    BotConfig,
    ChatMessageRecord,
    EmbeddingRecord,
    Personality,
    PlatformMessage,
    TrainingDocument,
)
from .pipeline import IngestionPipeline
from .platform import PlatformClient
from .repository import Repository
from .retrieval import ContextRetriever
from .vector_store import FaissVectorStore, SQLiteVectorStore, get_vector_store

__all__ = [
    "BotConfig",
    "ChatMessageRecord",
    "ContextRetriever",
    "DocumentLoader",
    "EmbeddingRecord",
    "EmbeddingService",
    "FaissVectorStore",
    "IngestionPipeline",
    "MessageReconciler",
    "Personality",
    "PlatformClient",
    "PlatformMessage",
    "Repository",
    "ResponseGenerator",
    "SQLiteVectorStore",
    "TextChunker",
    "TrainingDocument",
    "build_system_prompt",
    "chunk_text",
    "extract_question",
    "get_vector_store",
    "mentions_bot",
    "validate_embedding",
]
