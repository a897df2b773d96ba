"""Embedding store adapters and factory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from coachbot.config import config
from coachbot.errors import ConfigurationError

from .base import BaseEmbeddingStore
from .faiss_store import FaissVectorStore
from .sqlite_store import SQLiteVectorStore

if TYPE_CHECKING:
    from pathlib import Path

VectorBackend = Literal["faiss", "sqlite"]


def get_vector_store(
    store: VectorBackend | str | None = None,
    *,
    db_path: Path | None = None,
    index_path: Path | None = None,
    raw_top_k_multiplier: int | None = None,
    dimensions: int | None = None,
) -> FaissVectorStore | SQLiteVectorStore:
    """Return a configured vector store instance.

    Raises:
        ConfigurationError: If an unsupported backend is requested.
    """
    backend = (store or config.VECTOR_BACKEND).lower()
    if db_path is None:
        db_path = config.DATABASE_PATH

    if backend == "faiss":
        return FaissVectorStore(
            db_path=db_path,
            index_path=(
                index_path if index_path is not None else config.FAISS_INDEX_PATH
            ),
            raw_top_k_multiplier=(
                raw_top_k_multiplier
                if raw_top_k_multiplier is not None
                else config.VECTOR_RAW_TOP_K_MULTIPLIER
            ),
            dimensions=dimensions,
        )

    if backend == "sqlite":
        return SQLiteVectorStore(db_path=db_path, dimensions=dimensions)

    msg = f"Unsupported vector store backend: {backend}"
    raise ConfigurationError(msg, missing=["VECTOR_BACKEND"])


__all__ = [
    "BaseEmbeddingStore",
    "FaissVectorStore",
    "SQLiteVectorStore",
    "VectorBackend",
    "get_vector_store",
]
