"""Tests for the SQLite embedding store and the store factory."""

import sqlite3
from unittest.mock import patch

import numpy as np
import pytest
from conftest import TestConstants

from coachbot import EmbeddingRecord, SQLiteVectorStore, get_vector_store
from coachbot.errors import (
    ConfigurationError,
    MalformedEmbeddingError,
    PersistenceError,
)
from coachbot.vector_store import FaissVectorStore

EXP = TestConstants.EXPERIENCE_ID
OTHER = TestConstants.OTHER_EXPERIENCE_ID


def basis(*weights: float) -> np.ndarray:
    vector = np.zeros(TestConstants.TEST_DIMENSION, dtype=np.float32)
    vector[: len(weights)] = weights
    return vector


def make_record(
    content: str,
    embedding: np.ndarray,
    experience_id: str = EXP,
    doc_id: str = "doc-1",
    chunk_index: int = 0,
) -> EmbeddingRecord:
    return EmbeddingRecord(
        experience_id=experience_id,
        content=content,
        embedding=embedding,
        metadata={"doc_id": doc_id, "chunk_index": chunk_index},
    )


async def test_add_record_assigns_id(temp_vector_store):
    record = make_record("first", basis(1.0))

    record_id = await temp_vector_store.add_record(record)

    assert record.id == record_id
    assert await temp_vector_store.count() == 1


async def test_match_orders_by_similarity(temp_vector_store):
    await temp_vector_store.add_record(make_record("orthogonal", basis(0.0, 1.0)))
    await temp_vector_store.add_record(make_record("close", basis(0.9, 0.1)))
    await temp_vector_store.add_record(make_record("exact", basis(1.0)))

    results = await temp_vector_store.match_embeddings(
        basis(1.0), EXP, threshold=0.5, limit=5
    )

    assert [record.content for record, _ in results] == ["exact", "close"]
    scores = [score for _, score in results]
    assert scores == sorted(scores, reverse=True)
    assert scores[0] == pytest.approx(1.0)
    assert results[0][0].metadata == {"doc_id": "doc-1", "chunk_index": 0}


async def test_match_respects_limit(temp_vector_store):
    for index in range(4):
        await temp_vector_store.add_record(
            make_record(f"chunk {index}", basis(1.0, 0.1 * index), chunk_index=index)
        )

    results = await temp_vector_store.match_embeddings(
        basis(1.0), EXP, threshold=0.0, limit=2
    )

    assert [record.content for record, _ in results] == ["chunk 0", "chunk 1"]


async def test_match_is_scoped_to_experience(temp_vector_store):
    await temp_vector_store.add_record(make_record("mine", basis(0.8, 0.2)))
    await temp_vector_store.add_record(
        make_record("theirs", basis(1.0), experience_id=OTHER)
    )

    results = await temp_vector_store.match_embeddings(
        basis(1.0), EXP, threshold=0.0, limit=5
    )

    assert [record.content for record, _ in results] == ["mine"]
    assert all(record.experience_id == EXP for record, _ in results)


@pytest.mark.parametrize("limit", [0, -3])
async def test_non_positive_limit_returns_nothing(temp_vector_store, limit):
    await temp_vector_store.add_record(make_record("chunk", basis(1.0)))

    assert (
        await temp_vector_store.match_embeddings(basis(1.0), EXP, 0.0, limit) == []
    )


async def test_match_on_empty_experience(temp_vector_store):
    assert await temp_vector_store.match_embeddings(basis(1.0), EXP, 0.0, 5) == []


async def test_zero_query_scores_zero(temp_vector_store):
    await temp_vector_store.add_record(make_record("chunk", basis(1.0)))

    results = await temp_vector_store.match_embeddings(basis(), EXP, 0.0, 5)

    assert [score for _, score in results] == [0.0]


async def test_wrong_dimension_is_rejected(temp_vector_store):
    record = make_record("short", np.ones(3, dtype=np.float32))

    with pytest.raises(MalformedEmbeddingError, match="expected 8, got 3"):
        await temp_vector_store.add_record(record)

    assert await temp_vector_store.count() == 0


async def test_non_finite_embedding_is_rejected(temp_vector_store):
    with pytest.raises(MalformedEmbeddingError):
        await temp_vector_store.add_record(make_record("nan", basis(np.nan)))


async def test_delete_document_embeddings(temp_vector_store):
    await temp_vector_store.add_record(make_record("a", basis(1.0), doc_id="doc-1"))
    await temp_vector_store.add_record(
        make_record("b", basis(0.0, 1.0), doc_id="doc-1", chunk_index=1)
    )
    await temp_vector_store.add_record(make_record("c", basis(1.0), doc_id="doc-2"))

    removed = await temp_vector_store.delete_document_embeddings(EXP, "doc-1")

    assert removed == 2
    assert await temp_vector_store.count(EXP) == 1
    assert await temp_vector_store.sample_contents(EXP, 10) == ["c"]


async def test_delete_is_scoped_to_experience(temp_vector_store):
    await temp_vector_store.add_record(make_record("a", basis(1.0)))
    await temp_vector_store.add_record(
        make_record("b", basis(1.0), experience_id=OTHER)
    )

    assert await temp_vector_store.delete_document_embeddings(OTHER, "doc-1") == 1
    assert await temp_vector_store.count(EXP) == 1


async def test_sample_contents_oldest_first(temp_vector_store):
    for content in ("one", "two", "three"):
        await temp_vector_store.add_record(make_record(content, basis(1.0)))

    assert await temp_vector_store.sample_contents(EXP, 2) == ["one", "two"]
    assert await temp_vector_store.sample_contents(OTHER, 2) == []


async def test_count_per_experience(temp_vector_store):
    await temp_vector_store.add_record(make_record("a", basis(1.0)))
    await temp_vector_store.add_record(
        make_record("b", basis(1.0), experience_id=OTHER)
    )

    assert await temp_vector_store.count() == 2
    assert await temp_vector_store.count(EXP) == 1


async def test_sqlite_errors_become_persistence_errors(temp_vector_store):
    with (
        patch.object(
            temp_vector_store,
            "_fetch_experience_rows",
            side_effect=sqlite3.OperationalError("database is locked"),
        ),
        pytest.raises(PersistenceError, match="similarity search") as exc_info,
    ):
        await temp_vector_store.match_embeddings(basis(1.0), EXP, 0.0, 5)

    assert exc_info.value.details == "database is locked"


def test_cosine_similarity_handles_zero_rows():
    matrix = np.vstack([basis(1.0), basis(), basis(-1.0)])

    scores = SQLiteVectorStore.cosine_similarity(basis(2.0), matrix)

    np.testing.assert_allclose(scores, [1.0, 0.0, -1.0])


def test_factory_builds_sqlite_store(tmp_path):
    store = get_vector_store("sqlite", db_path=tmp_path / "db.sqlite", dimensions=8)

    assert isinstance(store, SQLiteVectorStore)
    assert store.backend == "sqlite"
    assert store.dimensions == 8


def test_factory_builds_faiss_store(tmp_path):
    store = get_vector_store(
        "FAISS",
        db_path=tmp_path / "db.sqlite",
        index_path=tmp_path / "index.faiss",
        raw_top_k_multiplier=3,
        dimensions=8,
    )

    assert isinstance(store, FaissVectorStore)
    assert store.raw_top_k_multiplier == 3


def test_factory_rejects_unknown_backend(tmp_path):
    with pytest.raises(
        ConfigurationError, match="Unsupported vector store backend"
    ) as exc:
        get_vector_store("pinecone", db_path=tmp_path / "db.sqlite")

    assert exc.value.missing == ["VECTOR_BACKEND"]
    assert exc.value.hint == "Set environment variable(s): VECTOR_BACKEND"
