"""Performance and stress tests for CoachBot components.

Thresholds are generous; they catch pathological slowdowns, not small
regressions.
"""

import os
import time

import psutil
from conftest import MockEmbeddingService, TestConstants

from coachbot import EmbeddingRecord, TextChunker, chunk_text

EXP = TestConstants.EXPERIENCE_ID


def test_text_chunking_performance():
    large_text = "Consistency beats intensity in every training plan. " * 5000
    chunker = TextChunker(chunk_size=1000, overlap=200)

    start_time = time.perf_counter()
    chunks = chunker.chunk(large_text)
    chunk_time = time.perf_counter() - start_time

    assert len(chunks) > 300, "Should create many chunks from large document"
    assert chunk_time < 0.5, f"Chunking took too long: {chunk_time:.3f}s"
    assert all(len(chunk) <= 1000 for chunk in chunks)


def test_worst_case_overlap_terminates():
    content = "z" * 5000

    start_time = time.perf_counter()
    chunks = chunk_text(content, chunk_size=10, overlap=10_000)
    processing_time = time.perf_counter() - start_time

    assert len(chunks) == 5000 - 10 + 1
    assert processing_time < 2.0, f"Processing took too long: {processing_time:.3f}s"


async def test_vector_store_performance(temp_vector_store):
    embedder = MockEmbeddingService()
    for index in range(300):
        content = f"Performance test content {index}"
        await temp_vector_store.add_record(
            EmbeddingRecord(
                experience_id=EXP,
                content=content,
                embedding=embedder.vector_for(content),
                metadata={"doc_id": "perf", "chunk_index": index},
            )
        )

    search_start = time.perf_counter()
    results = await temp_vector_store.match_embeddings(
        embedder.vector_for("test query"), EXP, threshold=-1.0, limit=10
    )
    search_time = time.perf_counter() - search_start

    assert len(results) == 10, "Should return requested number of results"
    assert search_time < 1.0, f"Search too slow: {search_time:.3f}s"


async def test_memory_usage_stability(ingestion_pipeline_factory):
    process = psutil.Process(os.getpid())
    initial_memory = process.memory_info().rss / 1024 / 1024
    pipeline = ingestion_pipeline_factory()

    for round_num in range(5):
        content = f"Memory test round {round_num}. " * 100
        await pipeline.ingest(EXP, content, doc_id=f"round-{round_num}")

        current_memory = process.memory_info().rss / 1024 / 1024
        memory_growth = current_memory - initial_memory

        assert memory_growth < 50, f"Excessive memory growth: {memory_growth:.1f}MB"
