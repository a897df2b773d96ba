"""Test configuration and fixtures for CoachBot tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Mock services and API responses
- Store fixtures backed by temporary SQLite files
- Pipeline, generator and reconciler factories
- Platform client and HTTP transport helpers
"""

import hashlib
from collections.abc import Callable
from unittest.mock import AsyncMock, Mock, create_autospec

import httpx
import numpy as np
import pytest

from coachbot import (
    BotConfig,
    ContextRetriever,
    IngestionPipeline,
    MessageReconciler,
    Personality,
    PlatformClient,
    PlatformMessage,
    Repository,
    ResponseGenerator,
    SQLiteVectorStore,
    TextChunker,
)
from coachbot.errors import ProviderError
from coachbot.models import DeliveryResult
from coachbot.vector_store import FaissVectorStore


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    __test__ = False

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    PROVIDER_DIMENSION = 1536
    TEST_DIMENSION = 8

    # Tenancy
    EXPERIENCE_ID = "exp_alpha"
    OTHER_EXPERIENCE_ID = "exp_beta"
    CHANNEL_ID = "chan_alpha"
    BOT_NAME = "CoachBot"

    # Platform
    PLATFORM_URL = "https://platform.test/api/v1"
    WEBHOOK_SECRET = "test-webhook-secret"
    TOKEN_KEY = "test-token-key"
    TOKEN_ALGORITHM = "HS256"

    # Text Chunking Configuration
    SMALL_CHUNK_SIZE = 100
    SMALL_CHUNK_OVERLAP = 20


class MockEmbeddingService:
    """Mock embedding service for testing without API calls.

    Generates deterministic embeddings based on text content hash, ensuring
    consistent test results across runs. Texts listed in ``fail_on`` raise.
    """

    def __init__(
        self,
        dimension: int = TestConstants.TEST_DIMENSION,
        fail_on: set[str] | None = None,
    ) -> None:
        self.dimension = dimension
        self.fail_on = fail_on or set()
        self.calls: list[str] = []

    def vector_for(self, text: str) -> np.ndarray:
        """Deterministic unit vector for a text."""
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if text in self.fail_on:
            msg = f"Embedding failed for {text[:20]!r}"
            raise ProviderError(msg)
        return self.vector_for(text)


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response.

    Args:
        content: The content for the chat completion response.

    Returns:
        Mock object representing OpenAI chat completion response.
    """
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


def create_mock_openai_client(
    *,
    embedding: list[float] | None = None,
    chat_content: str | None = "Test response",
) -> Mock:
    """Create a stand-in for ``AsyncOpenAI`` with awaitable endpoints.

    Returns:
        Mock whose ``embeddings.create`` and ``chat.completions.create`` are
        AsyncMocks returning canned responses.
    """
    client = Mock()
    client.embeddings.create = AsyncMock(
        return_value=create_mock_openai_response(
            [embedding or [0.1] * TestConstants.PROVIDER_DIMENSION]
        )
    )
    client.chat.completions.create = AsyncMock(
        return_value=create_mock_chat_response(chat_content)
    )
    return client


def platform_message(
    message_id: str, content: str, user_id: str = "user_1"
) -> PlatformMessage:
    return PlatformMessage(
        id=message_id,
        content=content,
        user_id=user_id,
        channel_id=TestConstants.CHANNEL_ID,
    )


@pytest.fixture
def mock_openai_client():
    """AsyncOpenAI stand-in returning a 1536-length embedding and a chat reply."""
    return create_mock_openai_client()


@pytest.fixture
def mock_embedding_service():
    """Deterministic embedder producing small test vectors."""
    return MockEmbeddingService()


@pytest.fixture
def repository(tmp_path) -> Repository:
    """Repository backed by a temporary SQLite file."""
    return Repository(tmp_path / "coachbot.db")


@pytest.fixture
def temp_vector_store(tmp_path) -> SQLiteVectorStore:
    """SQLite vector store sharing the repository's database file."""
    return SQLiteVectorStore(
        tmp_path / "coachbot.db", dimensions=TestConstants.TEST_DIMENSION
    )


@pytest.fixture
def faiss_store_factory(tmp_path) -> Callable[..., FaissVectorStore]:
    """Factory for FAISS stores over the temporary database."""

    def _create_store(raw_top_k_multiplier: int = 2) -> FaissVectorStore:
        return FaissVectorStore(
            db_path=tmp_path / "coachbot.db",
            index_path=tmp_path / "faiss" / "index.faiss",
            raw_top_k_multiplier=raw_top_k_multiplier,
            dimensions=TestConstants.TEST_DIMENSION,
        )

    return _create_store


@pytest.fixture
def text_chunker_small():
    """Text chunker configured for small chunks (100/20)."""
    return TextChunker(
        chunk_size=TestConstants.SMALL_CHUNK_SIZE,
        overlap=TestConstants.SMALL_CHUNK_OVERLAP,
    )


@pytest.fixture
def ingestion_pipeline_factory(repository, temp_vector_store, text_chunker_small):
    """Factory for IngestionPipeline instances over temporary stores."""

    def _create_pipeline(
        embedding_service=None, chunker: TextChunker | None = None
    ) -> IngestionPipeline:
        return IngestionPipeline(
            embedding_service or MockEmbeddingService(),
            temp_vector_store,
            repository,
            chunker=chunker or text_chunker_small,
        )

    return _create_pipeline


@pytest.fixture
def generator_factory(mock_embedding_service, temp_vector_store):
    """Factory for ResponseGenerator instances with a mocked chat client."""

    def _create_generator(
        chat_content: str | None = "Test response", client=None
    ) -> ResponseGenerator:
        retriever = ContextRetriever(
            mock_embedding_service, temp_vector_store, match_threshold=0.0
        )
        return ResponseGenerator(
            retriever,
            client=client or create_mock_openai_client(chat_content=chat_content),
            model="test-chat-model",
        )

    return _create_generator


@pytest.fixture
def mock_generator():
    """Autospecced ResponseGenerator returning a fixed answer."""
    generator = create_autospec(ResponseGenerator, instance=True)
    generator.generate.return_value = "Here is my answer."
    return generator


@pytest.fixture
def mock_platform():
    """Autospecced PlatformClient that delivers every message."""
    platform = create_autospec(PlatformClient, instance=True)
    platform.send_response.return_value = DeliveryResult(sent=True, method="messages")
    platform.list_messages.return_value = []
    return platform


@pytest.fixture
def configured_bot(repository):
    """Factory storing a bot configuration for an experience."""

    async def _configure(
        experience_id: str = TestConstants.EXPERIENCE_ID,
        bot_name: str = TestConstants.BOT_NAME,
        personality: Personality = Personality.FRIENDLY,
        channel_id: str | None = TestConstants.CHANNEL_ID,
    ) -> BotConfig:
        return await repository.upsert_bot_config(
            BotConfig(
                experience_id=experience_id,
                bot_name=bot_name,
                personality=personality,
                channel_id=channel_id,
            )
        )

    return _configure


@pytest.fixture
def reconciler(repository, mock_generator, mock_platform):
    """MessageReconciler wired to mocked generator and platform."""
    return MessageReconciler(repository, mock_generator, mock_platform)


@pytest.fixture
def platform_client_factory():
    """Factory for PlatformClient instances over an httpx MockTransport."""

    def _create_client(
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
        **overrides,
    ) -> PlatformClient:
        settings = {
            "api_key": TestConstants.TEST_API_KEY,
            "base_url": TestConstants.PLATFORM_URL,
            "app_id": "",
            "webhook_secret": TestConstants.WEBHOOK_SECRET,
            "token_key": TestConstants.TOKEN_KEY,
            "token_algorithm": TestConstants.TOKEN_ALGORITHM,
        }
        settings.update(overrides)
        transport = httpx.MockTransport(
            handler or (lambda _request: httpx.Response(200, json={}))
        )
        return PlatformClient(transport=transport, **settings)

    return _create_client
