"""OpenAI embeddings service."""

from collections.abc import Sequence
from typing import Any

import numpy as np
import openai
from openai import AsyncOpenAI

from .config import config
from .errors import (
    ConfigurationError,
    EmptyInputError,
    InvalidCredentialError,
    MalformedEmbeddingError,
    ProviderError,
    RateLimitError,
    ServiceUnavailableError,
)

logger = config.get_logger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR = 500


def build_openai_client(api_key: str | None = None) -> AsyncOpenAI | None:
    """Create an AsyncOpenAI client from an explicit or configured key.

    Returns:
        Configured client, or None when no API key is available.
    """
    api_key = api_key or config.get_openai_api_key()
    if not api_key:
        return None
    default_headers = config.get_api_headers()
    return AsyncOpenAI(
        api_key=api_key,
        base_url=config.OPENAI_BASE_URL,
        default_headers=default_headers or None,
    )


def map_openai_error(
    exc: Exception, *, operation: str = "OpenAI API"
) -> ProviderError:
    """Translate an OpenAI SDK failure into a typed provider error.

    Returns:
        ProviderError subclass chosen from the provider status code.
    """
    if isinstance(exc, openai.APIConnectionError):
        return ServiceUnavailableError(
            f"{operation} is unreachable. Please try again later.", details=str(exc)
        )

    status = getattr(exc, "status_code", None)
    if status == HTTP_UNAUTHORIZED:
        return InvalidCredentialError(
            "OpenAI API key is invalid or expired",
            hint="Check OPENAI_API_KEY",
        )
    if status == HTTP_TOO_MANY_REQUESTS:
        return RateLimitError(
            "OpenAI API rate limit exceeded. Please try again later."
        )
    if status is not None and status >= HTTP_SERVER_ERROR:
        return ServiceUnavailableError(
            "OpenAI API server error. Please try again later.", details=str(exc)
        )
    return ProviderError(f"{operation} error: {exc}", details=str(exc))


def validate_embedding(raw: Any, dimensions: int) -> np.ndarray:
    """Validate a provider embedding and coerce it to the expected length.

    Vectors longer than ``dimensions`` are truncated and shorter ones are
    right-padded with zeros. This is a lossy compatibility shim: padded
    dimensions carry no meaning and bias similarity scores.

    Returns:
        float32 vector of exactly ``dimensions`` finite values.

    Raises:
        MalformedEmbeddingError: If raw is not a non-empty numeric sequence of
            finite values.
    """
    if not isinstance(raw, (Sequence, np.ndarray)) or isinstance(raw, (str, bytes)):
        msg = "Invalid embedding response: not an array"
        raise MalformedEmbeddingError(msg)
    if len(raw) == 0:
        msg = "Embedding array is empty"
        raise MalformedEmbeddingError(msg)

    try:
        vector = np.asarray(raw, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        msg = "Embedding contains non-numeric values"
        raise MalformedEmbeddingError(msg) from exc

    if vector.ndim != 1:
        msg = f"Embedding must be one-dimensional, got shape {vector.shape}"
        raise MalformedEmbeddingError(msg)
    if not np.all(np.isfinite(vector)):
        invalid = int(np.count_nonzero(~np.isfinite(vector)))
        msg = f"Embedding contains {invalid} invalid values (NaN or Infinity)"
        raise MalformedEmbeddingError(msg)

    if vector.shape[0] != dimensions:
        logger.warning(
            "Embedding length is %d, expected %d; %s",
            vector.shape[0],
            dimensions,
            "truncating" if vector.shape[0] > dimensions else "zero-padding",
        )
        if vector.shape[0] > dimensions:
            vector = vector[:dimensions]
        else:
            vector = np.pad(vector, (0, dimensions - vector.shape[0]))

    return vector.astype(np.float32)


def ensure_embedding_shape(vector: np.ndarray, dimensions: int) -> None:
    """Check an already-repaired vector before it is persisted.

    Raises:
        MalformedEmbeddingError: If the length or values are invalid.
    """
    if vector.ndim != 1 or vector.shape[0] != dimensions:
        msg = (
            f"Invalid embedding length: expected {dimensions}, "
            f"got {vector.shape[0] if vector.ndim == 1 else vector.shape}"
        )
        raise MalformedEmbeddingError(msg)
    if not np.all(np.isfinite(vector)):
        msg = "Embedding contains invalid numeric values (NaN or Infinity)"
        raise MalformedEmbeddingError(msg)


class EmbeddingService:
    """Handles OpenAI embeddings generation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the EmbeddingService with OpenAI API key and model.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            dimensions: Expected vector length. If None, uses
                config.EMBEDDING_DIMENSIONS.
            client: Pre-built client, mostly for tests.
        """
        self.client = client or build_openai_client(api_key)
        self.model = model or config.EMBEDDING_MODEL
        self.dimensions = dimensions or config.EMBEDDING_DIMENSIONS

    async def embed(self, text: str) -> np.ndarray:
        """Get embedding for a single text.

        Args:
            text: The input text to generate an embedding for.

        Returns:
            np.ndarray: float32 vector of exactly ``self.dimensions`` values.

        Raises:
            EmptyInputError: If text is blank.
            ConfigurationError: If no OpenAI API key is configured.
            ProviderError: If the embeddings API call fails.
        """
        if not text or not text.strip():
            msg = "Text cannot be empty for embedding generation"
            raise EmptyInputError(msg)

        if self.client is None:
            msg = "OPENAI_API_KEY environment variable is not set"
            raise ConfigurationError(msg, missing=["OPENAI_API_KEY"])

        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text.replace("\n", " "),
            )
        except openai.OpenAIError as exc:
            logger.exception("Error generating embedding")
            raise map_openai_error(exc, operation="OpenAI embeddings") from exc

        data = getattr(response, "data", None) or []
        raw = data[0].embedding if data else None
        return validate_embedding(raw, self.dimensions)
