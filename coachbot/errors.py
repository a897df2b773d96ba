"""Typed failures raised by the CoachBot pipeline and its collaborators.

Pipeline components raise these and never format HTTP responses; the API
layer maps ``status_code``, ``details`` and ``hint`` onto the JSON error body.
"""

from __future__ import annotations


class CoachBotError(Exception):
    """Base class for all CoachBot failures."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        details: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.hint = hint


class AuthenticationError(CoachBotError):
    """User token missing or invalid."""

    status_code = 401


class AuthorizationError(CoachBotError):
    """Authenticated user lacks the required access level."""

    status_code = 403


class ValidationError(CoachBotError):
    """Missing required field or invalid value."""

    status_code = 400


class EmptyInputError(ValidationError):
    """Text passed to the embedder is blank."""


class EmptyContentError(ValidationError):
    """Document content is blank after trimming."""


class NotFoundError(CoachBotError):
    """Requested entity (bot configuration, document) does not exist."""

    status_code = 404


class ConfigurationError(CoachBotError):
    """Required credential or environment setting is absent."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        missing: list[str] | None = None,
        details: str | None = None,
    ) -> None:
        self.missing = list(missing or [])
        hint = None
        if self.missing:
            hint = f"Set environment variable(s): {', '.join(self.missing)}"
        super().__init__(message, details=details, hint=hint)


class PersistenceError(CoachBotError):
    """Store read or write failed."""

    status_code = 500


class ProviderError(CoachBotError):
    """External service (embedding, generation, platform) failed."""

    status_code = 502


class InvalidCredentialError(ProviderError):
    """Provider rejected the configured credential (HTTP 401)."""


class RateLimitError(ProviderError):
    """Provider rate limit exceeded (HTTP 429)."""

    status_code = 429


class ServiceUnavailableError(ProviderError):
    """Provider returned a 5xx or could not be reached."""

    status_code = 503


class MalformedEmbeddingError(ProviderError):
    """Embedding response is not a non-empty vector of finite numbers."""


class GenerationError(ProviderError):
    """Generative model call failed."""


class NoChunksError(CoachBotError):
    """Chunking produced nothing for non-empty content."""


class IngestionError(CoachBotError):
    """A chunk failed to embed or persist during ingestion."""

    def __init__(self, chunk_index: int, total: int, cause: BaseException) -> None:
        self.chunk_index = chunk_index
        self.total = total
        self.cause = cause
        msg = (
            f"Failed to process chunk {chunk_index} "
            f"({chunk_index + 1}/{total}): {cause}"
        )
        super().__init__(msg, details=type(cause).__name__)
