"""Configuration management for the CoachBot service."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()
    HTTPX_LOG_LEVEL: str = os.getenv("HTTPX_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # RAG Configuration
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "1000"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "200"))
    MAX_CHUNKS: int = int(os.getenv("MAX_CHUNKS", "10000"))
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_DIMENSIONS: int = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
    RETRIEVAL_LIMIT: int = int(os.getenv("RETRIEVAL_LIMIT", "5"))
    RETRIEVAL_MATCH_THRESHOLD: float = float(
        os.getenv("RETRIEVAL_MATCH_THRESHOLD", "0.7")
    )

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4-turbo-preview")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "500"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))

    # Storage Configuration
    VECTOR_BACKEND: str = os.getenv("VECTOR_BACKEND", "sqlite").lower()
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "data/coachbot.db"))
    FAISS_INDEX_PATH: Path = Path(
        os.getenv("FAISS_INDEX_PATH", "data/faiss/index.faiss")
    )
    VECTOR_RAW_TOP_K_MULTIPLIER: int = int(
        os.getenv("VECTOR_RAW_TOP_K_MULTIPLIER", "4")
    )
    AVATAR_DIR: Path = Path(os.getenv("AVATAR_DIR", "data/avatars"))
    AVATAR_BASE_URL: str = os.getenv("AVATAR_BASE_URL", "/avatars")
    MAX_AVATAR_BYTES: int = int(os.getenv("MAX_AVATAR_BYTES", str(5 * 1024 * 1024)))

    # Community Platform Configuration
    PLATFORM_API_URL: str = os.getenv(
        "PLATFORM_API_URL", "https://api.whop.com/api/v1"
    ).rstrip("/")
    PLATFORM_APP_ID: str = os.getenv("PLATFORM_APP_ID", "")
    PLATFORM_TOKEN_ALGORITHM: str = os.getenv("PLATFORM_TOKEN_ALGORITHM", "ES256")
    PLATFORM_TIMEOUT: float = float(os.getenv("PLATFORM_TIMEOUT", "30"))
    POLL_MESSAGE_LIMIT: int = int(os.getenv("POLL_MESSAGE_LIMIT", "20"))
    DEFAULT_BOT_NAME: str = os.getenv("DEFAULT_BOT_NAME", "CoachBot")

    @classmethod
    def get_platform_api_key(cls) -> str:
        """Get the community platform API key.

        Returns:
            Platform API key or empty string if not set.
        """
        return os.getenv("PLATFORM_API_KEY", "")

    @classmethod
    def get_webhook_secret(cls) -> str:
        """Get the shared secret used to sign inbound webhooks.

        Returns:
            Webhook secret or empty string if not set.
        """
        return os.getenv("PLATFORM_WEBHOOK_SECRET", "")

    @classmethod
    def get_token_key(cls) -> str:
        """Get the key used to verify platform user tokens.

        Returns:
            Verification key (PEM public key or shared secret) or empty string.
        """
        return os.getenv("PLATFORM_TOKEN_KEY", "")

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "CoachBot/1.0")

    @classmethod
    def missing_settings(cls) -> list[str]:
        """List required environment variables that are not set.

        Returns:
            Names of missing variables, never their values.
        """
        required = {
            "OPENAI_API_KEY": cls.get_openai_api_key(),
            "PLATFORM_API_KEY": cls.get_platform_api_key(),
        }
        return [name for name, value in required.items() if not value]

    @classmethod
    def missing_optional_settings(cls) -> list[str]:
        """List unset variables that only webhook and admin routes need.

        Without them webhook bodies are parsed unverified and admin routes
        answer 500 with a configuration hint.

        Returns:
            Names of missing variables, never their values.
        """
        optional = {
            "PLATFORM_WEBHOOK_SECRET": cls.get_webhook_secret(),
            "PLATFORM_TOKEN_KEY": cls.get_token_key(),
        }
        return [name for name, value in optional.items() if not value]

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ConfigurationError: If any required variable is not set.
        """
        missing = cls.missing_settings()
        if missing:
            msg = (
                f"{', '.join(missing)} required. "
                "Please set it in .env file or environment."
            )
            raise ConfigurationError(msg, missing=missing)

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment.

        Returns:
            True if environment is development.
        """
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment.

        Returns:
            True if environment is production.
        """
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        # Configure third-party library log levels via environment variables
        logging.getLogger("openai").setLevel(
            getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        )
        logging.getLogger("httpx").setLevel(
            getattr(logging, cls.HTTPX_LOG_LEVEL, logging.WARNING)
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        return headers


config = Config()
