"""Data models for the CoachBot service."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import numpy as np

from .errors import ValidationError


class Personality(StrEnum):
    """System-prompt framing that controls response tone."""

    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"
    MOTIVATIONAL = "motivational"

    @classmethod
    def parse(cls, value: "str | Personality | None") -> "Personality":
        """Coerce user input into a Personality.

        Returns:
            The matching Personality, FRIENDLY when value is empty.

        Raises:
            ValidationError: If value names no known personality.
        """
        if not value:
            return cls.FRIENDLY
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            msg = "Invalid personality type"
            raise ValidationError(
                msg, details=f"Expected one of: {', '.join(p.value for p in cls)}"
            ) from exc


class FileKind(StrEnum):
    """Kind of uploaded training source."""

    TEXT = "text"
    PDF = "pdf"


@dataclass
class BotConfig:
    """Per-experience bot settings."""

    experience_id: str
    bot_name: str = "CoachBot"
    bot_avatar_url: str | None = None
    personality: Personality = Personality.FRIENDLY
    channel_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the config to a JSON-ready dictionary.

        Returns:
            Dictionary with the personality as its string value.
        """
        return {
            "experience_id": self.experience_id,
            "bot_name": self.bot_name,
            "bot_avatar_url": self.bot_avatar_url,
            "personality": self.personality.value,
            "channel_id": self.channel_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TrainingDocument:
    """An uploaded or pasted knowledge source."""

    id: str
    experience_id: str
    content: str
    file_name: str | None = None
    file_type: FileKind = FileKind.TEXT
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the document to a JSON-ready dictionary.

        Returns:
            Dictionary with the file type as its string value.
        """
        return {
            "id": self.id,
            "experience_id": self.experience_id,
            "content": self.content,
            "file_name": self.file_name,
            "file_type": self.file_type.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class EmbeddingRecord:
    """One embedded chunk of a training document."""

    experience_id: str
    content: str
    embedding: np.ndarray
    metadata: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: str | None = None


@dataclass
class ChatMessageRecord:
    """Append-only log entry for an answered mention."""

    experience_id: str
    channel_id: str
    message_id: str
    user_id: str
    content: str
    response: str | None
    created_at: str | None = None


@dataclass
class PlatformMessage:
    """Inbound chat message normalised from a platform payload."""

    id: str
    content: str
    user_id: str = "unknown"
    channel_id: str | None = None
    experience_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PlatformMessage":
        """Build a message from a webhook or list-messages payload.

        Returns:
            The normalised message. Missing fields fall back to defaults.
        """
        user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
        channel = (
            payload.get("channel") if isinstance(payload.get("channel"), dict) else {}
        )
        content = payload.get("content") or payload.get("text") or ""
        if isinstance(payload.get("message"), str) and not content:
            content = payload["message"]
        return cls(
            id=str(payload.get("id") or ""),
            content=str(content),
            user_id=str(payload.get("user_id") or user.get("id") or "unknown"),
            channel_id=payload.get("channel_id") or channel.get("id"),
            experience_id=payload.get("experience_id"),
            raw=payload,
        )


@dataclass
class DeliveryResult:
    """Outcome of sending a response to the platform."""

    sent: bool
    method: str = "none"
    error: str | None = None
