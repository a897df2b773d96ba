"""Relational persistence for bot configuration, documents and chat history."""

from __future__ import annotations

import sqlite3
import uuid
from pathlib import Path

from .config import config
from .db import connect, prepare_database, run_in_thread, utc_now
from .models import (
    BotConfig,
    ChatMessageRecord,
    FileKind,
    Personality,
    TrainingDocument,
)

logger = config.get_logger(__name__)


class Repository:
    """SQLite-backed store for BotConfig, TrainingDocument and ChatMessageRecord."""

    def __init__(self, db_path: Path = Path("data/coachbot.db")) -> None:
        """Initialize the repository and ensure its tables exist.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = prepare_database(db_path)
        self._create_tables()

    def _create_tables(self) -> None:
        """Create tables and indexes if they don't exist."""
        with connect(self.db_path) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS bot_config (
                    experience_id TEXT PRIMARY KEY,
                    bot_name TEXT NOT NULL DEFAULT 'CoachBot',
                    bot_avatar_url TEXT,
                    personality TEXT NOT NULL DEFAULT 'friendly' CHECK(
                        personality IN ('friendly','professional','motivational')
                    ),
                    channel_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS training_docs (
                    id TEXT PRIMARY KEY,
                    experience_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    file_name TEXT,
                    file_type TEXT NOT NULL DEFAULT 'text' CHECK(
                        file_type IN ('text','pdf')
                    ),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS chat_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    experience_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    response TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute(
                (
                    "CREATE INDEX IF NOT EXISTS idx_training_docs_experience "
                    "ON training_docs(experience_id, created_at DESC)"
                ),
            )
            cursor.execute(
                (
                    "CREATE INDEX IF NOT EXISTS idx_chat_messages_experience "
                    "ON chat_messages(experience_id, created_at DESC)"
                ),
            )
            # Dedup key for answered mentions; blank ids cannot be deduplicated.
            cursor.execute(
                (
                    "CREATE UNIQUE INDEX IF NOT EXISTS idx_chat_messages_source "
                    "ON chat_messages(experience_id, message_id) "
                    "WHERE message_id != ''"
                ),
            )
            conn.commit()

    # Bot configuration

    @staticmethod
    def _row_to_config(row: sqlite3.Row) -> BotConfig:
        return BotConfig(
            experience_id=row["experience_id"],
            bot_name=row["bot_name"],
            bot_avatar_url=row["bot_avatar_url"],
            personality=Personality(row["personality"]),
            channel_id=row["channel_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _get_bot_config(self, experience_id: str) -> BotConfig | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM bot_config WHERE experience_id = ?",
                (experience_id,),
            ).fetchone()
        return self._row_to_config(row) if row else None

    async def get_bot_config(self, experience_id: str) -> BotConfig | None:
        """Fetch the bot configuration for an experience.

        Returns:
            The stored BotConfig, or None when the bot is not configured.
        """
        return await run_in_thread(
            "bot config lookup", self._get_bot_config, experience_id
        )

    def _upsert_bot_config(self, bot_config: BotConfig) -> BotConfig:
        now = utc_now()
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO bot_config (
                    experience_id,
                    bot_name,
                    bot_avatar_url,
                    personality,
                    channel_id,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(experience_id) DO UPDATE SET
                    bot_name = excluded.bot_name,
                    bot_avatar_url = excluded.bot_avatar_url,
                    personality = excluded.personality,
                    channel_id = excluded.channel_id,
                    updated_at = excluded.updated_at
                """,
                (
                    bot_config.experience_id,
                    bot_config.bot_name,
                    bot_config.bot_avatar_url,
                    bot_config.personality.value,
                    bot_config.channel_id,
                    now,
                    now,
                ),
            )
            conn.commit()
        stored = self._get_bot_config(bot_config.experience_id)
        if stored is None:
            msg = f"Failed to upsert bot config for '{bot_config.experience_id}'"
            raise sqlite3.OperationalError(msg)
        return stored

    async def upsert_bot_config(self, bot_config: BotConfig) -> BotConfig:
        """Create or replace the configuration keyed on experience id.

        Returns:
            The stored configuration with timestamps.
        """
        stored = await run_in_thread(
            "bot config upsert", self._upsert_bot_config, bot_config
        )
        logger.info("Saved bot config for experience %s", stored.experience_id)
        return stored

    def _delete_bot_config(self, experience_id: str) -> bool:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM bot_config WHERE experience_id = ?", (experience_id,)
            )
            conn.commit()
            return cursor.rowcount > 0

    async def delete_bot_config(self, experience_id: str) -> bool:
        """Remove the configuration for an experience.

        Returns:
            True if a configuration was deleted.
        """
        return await run_in_thread(
            "bot config delete", self._delete_bot_config, experience_id
        )

    # Training documents

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> TrainingDocument:
        return TrainingDocument(
            id=row["id"],
            experience_id=row["experience_id"],
            content=row["content"],
            file_name=row["file_name"],
            file_type=FileKind(row["file_type"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _get_document(self, experience_id: str, doc_id: str) -> TrainingDocument | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM training_docs WHERE id = ? AND experience_id = ?",
                (doc_id, experience_id),
            ).fetchone()
        return self._row_to_document(row) if row else None

    async def get_document(
        self, experience_id: str, doc_id: str
    ) -> TrainingDocument | None:
        """Fetch one training document scoped to its experience.

        Returns:
            The document, or None if it does not exist.
        """
        return await run_in_thread(
            "document lookup", self._get_document, experience_id, doc_id
        )

    def _create_document(
        self,
        experience_id: str,
        content: str,
        file_name: str | None,
        file_type: FileKind,
    ) -> TrainingDocument:
        now = utc_now()
        document = TrainingDocument(
            id=str(uuid.uuid4()),
            experience_id=experience_id,
            content=content,
            file_name=file_name,
            file_type=file_type,
            created_at=now,
            updated_at=now,
        )
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO training_docs (
                    id, experience_id, content, file_name, file_type,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    document.experience_id,
                    document.content,
                    document.file_name,
                    document.file_type.value,
                    document.created_at,
                    document.updated_at,
                ),
            )
            conn.commit()
        return document

    async def create_document(
        self,
        experience_id: str,
        content: str,
        file_name: str | None = None,
        file_type: FileKind = FileKind.TEXT,
    ) -> TrainingDocument:
        """Insert a new training document with a generated id.

        Returns:
            The created document.
        """
        return await run_in_thread(
            "document create",
            self._create_document,
            experience_id,
            content,
            file_name,
            file_type,
        )

    def _update_document(
        self,
        experience_id: str,
        doc_id: str,
        content: str,
        file_name: str | None,
        file_type: FileKind,
    ) -> TrainingDocument | None:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE training_docs
                SET content = ?, file_name = ?, file_type = ?, updated_at = ?
                WHERE id = ? AND experience_id = ?
                """,
                (content, file_name, file_type.value, utc_now(), doc_id, experience_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        return self._get_document(experience_id, doc_id)

    async def update_document(  # noqa: PLR0913, PLR0917
        self,
        experience_id: str,
        doc_id: str,
        content: str,
        file_name: str | None = None,
        file_type: FileKind = FileKind.TEXT,
    ) -> TrainingDocument | None:
        """Replace a document's content in place.

        Returns:
            The updated document, or None if no document has that id.
        """
        return await run_in_thread(
            "document update",
            self._update_document,
            experience_id,
            doc_id,
            content,
            file_name,
            file_type,
        )

    def _list_documents(self, experience_id: str) -> list[TrainingDocument]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM training_docs
                WHERE experience_id = ?
                ORDER BY created_at DESC
                """,
                (experience_id,),
            ).fetchall()
        return [self._row_to_document(row) for row in rows]

    async def list_documents(self, experience_id: str) -> list[TrainingDocument]:
        """List an experience's training documents, newest first.

        Returns:
            Possibly empty list of documents.
        """
        return await run_in_thread(
            "document list", self._list_documents, experience_id
        )

    def _delete_document(self, experience_id: str, doc_id: str) -> bool:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM training_docs WHERE id = ? AND experience_id = ?",
                (doc_id, experience_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    async def delete_document(self, experience_id: str, doc_id: str) -> bool:
        """Delete a training document row (embeddings are purged separately).

        Returns:
            True if a document was deleted.
        """
        return await run_in_thread(
            "document delete", self._delete_document, experience_id, doc_id
        )

    # Chat history

    def _record_chat_message(self, record: ChatMessageRecord) -> bool:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO chat_messages (
                    experience_id, channel_id, message_id, user_id,
                    content, response, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.experience_id,
                    record.channel_id,
                    record.message_id,
                    record.user_id,
                    record.content,
                    record.response,
                    record.created_at or utc_now(),
                ),
            )
            conn.commit()
            return cursor.rowcount > 0

    async def record_chat_message(self, record: ChatMessageRecord) -> bool:
        """Append an answered mention to the chat log.

        Returns:
            False when the source message id was already recorded.
        """
        return await run_in_thread(
            "chat message insert", self._record_chat_message, record
        )

    def _last_processed_message_id(self, experience_id: str) -> str | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT message_id FROM chat_messages
                WHERE experience_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (experience_id,),
            ).fetchone()
        return row["message_id"] if row else None

    async def last_processed_message_id(self, experience_id: str) -> str | None:
        """Source id of the most recently answered message.

        Returns:
            Message id, or None if nothing has been answered yet.
        """
        return await run_in_thread(
            "last message lookup", self._last_processed_message_id, experience_id
        )

    def _is_message_processed(self, experience_id: str, message_id: str) -> bool:
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT 1 FROM chat_messages
                WHERE experience_id = ? AND message_id = ?
                LIMIT 1
                """,
                (experience_id, message_id),
            ).fetchone()
        return row is not None

    async def is_message_processed(self, experience_id: str, message_id: str) -> bool:
        """Check whether a source message has already been answered.

        Returns:
            True if a chat record exists for the message id.
        """
        if not message_id:
            return False
        return await run_in_thread(
            "processed message lookup",
            self._is_message_processed,
            experience_id,
            message_id,
        )

    def _list_chat_messages(
        self, experience_id: str, limit: int
    ) -> list[ChatMessageRecord]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM chat_messages
                WHERE experience_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (experience_id, limit),
            ).fetchall()
        return [
            ChatMessageRecord(
                experience_id=row["experience_id"],
                channel_id=row["channel_id"],
                message_id=row["message_id"],
                user_id=row["user_id"],
                content=row["content"],
                response=row["response"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def list_chat_messages(
        self, experience_id: str, limit: int = 50
    ) -> list[ChatMessageRecord]:
        """Most recent answered mentions, newest first.

        Returns:
            Up to ``limit`` chat records.
        """
        return await run_in_thread(
            "chat message list", self._list_chat_messages, experience_id, limit
        )
