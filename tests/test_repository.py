"""Tests for the relational Repository."""

import sqlite3
from unittest.mock import patch

import pytest
from conftest import TestConstants

from coachbot import BotConfig, ChatMessageRecord, Personality
from coachbot.errors import PersistenceError
from coachbot.models import FileKind

EXP = TestConstants.EXPERIENCE_ID
OTHER = TestConstants.OTHER_EXPERIENCE_ID


def chat_record(message_id: str, experience_id: str = EXP) -> ChatMessageRecord:
    return ChatMessageRecord(
        experience_id=experience_id,
        channel_id=TestConstants.CHANNEL_ID,
        message_id=message_id,
        user_id="user_1",
        content=f"@CoachBot question {message_id}",
        response=f"answer {message_id}",
    )


async def test_bot_config_absent_by_default(repository):
    assert await repository.get_bot_config(EXP) is None


async def test_upsert_bot_config_creates_and_updates(repository):
    created = await repository.upsert_bot_config(
        BotConfig(experience_id=EXP, bot_name="Sage")
    )
    updated = await repository.upsert_bot_config(
        BotConfig(
            experience_id=EXP,
            bot_name="Sage",
            personality=Personality.MOTIVATIONAL,
            channel_id="chan_new",
        )
    )

    assert created.personality is Personality.FRIENDLY
    assert updated.personality is Personality.MOTIVATIONAL
    assert updated.channel_id == "chan_new"
    assert updated.created_at == created.created_at
    assert updated.updated_at >= created.updated_at
    assert await repository.get_bot_config(EXP) == updated


async def test_configs_are_isolated_per_experience(repository, configured_bot):
    await configured_bot(experience_id=EXP, bot_name="Alpha")
    await configured_bot(experience_id=OTHER, bot_name="Beta")

    assert (await repository.get_bot_config(EXP)).bot_name == "Alpha"
    assert (await repository.get_bot_config(OTHER)).bot_name == "Beta"


async def test_delete_bot_config(repository, configured_bot):
    await configured_bot()

    assert await repository.delete_bot_config(EXP) is True
    assert await repository.delete_bot_config(EXP) is False
    assert await repository.get_bot_config(EXP) is None


async def test_create_document_generates_id(repository):
    document = await repository.create_document(
        EXP, "Some knowledge", file_name="guide.pdf", file_type=FileKind.PDF
    )

    assert document.id
    assert document.created_at == document.updated_at
    assert await repository.get_document(EXP, document.id) == document


async def test_get_document_is_scoped_to_experience(repository):
    document = await repository.create_document(EXP, "Private notes")

    assert await repository.get_document(OTHER, document.id) is None


async def test_list_documents_newest_first(repository):
    first = await repository.create_document(EXP, "first")
    second = await repository.create_document(EXP, "second")
    await repository.create_document(OTHER, "elsewhere")

    documents = await repository.list_documents(EXP)

    assert [doc.id for doc in documents] == [second.id, first.id]


async def test_update_document_replaces_content(repository):
    document = await repository.create_document(EXP, "old text")

    updated = await repository.update_document(
        EXP, document.id, "new text", file_name="notes.txt"
    )

    assert updated.id == document.id
    assert updated.content == "new text"
    assert updated.file_name == "notes.txt"
    assert updated.created_at == document.created_at


async def test_update_missing_document_returns_none(repository):
    assert await repository.update_document(EXP, "missing", "text") is None


async def test_delete_document(repository):
    document = await repository.create_document(EXP, "text")

    assert await repository.delete_document(OTHER, document.id) is False
    assert await repository.delete_document(EXP, document.id) is True
    assert await repository.list_documents(EXP) == []


async def test_record_chat_message_deduplicates(repository):
    assert await repository.record_chat_message(chat_record("msg_1")) is True
    assert await repository.record_chat_message(chat_record("msg_1")) is False

    assert len(await repository.list_chat_messages(EXP)) == 1


async def test_same_message_id_allowed_in_other_experience(repository):
    await repository.record_chat_message(chat_record("msg_1"))

    assert await repository.record_chat_message(chat_record("msg_1", OTHER)) is True


async def test_blank_message_ids_are_not_deduplicated(repository):
    assert await repository.record_chat_message(chat_record("")) is True
    assert await repository.record_chat_message(chat_record("")) is True
    assert await repository.is_message_processed(EXP, "") is False


async def test_last_processed_message_id(repository):
    assert await repository.last_processed_message_id(EXP) is None

    await repository.record_chat_message(chat_record("msg_1"))
    await repository.record_chat_message(chat_record("msg_2"))

    assert await repository.last_processed_message_id(EXP) == "msg_2"
    assert await repository.is_message_processed(EXP, "msg_1") is True
    assert await repository.is_message_processed(OTHER, "msg_1") is False


async def test_list_chat_messages_limit(repository):
    for index in range(3):
        await repository.record_chat_message(chat_record(f"msg_{index}"))

    messages = await repository.list_chat_messages(EXP, limit=2)

    assert [message.message_id for message in messages] == ["msg_2", "msg_1"]


async def test_database_errors_become_persistence_errors(repository):
    with (
        patch.object(
            repository,
            "_get_bot_config",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ),
        pytest.raises(PersistenceError, match="bot config lookup"),
    ):
        await repository.get_bot_config(EXP)


def test_personality_check_constraint(repository):
    with (
        sqlite3.connect(repository.db_path) as conn,
        pytest.raises(sqlite3.IntegrityError),
    ):
        conn.execute(
            "INSERT INTO bot_config (experience_id, personality, created_at, "
            "updated_at) VALUES ('exp', 'sarcastic', 'now', 'now')"
        )
