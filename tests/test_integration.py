"""Integration tests for CoachBot end-to-end workflows."""

import json

import httpx
import pytest
from conftest import MockEmbeddingService, TestConstants, create_mock_openai_client

from coachbot import (
    BotConfig,
    ContextRetriever,
    IngestionPipeline,
    MessageReconciler,
    Personality,
    ResponseGenerator,
)

EXP = TestConstants.EXPERIENCE_ID
CHANNEL = TestConstants.CHANNEL_ID


def assert_valid_chat_payload(payload: dict, expected_content: str) -> None:
    """Helper validating a message posted back to the platform."""
    assert payload["channel_id"] == CHANNEL, "Reply should go to the source channel"
    assert payload["content"] == expected_content, "Reply should be the model output"


class FakePlatform:
    """Serves channel history and captures posted replies."""

    def __init__(self, messages: list[dict]) -> None:
        self.messages = messages
        self.posted: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path.endswith("/messages"):
            return httpx.Response(200, json={"data": self.messages})
        if request.method == "POST" and request.url.path.endswith("/messages"):
            payload = json.loads(request.content)
            self.posted.append(payload)
            return httpx.Response(201, json={"id": f"reply_{len(self.posted)}"})
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def coachbot_stack(repository, faiss_store_factory, platform_client_factory):
    """Wire real collaborators around stubbed external services."""

    def _build(messages: list[dict], chat_content: str = "Drink water first."):
        embedder = MockEmbeddingService()
        store = faiss_store_factory()
        chat_client = create_mock_openai_client(chat_content=chat_content)
        generator = ResponseGenerator(
            ContextRetriever(embedder, store, match_threshold=-1.0),
            client=chat_client,
            model="test-chat-model",
        )
        fake_platform = FakePlatform(messages)
        platform = platform_client_factory(fake_platform)
        pipeline = IngestionPipeline(embedder, store, repository)
        reconciler = MessageReconciler(repository, generator, platform)
        return pipeline, reconciler, chat_client, fake_platform

    return _build


async def test_poll_answers_from_training_data(repository, coachbot_stack):
    pipeline, reconciler, chat_client, fake_platform = coachbot_stack([
        {"id": "m1", "content": "@CoachBot what do I do first?", "user_id": "u1"},
        {"id": "m2", "content": "unrelated chatter", "user_id": "u2"},
    ])
    await repository.upsert_bot_config(
        BotConfig(
            experience_id=EXP,
            bot_name="CoachBot",
            personality=Personality.MOTIVATIONAL,
            channel_id=CHANNEL,
        )
    )
    await pipeline.save_document(EXP, "Always hydrate before a workout.")

    assert await reconciler.poll(EXP) == 1

    [posted] = fake_platform.posted
    assert_valid_chat_payload(posted, "Drink water first.")

    messages = chat_client.chat.completions.create.call_args.kwargs["messages"]
    assert "Always hydrate before a workout." in messages[0]["content"]
    assert "energetic, motivational" in messages[0]["content"]
    assert messages[1]["content"] == "what do I do first?"

    [record] = await repository.list_chat_messages(EXP)
    assert (record.message_id, record.user_id) == ("m1", "u1")

    assert await reconciler.poll(EXP) == 0
    assert len(fake_platform.posted) == 1


async def test_webhook_event_answers_and_is_idempotent(repository, coachbot_stack):
    pipeline, reconciler, _, fake_platform = coachbot_stack([])
    await repository.upsert_bot_config(BotConfig(experience_id=EXP, channel_id=CHANNEL))
    await pipeline.save_document(EXP, "Sleep at least seven hours.")
    event = {
        "type": "message.created",
        "data": {
            "id": "m7",
            "content": "hey @coachbot how much sleep?",
            "channel": {"id": CHANNEL, "experience_id": EXP},
        },
    }

    assert await reconciler.handle_webhook_event(event) is True
    assert await reconciler.handle_webhook_event(event) is False

    [posted] = fake_platform.posted
    assert_valid_chat_payload(posted, "Drink water first.")


async def test_deleted_document_no_longer_grounds_answers(
    repository, coachbot_stack
):
    pipeline, reconciler, chat_client, _ = coachbot_stack([])
    await repository.upsert_bot_config(BotConfig(experience_id=EXP, channel_id=CHANNEL))
    document, _ = await pipeline.save_document(EXP, "Secret recovery protocol.")
    await pipeline.delete_document(EXP, document.id)

    reply = await reconciler.respond_now(EXP, CHANNEL, "@CoachBot recovery?")

    assert reply.delivery.sent is True
    system_prompt = chat_client.chat.completions.create.call_args.kwargs["messages"][0]
    assert "Secret recovery protocol." not in system_prompt["content"]
