"""Message intake: turns webhook pushes and polled history into bot replies.

Both paths converge on the same steps: resolve which experience a message
belongs to, load its bot configuration, skip messages already answered,
require a mention of the bot, strip the mention, generate a reply, post it
and record the exchange.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .config import config
from .errors import CoachBotError, NotFoundError, ValidationError
from .models import BotConfig, ChatMessageRecord, DeliveryResult, PlatformMessage

if TYPE_CHECKING:
    from .generation import ResponseGenerator
    from .platform import PlatformClient
    from .repository import Repository

logger = config.get_logger(__name__)

MESSAGE_FIELDS = ("content", "message", "text")


def _nested(payload: Mapping[str, Any], *keys: str) -> Any:
    value: Any = payload
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def resolve_identity(payload: Mapping[str, Any]) -> tuple[str, str] | None:
    """Work out which experience and channel a message belongs to.

    Chat channels and experiences share ids on the platform, so a channel id
    is an acceptable last resort for the experience id.

    Returns:
        Tuple of (experience_id, channel_id), or None if neither is present.
    """
    experience_id = (
        payload.get("experience_id")
        or _nested(payload, "experience", "id")
        or _nested(payload, "channel", "experience_id")
        or _nested(payload, "channel", "experience", "id")
        or payload.get("channel_id")
        or _nested(payload, "channel", "id")
    )
    if not experience_id:
        return None
    channel_id = (
        payload.get("channel_id") or _nested(payload, "channel", "id") or experience_id
    )
    return str(experience_id), str(channel_id)


def filter_new_messages(
    messages: Iterable[PlatformMessage], last_processed_id: str | None
) -> list[PlatformMessage]:
    """Drop the message that was answered last.

    Returns:
        Every message except the one whose id equals ``last_processed_id``.
    """
    return [message for message in messages if message.id != last_processed_id]


def mentions_bot(content: str, bot_name: str) -> bool:
    """Case-insensitive substring check for the bot's name.

    Returns:
        True if the content mentions the bot.
    """
    return bool(bot_name) and bot_name.lower() in (content or "").lower()


def extract_question(content: str, bot_name: str) -> str:
    """Remove every ``@bot_name`` or ``bot_name`` occurrence and trim.

    Returns:
        The question text, possibly empty.
    """
    pattern = re.compile(rf"@?{re.escape(bot_name)}", re.IGNORECASE)
    return pattern.sub("", content or "").strip()


def split_event(event: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """Separate a webhook event into its type and data payload.

    Returns:
        Tuple of (event type, data dict).
    """
    event_type = str(event.get("type") or event.get("event") or "")
    data = event.get("data") or event.get("payload") or event
    return event_type, dict(data) if isinstance(data, Mapping) else {}


def parse_unverified_event(body: bytes) -> dict[str, Any]:
    """Best-effort decoding of a webhook whose signature could not be verified.

    Bodies with ``type``, ``event`` or ``data`` keys are treated as envelopes;
    anything else is taken to be a bare message payload.

    Returns:
        Event dict with ``type`` and ``data`` keys.

    Raises:
        ValidationError: If the body is not a JSON object.
    """
    try:
        payload = json.loads(body)
    except ValueError as exc:
        msg = "Invalid webhook"
        raise ValidationError(msg, details="Could not verify or parse webhook") from exc
    if not isinstance(payload, dict):
        msg = "Invalid webhook"
        raise ValidationError(msg, details="Webhook body is not a JSON object")

    if payload.get("type") or payload.get("event") or payload.get("data"):
        event = payload.get("event")
        event_type = (
            payload.get("type")
            or (event.get("type") if isinstance(event, dict) else event)
            or "unknown"
        )
        data = (
            payload.get("data")
            or payload.get("payload")
            or (event.get("data") if isinstance(event, dict) else None)
            or payload
        )
        return {"type": event_type, "data": data}
    return {"type": "message", "data": payload}


def is_message_event(event_type: str, data: Mapping[str, Any]) -> bool:
    """Decide whether a webhook event carries a chat message.

    Returns:
        True for message-typed events or payloads with message text.
    """
    if "message" in event_type.lower():
        return True
    return any(data.get(field) for field in MESSAGE_FIELDS)


@dataclass
class DirectReply:
    """Outcome of answering a message on demand."""

    question: str
    response: str
    bot_name: str
    delivery: DeliveryResult
    bot_config: BotConfig


class MessageReconciler:
    """Answers bot mentions arriving by webhook or by polling."""

    def __init__(
        self,
        repository: Repository,
        generator: ResponseGenerator,
        platform: PlatformClient,
        message_limit: int | None = None,
    ) -> None:
        """Initialize MessageReconciler.

        Args:
            repository: Store for bot configs and answered messages.
            generator: Produces replies.
            platform: Fetches and posts chat messages.
            message_limit: Messages fetched per poll. If None, uses
                config.POLL_MESSAGE_LIMIT.
        """
        self.repository = repository
        self.generator = generator
        self.platform = platform
        self.message_limit = message_limit or config.POLL_MESSAGE_LIMIT

    async def _answer(
        self, bot_config: BotConfig, message: PlatformMessage, channel_id: str
    ) -> bool:
        """Generate, deliver and record a reply to one mention.

        Returns:
            True if a reply was generated.
        """
        question = extract_question(message.content, bot_config.bot_name)
        if not question:
            logger.info("Message %s mentions the bot but has no question", message.id)
            return False

        response = await self.generator.generate(
            question,
            bot_config.experience_id,
            bot_config.personality,
            bot_config.bot_name,
        )
        delivery = await self.platform.send_response(channel_id, response)
        if not delivery.sent:
            logger.warning(
                "Reply to message %s was not delivered: %s", message.id, delivery.error
            )

        record = ChatMessageRecord(
            experience_id=bot_config.experience_id,
            channel_id=channel_id,
            message_id=message.id,
            user_id=message.user_id,
            content=question,
            response=response,
        )
        try:
            await self.repository.record_chat_message(record)
        except CoachBotError:
            logger.exception("Failed to store reply to message %s", message.id)
        return True

    async def _already_answered(self, experience_id: str, message_id: str) -> bool:
        if await self.repository.is_message_processed(experience_id, message_id):
            logger.info("Message %s was already answered; skipping", message_id)
            return True
        return False

    async def handle_chat_message(self, data: Mapping[str, Any]) -> bool:
        """Process one pushed chat message.

        Returns:
            True if a reply was generated.
        """
        identity = resolve_identity(data)
        if identity is None:
            logger.warning("Could not determine experience id from message payload")
            return False
        experience_id, channel_id = identity

        bot_config = await self.repository.get_bot_config(experience_id)
        if bot_config is None:
            logger.info("No bot configured for experience %s", experience_id)
            return False

        message = PlatformMessage.from_payload(dict(data))
        if not mentions_bot(message.content, bot_config.bot_name):
            return False
        if message.id and await self._already_answered(experience_id, message.id):
            return False

        logger.info("Bot mentioned in experience %s", experience_id)
        return await self._answer(bot_config, message, channel_id)

    async def handle_webhook_event(self, event: Mapping[str, Any]) -> bool:
        """Process a verified or best-effort parsed webhook event.

        Failures are logged; this runs detached from the HTTP request.

        Returns:
            True if a reply was generated.
        """
        event_type, data = split_event(event)
        if not is_message_event(event_type, data):
            logger.info("Ignoring webhook event of type %r", event_type or "unknown")
            return False
        try:
            return await self.handle_chat_message(data)
        except CoachBotError:
            logger.exception("Failed to handle webhook message event")
            return False

    async def poll(self, experience_id: str) -> int:
        """Fetch recent channel history and answer unanswered mentions.

        Messages are handled one at a time in the order received; a failing
        message is logged and the rest of the batch continues.

        Returns:
            Number of mentions answered.

        Raises:
            ValidationError: If experience_id is empty.
            NotFoundError: If the experience has no bot configuration.
        """
        if not experience_id:
            msg = "experience_id is required"
            raise ValidationError(msg)

        bot_config = await self.repository.get_bot_config(experience_id)
        if bot_config is None:
            msg = "Bot not configured for this experience"
            raise NotFoundError(msg)
        channel_id = bot_config.channel_id or experience_id

        messages = await self.platform.list_messages(channel_id, self.message_limit)
        last_processed_id = await self.repository.last_processed_message_id(
            experience_id
        )
        candidates = filter_new_messages(messages, last_processed_id)

        processed = 0
        for message in candidates:
            if not mentions_bot(message.content, bot_config.bot_name):
                continue
            try:
                if message.id and await self._already_answered(
                    experience_id, message.id
                ):
                    continue
                if await self._answer(bot_config, message, channel_id):
                    processed += 1
            except CoachBotError:
                logger.exception("Failed to process message %s", message.id)

        logger.info(
            "Poll for experience %s answered %d of %d messages",
            experience_id,
            processed,
            len(candidates),
        )
        return processed

    async def respond_now(
        self,
        experience_id: str,
        channel_id: str,
        message: str,
        bot_name: str | None = None,
    ) -> DirectReply:
        """Answer a message immediately without recording it.

        Returns:
            DirectReply with the question, response and delivery outcome.

        Raises:
            NotFoundError: If the experience has no bot configuration.
            ValidationError: If nothing remains after removing the mention.
        """
        bot_config = await self.repository.get_bot_config(experience_id)
        if bot_config is None:
            msg = "Bot not configured for this experience"
            raise NotFoundError(
                msg, hint="Configure the bot for this experience first"
            )

        name = bot_name or bot_config.bot_name or config.DEFAULT_BOT_NAME
        question = extract_question(message, name)
        if not question:
            msg = "Question is empty after removing bot mention"
            raise ValidationError(msg)

        response = await self.generator.generate(
            question, experience_id, bot_config.personality, name
        )
        delivery = await self.platform.send_response(channel_id, response)
        return DirectReply(
            question=question,
            response=response,
            bot_name=name,
            delivery=delivery,
            bot_config=bot_config,
        )
