"""Grounded response generation with personality-specific framing."""

from __future__ import annotations

from typing import TYPE_CHECKING

import openai

from .config import config
from .embeddings import build_openai_client
from .errors import ConfigurationError, GenerationError
from .models import Personality

if TYPE_CHECKING:
    from openai import AsyncOpenAI

    from .retrieval import ContextRetriever

logger = config.get_logger(__name__)

PERSONALITY_PROMPTS: dict[Personality, str] = {
    Personality.FRIENDLY: (
        "You are a helpful, friendly AI coach that responds in a warm and "
        "approachable manner."
    ),
    Personality.PROFESSIONAL: (
        "You are a professional AI coach that provides clear, concise, and "
        "expert advice."
    ),
    Personality.MOTIVATIONAL: (
        "You are an energetic, motivational AI coach that inspires and "
        "encourages users."
    ),
}

CONTEXT_SEPARATOR = "\n\n---\n\n"
FALLBACK_RESPONSE = "I'm sorry, I couldn't generate a response."


def build_system_prompt(
    context: list[str],
    personality: Personality = Personality.FRIENDLY,
    bot_name: str = "CoachBot",
) -> str:
    """Build the system prompt grounding the model in retrieved context.

    Returns:
        Personality framing, bot identity, answering rules and the context
        chunks joined by separators.
    """
    return (
        f"{PERSONALITY_PROMPTS[personality]}\n\n"
        f"Your name is {bot_name}. You are trained on custom knowledge provided "
        "by the community admin.\n\n"
        "When answering questions:\n"
        "- Use the context provided below to ground your responses\n"
        "- If the context doesn't contain relevant information, say so honestly\n"
        "- Keep responses concise but helpful\n"
        f"- Maintain the {personality.value} tone throughout\n\n"
        "Context from knowledge base:\n"
        f"{CONTEXT_SEPARATOR.join(context)}"
    )


class ResponseGenerator:
    """Answers questions with a chat model grounded in retrieved context."""

    def __init__(
        self,
        retriever: ContextRetriever,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
    ) -> None:
        """Initialize ResponseGenerator.

        Args:
            retriever: Supplies context chunks for each question.
            client: OpenAI client. If None, built from OPENAI_API_KEY.
            model: Chat model name. If None, uses config.CHAT_MODEL.
        """
        self.retriever = retriever
        self.client = client or build_openai_client()
        self.model = model or config.CHAT_MODEL

    async def generate(
        self,
        question: str,
        experience_id: str,
        personality: Personality | str = Personality.FRIENDLY,
        bot_name: str | None = None,
    ) -> str:
        """Generate a response to a question for one experience.

        Returns:
            The model's answer, or a fixed apology when it returns nothing.

        Raises:
            ValidationError: If personality is not a known value.
            ConfigurationError: If no OpenAI API key is configured.
            GenerationError: If the chat completion call fails.
        """
        personality = Personality.parse(personality)
        bot_name = bot_name or config.DEFAULT_BOT_NAME

        context = await self.retriever.retrieve(question, experience_id)
        logger.info(
            "Generating %s response for experience %s with %d context chunks",
            personality.value,
            experience_id,
            len(context),
        )

        if self.client is None:
            msg = "OPENAI_API_KEY environment variable is not set"
            raise ConfigurationError(msg, missing=["OPENAI_API_KEY"])

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": build_system_prompt(context, personality, bot_name),
                    },
                    {"role": "user", "content": question},
                ],
                max_tokens=config.CHAT_MAX_TOKENS,
                temperature=config.CHAT_TEMPERATURE,
            )
        except openai.OpenAIError as exc:
            logger.exception("Error generating chat completion")
            msg = f"Failed to generate response: {exc}"
            raise GenerationError(msg, details=type(exc).__name__) from exc

        choices = getattr(response, "choices", None) or []
        answer = choices[0].message.content if choices else None
        return answer or FALLBACK_RESPONSE
