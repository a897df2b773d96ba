"""FastAPI application exposing chat intake, training and configuration routes."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .avatars import AvatarStore
from .config import config
from .dispatch import BackgroundDispatcher
from .document_processing import DocumentLoader
from .embeddings import EmbeddingService
from .errors import (
    AuthenticationError,
    CoachBotError,
    ConfigurationError,
    ValidationError,
)
from .generation import ResponseGenerator
from .intake import MessageReconciler, parse_unverified_event
from .models import BotConfig, FileKind, Personality
from .pipeline import IngestionPipeline
from .platform import PlatformClient
from .repository import Repository
from .retrieval import ContextRetriever
from .vector_store import BaseEmbeddingStore, get_vector_store

logger = config.get_logger(__name__)

USER_TOKEN_HEADER = "x-whop-user-token"


@dataclass
class Services:
    """Collaborators shared by every request of one application."""

    repository: Repository
    vector_store: BaseEmbeddingStore
    pipeline: IngestionPipeline
    generator: ResponseGenerator
    platform: PlatformClient
    reconciler: MessageReconciler
    dispatcher: BackgroundDispatcher
    avatars: AvatarStore

    @classmethod
    def from_config(cls) -> Services:
        """Wire production services from environment configuration.

        Returns:
            Fully constructed services.
        """
        repository = Repository(config.DATABASE_PATH)
        vector_store = get_vector_store(config.VECTOR_BACKEND)
        embedding_service = EmbeddingService()
        retriever = ContextRetriever(embedding_service, vector_store)
        generator = ResponseGenerator(retriever)
        platform = PlatformClient()
        logger.info("Using %s vector storage", vector_store.backend)
        return cls(
            repository=repository,
            vector_store=vector_store,
            pipeline=IngestionPipeline(embedding_service, vector_store, repository),
            generator=generator,
            platform=platform,
            reconciler=MessageReconciler(repository, generator, platform),
            dispatcher=BackgroundDispatcher(),
            avatars=AvatarStore(),
        )

    async def aclose(self) -> None:
        """Finish background work and release network resources."""
        await self.dispatcher.drain()
        await self.platform.aclose()


def get_services(request: Request) -> Services:
    """Resolve the services attached to the application.

    Returns:
        The Services instance created at startup.
    """
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def user_token(request: Request) -> str | None:
    """Read the platform user token from the request headers.

    Returns:
        The token, or None when neither supported header is present.
    """
    token = request.headers.get(USER_TOKEN_HEADER)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def require_admin(
    request: Request, services: Services, experience_id: str | None
) -> str:
    """Authenticate the caller as an admin of the experience.

    Returns:
        The admin's user id.

    Raises:
        AuthenticationError: If the user token is missing or invalid.
        ValidationError: If experience_id is missing.
        AuthorizationError: If the user is not an admin.
    """
    token = user_token(request)
    if not token:
        msg = "Authentication failed"
        raise AuthenticationError(msg, details="Missing user token")
    if not experience_id:
        msg = "experience_id is required"
        raise ValidationError(msg)
    return await services.platform.require_admin(token, experience_id)


def error_body(exc: CoachBotError) -> dict[str, Any]:
    """Build the JSON error payload for a CoachBot failure.

    Only the message, details and hint are exposed, never setting values.

    Returns:
        Mapping with "error" and, when present, "details" and "hint".
    """
    body: dict[str, Any] = {"error": exc.message}
    if exc.details:
        body["details"] = exc.details
    if exc.hint:
        body["hint"] = exc.hint
    return body


# Chat intake

chat_router = APIRouter(prefix="/chat", tags=["chat"])


class ChatTestRequest(BaseModel):
    experience_id: str = ""
    channel_id: str = ""
    message: str = ""
    bot_name: str | None = None


@chat_router.post("/poll")
async def poll_chat(
    request: Request, services: ServicesDep, experience_id: str | None = None
) -> dict[str, Any]:
    """Answer unanswered mentions from recent channel history."""
    body = await request.body()
    if body:
        try:
            payload = json.loads(body)
        except ValueError:
            payload = {}
        if isinstance(payload, dict) and payload.get("experience_id"):
            experience_id = str(payload["experience_id"])

    if not experience_id:
        msg = "experience_id is required"
        raise ValidationError(msg)

    processed = await services.reconciler.poll(experience_id)
    return {
        "processed": processed,
        "message": (
            f"Processed {processed} mentions" if processed else "No new mentions"
        ),
    }


@chat_router.post("/webhook")
async def chat_webhook(request: Request, services: ServicesDep) -> PlainTextResponse:
    """Acknowledge a platform webhook and handle it in the background."""
    body = await request.body()
    try:
        event = services.platform.unwrap_webhook(body, request.headers)
    except (AuthenticationError, ConfigurationError, ValueError) as exc:
        logger.warning("Webhook verification failed, parsing body directly: %s", exc)
        event = parse_unverified_event(body)

    services.dispatcher.spawn(
        services.reconciler.handle_webhook_event(event), name="webhook-event"
    )
    return PlainTextResponse("OK")


@chat_router.post("/test")
async def test_chat(payload: ChatTestRequest, services: ServicesDep) -> dict[str, Any]:
    """Answer a message immediately, reporting every step."""
    for field in ("experience_id", "channel_id", "message"):
        if not getattr(payload, field):
            msg = f"{field} is required"
            raise ValidationError(msg)

    reply = await services.reconciler.respond_now(
        payload.experience_id, payload.channel_id, payload.message, payload.bot_name
    )
    return {
        "success": True,
        "response": reply.response,
        "question": reply.question,
        "bot_name": reply.bot_name,
        "sent_to_chat": reply.delivery.sent,
        "send_method": reply.delivery.method,
        "send_error": reply.delivery.error,
        "config": {
            "personality": reply.bot_config.personality.value,
            "channel_id": reply.bot_config.channel_id,
        },
        "note": (
            "Response sent to chat successfully"
            if reply.delivery.sent
            else "Response generated but could not send to chat. "
            "Check send_error for details."
        ),
    }


# Training data

training_router = APIRouter(prefix="/training", tags=["training"])


@training_router.post("")
async def upload_training(  # noqa: PLR0913, PLR0917
    request: Request,
    services: ServicesDep,
    experience_id: Annotated[str, Form()] = "",
    text_content: Annotated[str | None, Form()] = None,
    doc_id: Annotated[str | None, Form()] = None,
    file: Annotated[UploadFile | None, File()] = None,
) -> dict[str, Any]:
    """Store a training document and embed its content."""
    await require_admin(request, services, experience_id)

    if file is not None:
        data = await file.read()
        content, file_type = DocumentLoader.load_upload(
            data, file_name=file.filename, content_type=file.content_type
        )
        file_name = file.filename
    elif text_content is not None:
        content, file_type, file_name = text_content, FileKind.TEXT, None
    else:
        msg = "Either text_content or file is required"
        raise ValidationError(msg)

    document, chunks = await services.pipeline.save_document(
        experience_id,
        content,
        file_name=file_name,
        file_type=file_type,
        doc_id=doc_id or None,
    )
    return {
        "success": True,
        "doc_id": document.id,
        "chunks": chunks,
        "message": "Training data processed and embeddings generated",
    }


@training_router.get("")
async def list_training(
    request: Request, services: ServicesDep, experience_id: str = ""
) -> dict[str, Any]:
    """List an experience's training documents, newest first."""
    await require_admin(request, services, experience_id)
    documents = await services.pipeline.list_documents(experience_id)
    return {"documents": [document.to_dict() for document in documents]}


@training_router.delete("")
async def delete_training(
    request: Request, services: ServicesDep, experience_id: str = "", doc_id: str = ""
) -> dict[str, Any]:
    """Delete a training document and its embeddings."""
    if not experience_id or not doc_id:
        msg = "experience_id and doc_id are required"
        raise ValidationError(msg)
    await require_admin(request, services, experience_id)
    await services.pipeline.delete_document(experience_id, doc_id)
    return {"success": True, "message": "Document deleted"}


# Bot configuration

config_router = APIRouter(prefix="/config", tags=["config"])


class BotConfigRequest(BaseModel):
    experience_id: str = ""
    bot_name: str | None = None
    bot_avatar_url: str | None = None
    personality: str | None = None
    channel_id: str | None = None


@config_router.get("")
async def get_config(
    request: Request, services: ServicesDep, experience_id: str = ""
) -> dict[str, Any]:
    """Return the stored configuration, or defaults for a new experience."""
    await require_admin(request, services, experience_id)
    bot_config = await services.repository.get_bot_config(experience_id)
    if bot_config is None:
        return {
            "bot_name": config.DEFAULT_BOT_NAME,
            "bot_avatar_url": None,
            "personality": Personality.FRIENDLY.value,
            "channel_id": None,
        }
    return bot_config.to_dict()


@config_router.post("")
async def save_config(
    payload: BotConfigRequest, request: Request, services: ServicesDep
) -> dict[str, Any]:
    """Create or replace the bot configuration of an experience."""
    await require_admin(request, services, payload.experience_id)
    personality = Personality.parse(payload.personality)
    stored = await services.repository.upsert_bot_config(
        BotConfig(
            experience_id=payload.experience_id,
            bot_name=payload.bot_name or config.DEFAULT_BOT_NAME,
            bot_avatar_url=payload.bot_avatar_url or None,
            personality=personality,
            channel_id=payload.channel_id or None,
        )
    )
    return {"success": True, "config": stored.to_dict()}


@config_router.delete("")
async def delete_config(
    request: Request, services: ServicesDep, experience_id: str = ""
) -> dict[str, Any]:
    """Remove the bot configuration of an experience."""
    await require_admin(request, services, experience_id)
    deleted = await services.repository.delete_bot_config(experience_id)
    return {"success": True, "deleted": deleted}


# Avatars and health

misc_router = APIRouter(tags=["misc"])


@misc_router.post("/upload/avatar")
async def upload_avatar(
    request: Request,
    services: ServicesDep,
    experience_id: Annotated[str, Form()] = "",
    file: Annotated[UploadFile | None, File()] = None,
) -> dict[str, Any]:
    """Store a bot avatar image."""
    await require_admin(request, services, experience_id)
    if file is None:
        msg = "File is required"
        raise ValidationError(msg)

    stored = await services.avatars.save(
        experience_id,
        await file.read(),
        content_type=file.content_type,
        file_name=file.filename,
    )
    body: dict[str, Any] = {"url": stored.url, "method": stored.method}
    if stored.note:
        body["note"] = stored.note
    return body


@misc_router.get("/health")
async def health() -> dict[str, Any]:
    """Liveness check listing missing settings by name."""
    missing = config.missing_settings() + config.missing_optional_settings()
    return {"status": "ok" if not missing else "degraded", "missing_settings": missing}


def create_app(services: Services | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        services: Pre-built collaborators. If None, they are created from
            configuration when the application starts.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is None:
            config.setup_logging()
            app.state.services = Services.from_config()
        try:
            yield
        finally:
            await app.state.services.aclose()

    app = FastAPI(title="CoachBot", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(CoachBotError)
    async def handle_coachbot_error(_: Request, exc: CoachBotError) -> JSONResponse:
        if exc.status_code >= 500:  # noqa: PLR2004
            logger.error("Request failed: %s", exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error", exc_info=(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    app.include_router(chat_router)
    app.include_router(training_router)
    app.include_router(config_router)
    app.include_router(misc_router)
    return app
