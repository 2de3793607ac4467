"""FastAPI application for the chat service."""

from __future__ import annotations

import asyncio
import contextlib
import secrets
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.common.middleware import ObservabilityMiddleware
from services.common.structured_logging import get_logger
from services.chat.config import ChatServiceConfig, load_chat_config
from services.chat.context import (
    ContextManager,
    ContextPersistenceError,
    FileStorage,
    MemoryStorage,
    StorageInterface,
)
from services.chat.context.types import (
    MAX_SESSION_ID_LENGTH,
    SESSION_ID_PATTERN,
    utcnow,
)
from services.chat.conversation import ConversationService
from services.chat.generation import (
    GeminiClient,
    GenerationClient,
    GenerationError,
    GenerationUnavailableError,
)
from services.chat.models import (
    AiRequest,
    AiResponse,
    ChatRequest,
    ChatResponse,
    CleanupResponse,
    ClearContextResponse,
    ContextResponse,
    ErrorResponse,
    MessageModel,
    SessionPageResponse,
    SessionStatsModel,
    SessionStatsResponse,
    SystemStatsResponse,
)
from services.chat.rate_limit import RateLimiter


logger = get_logger(__name__, service_name="chat")

SessionIdPath = Annotated[
    str,
    Path(min_length=1, max_length=MAX_SESSION_ID_LENGTH, pattern=SESSION_ID_PATTERN),
]

router = APIRouter()


def _build_storage(config: ChatServiceConfig) -> StorageInterface:
    if config.context.storage_backend == "file":
        return FileStorage(config.context.file_path)
    return MemoryStorage(max_sessions=config.context.max_sessions)


def _build_generation_client(config: ChatServiceConfig) -> GenerationClient:
    generation = config.generation
    return GeminiClient(
        generation.api_key,
        model=generation.model,
        base_url=generation.base_url,
        temperature=generation.temperature,
        top_k=generation.top_k,
        top_p=generation.top_p,
        safety_threshold=generation.safety_threshold,
        timeout=generation.timeout_seconds,
    )


def _new_chat_session_id() -> str:
    return f"chat_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


async def _run_periodic_cleanup(
    context_manager: ContextManager, interval_minutes: int, days_old: int
) -> None:
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await context_manager.cleanup_old_sessions(days_old)
        except ContextPersistenceError as exc:
            logger.warning("context.periodic_cleanup_failed", error=str(exc))


# Dependencies


def get_conversation(request: Request) -> ConversationService:
    return request.app.state.conversation  # type: ignore[no-any-return]


def get_context_manager(request: Request) -> ContextManager:
    return request.app.state.context_manager  # type: ignore[no-any-return]


async def enforce_ai_rate_limit(request: Request) -> None:
    await request.app.state.ai_limiter(request)


async def enforce_context_rate_limit(request: Request) -> None:
    await request.app.state.context_limiter(request)


# Error handling


def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error, message=message, timestamp=utcnow(), details=details
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def _validation_details(errors: list[Any]) -> list[dict[str, Any]]:
    details = []
    for error in errors:
        loc = [
            str(part)
            for part in error.get("loc", ())
            if part not in ("body", "query", "path")
        ]
        details.append(
            {
                "field": ".".join(loc) or "body",
                "message": error.get("msg", "Invalid value"),
            }
        )
    return details


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _error_response(
        400,
        "Validation Error",
        "Invalid request parameters",
        _validation_details(list(exc.errors())),
    )


async def _handle_model_validation(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(
        400,
        "Validation Error",
        "Invalid request parameters",
        _validation_details(list(exc.errors())),
    )


async def _handle_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    try:
        error = HTTPStatus(exc.status_code).phrase
    except ValueError:
        error = "Error"
    return _error_response(exc.status_code, error, str(exc.detail))


async def _handle_generation_error(request: Request, exc: GenerationError) -> JSONResponse:
    if isinstance(exc, GenerationUnavailableError):
        logger.warning("chat.generation_unavailable", error=str(exc))
        return _error_response(
            503,
            "Service Unavailable",
            "The generation service is temporarily unavailable",
        )
    logger.error(
        "chat.generation_failed", error=str(exc), upstream_status=exc.status_code
    )
    return _error_response(502, "Generation Failed", str(exc))


async def _handle_persistence_error(
    request: Request, exc: ContextPersistenceError
) -> JSONResponse:
    logger.error("chat.context_persistence_failed", error=str(exc))
    return _error_response(
        503, "Context Unavailable", "Conversation context could not be updated"
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("chat.unhandled_error", error=str(exc), path=request.url.path)
    return _error_response(500, "Internal Server Error", "An unexpected error occurred")


def _register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(ValidationError, _handle_model_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(GenerationError, _handle_generation_error)
    app.add_exception_handler(ContextPersistenceError, _handle_persistence_error)
    app.add_exception_handler(Exception, _handle_unexpected)


# General routes


@router.get("/")  # type: ignore[misc]
async def root(request: Request) -> dict[str, Any]:
    """Service information."""
    return {
        "info": "Gemini chat API with persistent conversation context",
        "version": request.app.state.config.server.version,
        "features": [
            "Sliding-window conversation history",
            "Per-client rate limiting",
            "Input validation",
            "Structured error responses",
        ],
        "endpoints": {
            "ai": "/api/ai",
            "chat": "/api/chat",
            "context": "/api/context",
            "docs": "/docs",
        },
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health")  # type: ignore[misc]
async def health(
    request: Request,
    context_manager: ContextManager = Depends(get_context_manager),
) -> dict[str, Any]:
    """Overall service health."""
    config: ChatServiceConfig = request.app.state.config
    context_health = await context_manager.health_check()
    client = request.app.state.generation_client
    status = "degraded" if context_health.get("status") == "unhealthy" else "healthy"
    return {
        "status": status,
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "timestamp": utcnow().isoformat(),
        "version": config.server.version,
        "environment": config.server.environment,
        "context": context_health,
        "sessions": {"enabled": context_manager.is_enabled()},
        "generation": {
            "backend": client.__class__.__name__,
            "configured": getattr(client, "is_configured", True),
        },
    }


@router.get("/health/live")  # type: ignore[misc]
async def health_live() -> dict[str, str]:
    """Liveness check - is process running."""
    return {"status": "alive", "service": "chat"}


@router.get("/health/ready")  # type: ignore[misc]
async def health_ready(
    request: Request,
    context_manager: ContextManager = Depends(get_context_manager),
) -> dict[str, Any]:
    """Readiness check - can serve requests."""
    client = request.app.state.generation_client
    if not getattr(client, "is_configured", True):
        raise HTTPException(status_code=503, detail="Generation backend not configured")

    context_health = await context_manager.health_check()
    if context_health.get("status") == "unhealthy":
        raise HTTPException(status_code=503, detail="Context storage unavailable")

    return {
        "status": "ready",
        "service": "chat",
        "components": {
            "context": context_health.get("status"),
            "generation": client.__class__.__name__,
        },
    }


# Generation routes


async def _respond(payload: AiRequest, conversation: ConversationService) -> AiResponse:
    result = await conversation.respond(
        payload.prompt,
        session_id=payload.session_id,
        use_context=payload.use_context,
    )
    return AiResponse(
        request=payload.prompt,
        response=result.text,
        session_id=result.session_id,
        context_used=result.context_used,
        sessions_enabled=result.sessions_enabled,
        timestamp=utcnow(),
        warning=result.warning,
    )


@router.get(
    "/api/ai",
    response_model=AiResponse,
    dependencies=[Depends(enforce_ai_rate_limit)],
)  # type: ignore[misc]
async def ai_query(
    prompt: Annotated[str | None, Query()] = None,
    session_id: Annotated[str | None, Query(alias="sessionId")] = None,
    use_context: Annotated[bool, Query(alias="useContext")] = True,
    conversation: ConversationService = Depends(get_conversation),
) -> AiResponse:
    """Generate a reply for a prompt passed as query parameters."""
    payload = AiRequest.model_validate(
        {"prompt": prompt, "sessionId": session_id, "useContext": use_context}
    )
    return await _respond(payload, conversation)


@router.post(
    "/api/ai",
    response_model=AiResponse,
    dependencies=[Depends(enforce_ai_rate_limit)],
)  # type: ignore[misc]
async def ai_generate(
    payload: AiRequest,
    conversation: ConversationService = Depends(get_conversation),
) -> AiResponse:
    """Generate a reply for a JSON prompt."""
    return await _respond(payload, conversation)


@router.post(
    "/api/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(enforce_ai_rate_limit)],
)  # type: ignore[misc]
async def chat(
    payload: ChatRequest,
    conversation: ConversationService = Depends(get_conversation),
) -> ChatResponse:
    """Continue a conversation using its full structured history."""
    session_id = payload.session_id or _new_chat_session_id()
    result = await conversation.chat(payload.message, session_id)
    return ChatResponse(
        message=payload.message,
        response=result.text,
        session_id=result.session_id,
        timestamp=utcnow(),
        message_count=result.message_count,
        warning=result.warning,
    )


# Context routes


@router.get("/api/context", response_model=SessionPageResponse)  # type: ignore[misc]
async def list_sessions(
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    context_manager: ContextManager = Depends(get_context_manager),
) -> SessionPageResponse:
    """List sessions, most recently active first."""
    page = await context_manager.list_sessions(limit=limit, offset=offset)
    return SessionPageResponse.from_page(page)


@router.get("/api/context/stats", response_model=SystemStatsResponse)  # type: ignore[misc]
async def system_stats(
    context_manager: ContextManager = Depends(get_context_manager),
) -> SystemStatsResponse:
    """Aggregate statistics over every session."""
    stats = await context_manager.system_stats()
    return SystemStatsResponse(**stats, timestamp=utcnow())


@router.post(
    "/api/context/cleanup",
    response_model=CleanupResponse,
    dependencies=[Depends(enforce_context_rate_limit)],
)  # type: ignore[misc]
async def cleanup_sessions(
    request: Request,
    days: Annotated[int | None, Query(ge=0)] = None,
    context_manager: ContextManager = Depends(get_context_manager),
) -> CleanupResponse:
    """Purge sessions inactive for more than ``days`` days."""
    if days is None:
        days = request.app.state.config.context.cleanup_days
    removed = await context_manager.cleanup_old_sessions(days)
    return CleanupResponse(removed=removed, cutoff_days=days, timestamp=utcnow())


@router.get("/api/context/{session_id}", response_model=ContextResponse)  # type: ignore[misc]
async def get_context(
    session_id: SessionIdPath,
    context_manager: ContextManager = Depends(get_context_manager),
) -> ContextResponse:
    """Return a session's message window and statistics."""
    messages = await context_manager.get_context(session_id)
    stats = await context_manager.get_session_stats(session_id)
    return ContextResponse(
        session_id=session_id,
        context=[MessageModel.from_message(message) for message in messages],
        stats=SessionStatsModel.from_stats(stats),
    )


@router.get(
    "/api/context/{session_id}/stats", response_model=SessionStatsResponse
)  # type: ignore[misc]
async def get_session_stats(
    session_id: SessionIdPath,
    context_manager: ContextManager = Depends(get_context_manager),
) -> SessionStatsResponse:
    stats = await context_manager.get_session_stats(session_id)
    return SessionStatsResponse(
        session_id=session_id, stats=SessionStatsModel.from_stats(stats)
    )


@router.delete(
    "/api/context/{session_id}",
    response_model=ClearContextResponse,
    dependencies=[Depends(enforce_context_rate_limit)],
)  # type: ignore[misc]
async def clear_context(
    session_id: SessionIdPath,
    context_manager: ContextManager = Depends(get_context_manager),
) -> ClearContextResponse:
    """Delete a session's history."""
    cleared = await context_manager.clear_context(session_id)
    return ClearContextResponse(
        message="Context cleared" if cleared else "No context stored for session",
        session_id=session_id,
        cleared=cleared,
        timestamp=utcnow(),
    )


def create_app(
    config: ChatServiceConfig | None = None,
    *,
    storage: StorageInterface | None = None,
    generation_client: GenerationClient | None = None,
) -> FastAPI:
    """Build the chat service application.

    Args:
        config: Service configuration (loaded from the environment when None)
        storage: Session store (chosen by configuration when None)
        generation_client: Generation backend (Gemini when None)
    """
    config = config or load_chat_config()
    storage = storage or _build_storage(config)
    generation_client = generation_client or _build_generation_client(config)

    context_manager = ContextManager(
        storage,
        max_messages=config.context.max_messages,
        enabled=config.context.enabled,
    )
    conversation = ConversationService(
        context_manager,
        generation_client,
        max_attempts=config.generation.max_attempts,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cleanup_task: asyncio.Task[None] | None = None
        interval = config.context.cleanup_interval_minutes
        if context_manager.is_enabled() and interval > 0:
            cleanup_task = asyncio.create_task(
                _run_periodic_cleanup(
                    context_manager, interval, config.context.cleanup_days
                )
            )
        app.state.cleanup_task = cleanup_task
        logger.info(
            "chat.startup_complete",
            storage_backend=storage.__class__.__name__,
            context_enabled=context_manager.is_enabled(),
            cleanup_interval_minutes=interval,
        )
        try:
            yield
        finally:
            if cleanup_task is not None:
                cleanup_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleanup_task
            await generation_client.close()
            logger.info("chat.shutdown_complete")

    app = FastAPI(
        title="Chat Service",
        version=config.server.version,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.storage = storage
    app.state.context_manager = context_manager
    app.state.generation_client = generation_client
    app.state.conversation = conversation
    app.state.ai_limiter = RateLimiter(config.rate_limit.ai_per_minute, name="ai")
    app.state.context_limiter = RateLimiter(
        config.rate_limit.context_per_minute, name="context"
    )
    app.state.started_at = time.monotonic()
    app.state.cleanup_task = None

    app.add_middleware(ObservabilityMiddleware)
    _register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()
