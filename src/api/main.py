"""FastAPI application entry point for the CRM core.

Process-wide services are built in the lifespan and stored on app.state:
trigger dispatcher, playbook engine, audit writer, conversation memory,
search cache and the model client.
"""

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic_core import to_jsonable_python
from sqlalchemy import text

from src.access.errors import AccessError
from src.api.assistant import router as assistant_router
from src.api.audit_logs import router as audit_logs_router
from src.api.playbooks import router as playbooks_router
from src.api.records import router as records_router
from src.api.roles import router as roles_router
from src.api.team import router as team_router
from src.assistant.agent import AnthropicClient
from src.audit.writer import AuditLogWriter
from src.config.settings import get_settings
from src.memory.conversation import ConversationMemoryStore
from src.memory.search_cache import SearchResultCache
from src.pipeline.playbooks import PlaybookEngine
from src.pipeline.triggers import TriggerDispatcher

APP_VERSION = "0.1.0"

settings = get_settings()

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# --- Structured logging ---
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == "dev"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value],
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.basicConfig(level=_LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value])

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


# --- Lifespan ---


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    from src.db.session import async_session_factory

    dispatcher = TriggerDispatcher(
        workers=settings.TRIGGER_WORKERS,
        queue_size=settings.TRIGGER_QUEUE_SIZE,
        max_retries=settings.TRIGGER_MAX_RETRIES,
    )
    dispatcher.start()
    http = httpx.AsyncClient(timeout=settings.AI_REQUEST_TIMEOUT_SECONDS)

    app.state.dispatcher = dispatcher
    app.state.audit_writer = AuditLogWriter(async_session_factory)
    app.state.playbook_engine = PlaybookEngine(async_session_factory, app.state.audit_writer)
    app.state.memory = ConversationMemoryStore.from_settings(settings)
    app.state.search_cache = SearchResultCache(
        max_entries=settings.SEARCH_CACHE_MAX_ENTRIES,
        ttl_seconds=settings.SEARCH_CACHE_TTL_SECONDS,
    )
    app.state.model_client = AnthropicClient(
        api_key=settings.ANTHROPIC_API_KEY,
        model=settings.AI_MODEL,
        http=http,
    )
    logger.info(
        "crm_core_started",
        environment=settings.ENVIRONMENT.value,
        ai_configured=bool(settings.ANTHROPIC_API_KEY),
        redis=bool(settings.REDIS_URL),
    )
    try:
        yield
    finally:
        await dispatcher.stop()
        await app.state.memory.close()
        await http.aclose()
        logger.info("crm_core_stopped", triggers=dispatcher.stats.as_dict())


# --- FastAPI app ---
app = FastAPI(
    title="CRM Core API",
    description="Multi-tenant CRM core: permissions, audit, records and assistant.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# --- Error handling ---


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    details = [
        {k: v for k, v in err.items() if k in ("loc", "msg", "type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        {"error": "Invalid input", "details": to_jsonable_python(details)},
        status_code=400,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# --- Routers ---
app.include_router(records_router)
app.include_router(roles_router)
app.include_router(team_router)
app.include_router(audit_logs_router)
app.include_router(playbooks_router)
app.include_router(assistant_router)


# --- Infrastructure Endpoints (global) ---


@app.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness endpoint with component health checks.

    Returns 200 always (degraded status if components are down).
    """
    checks: dict[str, bool] = {"api": True}

    try:
        from src.db.session import async_session_factory
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        checks["database"] = False

    all_ok = all(checks.values())
    dispatcher = getattr(request.app.state, "dispatcher", None)

    return {
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
        "triggers": dispatcher.stats.as_dict() if dispatcher else None,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return application name, version, and environment."""
    return {
        "name": "CRM Core",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
