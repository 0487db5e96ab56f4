"""FastAPI dependency injection factories.

Request-scoped objects (resolver, pipeline, role service) are built from
the Unit-of-Work session via Depends(get_async_session). Process-wide
services (dispatcher, memory store, search cache, audit writer, playbook
engine, model client) are created by the application lifespan and read
from app.state. Tests override the get_* factories below.
"""

from collections.abc import Callable
from functools import lru_cache

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.access.errors import Unauthenticated
from src.access.resolver import PermissionResolver
from src.access.roles import RoleService
from src.assistant.agent import ModelClient
from src.assistant.tools import ToolRegistry
from src.audit.writer import AuditLogWriter
from src.config.settings import Settings, get_settings
from src.db.session import get_async_session
from src.memory.conversation import ConversationMemoryStore
from src.memory.search_cache import SearchResultCache
from src.models.access import Caller
from src.models.common import ActionType
from src.pipeline.mutations import RecordMutationPipeline
from src.pipeline.playbooks import PlaybookEngine
from src.pipeline.triggers import TriggerDispatcher

# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


async def get_caller(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_org_id: str | None = Header(default=None),
) -> Caller:
    """Identity set by the upstream auth proxy. Missing headers → 401."""
    if not x_user_id or not x_org_id:
        raise Unauthenticated()
    return Caller(
        user_id=x_user_id,
        org_id=x_org_id,
        request_id=getattr(request.state, "request_id", None),
    )


# ---------------------------------------------------------------------------
# Process-wide services
# ---------------------------------------------------------------------------


def get_dispatcher(request: Request) -> TriggerDispatcher:
    return request.app.state.dispatcher


def get_playbook_engine(request: Request) -> PlaybookEngine:
    return request.app.state.playbook_engine


def get_audit_writer(request: Request) -> AuditLogWriter:
    return request.app.state.audit_writer


def get_memory_store(request: Request) -> ConversationMemoryStore:
    return request.app.state.memory


def get_search_cache(request: Request) -> SearchResultCache:
    return request.app.state.search_cache


def get_model_client(request: Request) -> ModelClient:
    return request.app.state.model_client


@lru_cache
def get_tool_registry() -> ToolRegistry:
    return ToolRegistry()


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


async def get_resolver(
    session: AsyncSession = Depends(get_async_session),
) -> PermissionResolver:
    return PermissionResolver(session)


async def get_role_service(
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_async_session),
    audit: AuditLogWriter = Depends(get_audit_writer),
    search_cache: SearchResultCache = Depends(get_search_cache),
) -> RoleService:
    return RoleService(
        session,
        audit=audit.create_audit_context(
            caller.org_id, caller.user_id, caller.actor_type, caller.request_id,
        ),
        search_cache=search_cache,
    )


def require_permission(module: str, action: ActionType) -> Callable:
    """Dependency that 403s unless the caller holds (module, action)."""

    async def _check(
        caller: Caller = Depends(get_caller),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> Caller:
        await resolver.require_permission(caller.user_id, caller.org_id, module, action)
        return caller

    return _check


# ---------------------------------------------------------------------------
# Mutation pipeline
# ---------------------------------------------------------------------------


async def get_pipeline(
    session: AsyncSession = Depends(get_async_session),
    resolver: PermissionResolver = Depends(get_resolver),
    audit: AuditLogWriter = Depends(get_audit_writer),
    dispatcher: TriggerDispatcher = Depends(get_dispatcher),
    playbooks: PlaybookEngine = Depends(get_playbook_engine),
    search_cache: SearchResultCache = Depends(get_search_cache),
    settings: Settings = Depends(get_settings),
) -> RecordMutationPipeline:
    return RecordMutationPipeline(
        session,
        resolver,
        audit,
        dispatcher=dispatcher,
        playbooks=playbooks,
        search_cache=search_cache,
        hide_denied_records=settings.HIDE_DENIED_RECORDS,
    )
