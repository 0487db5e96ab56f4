"""Shared pytest fixtures for the CRM core test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- session_factory: context-manager factory yielding db_session, for the
  services that open their own sessions (audit writer, playbook engine)
- services: audit writer, playbook engine, dispatcher, memory, search cache
- grant: creates a role with the given permissions and assigns it
- client: AsyncClient with dependency overrides for DB-backed testing
"""

from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.access.resolver import PermissionResolver
from src.audit.writer import AuditLogWriter
from src.db.session import Base, get_async_session
import src.db.tables  # noqa: F401  register ORM models on Base.metadata
from src.memory.conversation import ConversationMemoryStore
from src.memory.kv import InMemoryKeyValueStore
from src.memory.search_cache import SearchResultCache
from src.models.access import ModulePermissionIn
from src.models.common import ALL_ACTIONS, ActionType, RecordVisibility
from src.pipeline.mutations import RecordMutationPipeline
from src.pipeline.playbooks import PlaybookEngine
from src.pipeline.triggers import TriggerDispatcher
from src.repositories.roles import RoleRepository, UserRoleRepository

ORG_ID = "org_test"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed — it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction. This ensures full test isolation.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Start a nested SAVEPOINT
        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def session_factory(db_session):
    """Stand-in for async_session_factory that reuses the test session."""

    @asynccontextmanager
    async def _factory():
        yield db_session

    return _factory


@pytest.fixture
def audit_writer(session_factory) -> AuditLogWriter:
    return AuditLogWriter(session_factory)


@pytest.fixture
def playbook_engine(session_factory, audit_writer) -> PlaybookEngine:
    return PlaybookEngine(session_factory, audit_writer)


@pytest.fixture
async def dispatcher():
    """Single worker, started only by drain() so jobs never overlap a request."""
    d = TriggerDispatcher(workers=1, queue_size=100, autostart=False)
    yield d
    await d.stop()


@pytest.fixture
def memory_store() -> ConversationMemoryStore:
    return ConversationMemoryStore(InMemoryKeyValueStore())


@pytest.fixture
def search_cache() -> SearchResultCache:
    return SearchResultCache(max_entries=32, ttl_seconds=60)


@pytest.fixture
def pipeline_factory(db_session, audit_writer, dispatcher, playbook_engine, search_cache):
    """Build a pipeline with a fresh resolver (resolver caches per instance)."""

    def _build(**kwargs) -> RecordMutationPipeline:
        return RecordMutationPipeline(
            db_session,
            PermissionResolver(db_session),
            audit_writer,
            dispatcher=dispatcher,
            playbooks=playbook_engine,
            search_cache=search_cache,
            **kwargs,
        )

    return _build


# ---------------------------------------------------------------------------
# Role helpers
# ---------------------------------------------------------------------------


def module_perm(
    module: str,
    actions=ALL_ACTIONS,
    *,
    view: list[str] | None = None,
    edit: list[str] | None = None,
    visibility: RecordVisibility = RecordVisibility.ALL,
) -> ModulePermissionIn:
    fields = None
    if view is not None or edit is not None:
        fields = {"view": view, "edit": edit}
    return ModulePermissionIn(
        module=module,
        actions=[ActionType(a) for a in actions],
        fields=fields,
        record_visibility=visibility,
    )


@pytest.fixture
def grant(db_session):
    """grant(user_id, *perms, name=..., org_id=...) → RoleRow assigned to the user."""
    counter = {"n": 0}

    async def _grant(user_id: str, *permissions: ModulePermissionIn,
                     name: str | None = None, org_id: str = ORG_ID,
                     is_system: bool = False):
        counter["n"] += 1
        role = await RoleRepository(db_session).create(
            org_id=org_id,
            name=name or f"Role {counter['n']}",
            is_system=is_system,
            permissions=list(permissions),
        )
        await UserRoleRepository(db_session).upsert(
            user_id=user_id, org_id=org_id, role_id=role.role_id,
        )
        return role

    return _grant


def auth(user_id: str, org_id: str = ORG_ID) -> dict[str, str]:
    return {"X-User-Id": user_id, "X-Org-Id": org_id}


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class FakeModelClient:
    """Scripted ModelClient: returns queued turns in order."""

    model = "fake-model"

    def __init__(self, turns=None, *, configured: bool = True) -> None:
        self.turns = list(turns or [])
        self._configured = configured
        self.requests: list[dict] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def create(self, *, system, messages, tools, tool_choice="auto"):
        self.requests.append({
            "system": system,
            "messages": list(messages),
            "tools": tools,
            "tool_choice": tool_choice,
        })
        turn = self.turns.pop(0)
        if callable(turn):
            return await turn()
        return turn


@pytest.fixture
def model_client() -> FakeModelClient:
    return FakeModelClient(configured=False)


@pytest.fixture
async def client(
    db_session, audit_writer, dispatcher, playbook_engine, memory_store,
    search_cache, model_client,
):
    """AsyncClient with get_async_session and the app services overridden."""
    from src.api import dependencies as deps
    from src.api.main import app

    async def _override_session():
        yield db_session

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[deps.get_audit_writer] = lambda: audit_writer
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_playbook_engine] = lambda: playbook_engine
    app.dependency_overrides[deps.get_memory_store] = lambda: memory_store
    app.dependency_overrides[deps.get_search_cache] = lambda: search_cache
    app.dependency_overrides[deps.get_model_client] = lambda: model_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
