"""Tests for the assistant tool registry and executor."""

import pytest

from conftest import ORG_ID, module_perm
from src.assistant.tools import TOOL_MODULES, ToolExecutor, ToolRegistry
from src.audit.writer import AuditLogWriter
from src.memory.conversation import ConversationMemoryStore
from src.memory.search_cache import SearchResultCache
from src.models.access import Caller
from src.models.common import ActorType, RecordVisibility, Workspace
from src.models.conversation import EntityType
from src.repositories.roles import RoleRepository, UserRoleRepository

SESSION = "sess-tools"


@pytest.fixture
def executor_factory(pipeline_factory, audit_writer, memory_store, search_cache):
    """Fresh executor per call, as each request builds its own pipeline."""

    def _build() -> ToolExecutor:
        return ToolExecutor.for_user(
            user_id="alice",
            org_id=ORG_ID,
            request_id="req-tools",
            registry=ToolRegistry(),
            pipeline=pipeline_factory(),
            audit=audit_writer,
            memory=memory_store,
            search_cache=search_cache,
            session_id=SESSION,
        )

    return _build


@pytest.fixture
def executor(executor_factory) -> ToolExecutor:
    return executor_factory()


class TestRegistry:
    def test_three_tools_per_module(self) -> None:
        registry = ToolRegistry()
        assert len(registry) == 3 * len(TOOL_MODULES)
        for name in ("createLead", "searchLeads", "updateLead",
                     "createTicket", "searchTickets", "updateTask"):
            assert name in registry

    def test_update_schema_requires_id(self) -> None:
        schema = ToolRegistry().get("updateLead").input_schema
        assert schema["required"] == ["leadId"]
        assert "first_name" in schema["properties"]

    def test_definitions_shape(self) -> None:
        definition = ToolRegistry().definitions()[0]
        assert set(definition) == {"name", "description", "input_schema"}


@pytest.mark.anyio
class TestExecute:
    async def test_create_lead_as_ai_agent(
        self, executor: ToolExecutor, grant, audit_writer: AuditLogWriter,
        memory_store: ConversationMemoryStore,
    ) -> None:
        await grant("alice", module_perm("leads"))
        result = await executor.execute("createLead", {"first_name": "Jane", "last_name": "Doe"})

        assert result["success"]
        assert result["message"] == f'Created lead "Jane Doe" (ID: {result["leadId"]})'
        assert result["entity"] == {"id": result["leadId"], "name": "Jane Doe"}

        entries = await audit_writer.get_audit_logs_by_request_id("req-tools")
        assert [(e.action, e.actor_type) for e in entries] == [("CREATE", "AI_AGENT")]
        assert entries[0].actor_id == "alice"

        context = await memory_store.get_conversation_context(ORG_ID, SESSION)
        assert [(e.type, e.id, e.name) for e in context.recent_entities] == [
            (EntityType.LEAD, result["leadId"], "Jane Doe"),
        ]
        assert [c.name for c in context.last_tool_calls] == ["createLead"]
        assert context.metadata.workspace == Workspace.SALES

    async def test_permission_denied_is_a_result(
        self, executor: ToolExecutor, grant, memory_store: ConversationMemoryStore,
    ) -> None:
        await grant("alice", module_perm("leads", ["view"]))
        result = await executor.execute("createLead", {"first_name": "Jane", "last_name": "Doe"})
        assert result == {"success": False, "message": "You don't have permission to create leads"}

        context = await memory_store.get_conversation_context(ORG_ID, SESSION)
        assert context.recent_entities == []
        assert not context.last_tool_calls[0].succeeded

    async def test_validation_errors_carry_details(self, executor: ToolExecutor, grant) -> None:
        await grant("alice", module_perm("leads"))
        result = await executor.execute("createLead", {"first_name": "Jane"})
        assert not result["success"]
        assert result["message"] == "Invalid input"
        assert result["details"]

    async def test_unknown_tool(self, executor: ToolExecutor) -> None:
        result = await executor.execute("launchRocket", {})
        assert result == {"success": False, "message": "Unknown tool: launchRocket"}
        assert executor.tools_called == ["launchRocket"]

    async def test_update_by_id(self, executor: ToolExecutor, grant) -> None:
        await grant("alice", module_perm("leads"))
        created = await executor.execute("createLead", {"first_name": "Jane", "last_name": "Doe"})
        updated = await executor.execute(
            "updateLead", {"leadId": created["leadId"], "status": "QUALIFIED"},
        )
        assert updated["success"]
        assert updated["message"] == 'Updated lead "Jane Doe"'

    async def test_update_with_bad_id(self, executor: ToolExecutor, grant) -> None:
        await grant("alice", module_perm("leads"))
        result = await executor.execute("updateLead", {"leadId": "nope"})
        assert not result["success"]

    async def test_search_respects_visibility(
        self, executor: ToolExecutor, grant, pipeline_factory,
    ) -> None:
        perm = module_perm("leads", visibility=RecordVisibility.OWN_ONLY)
        await grant("alice", perm)
        await grant("bob", perm)
        bob = Caller(user_id="bob", org_id=ORG_ID)
        await pipeline_factory().create_record(bob, "leads", {"first_name": "Jane", "last_name": "Bob"})
        await executor.execute("createLead", {"first_name": "Jane", "last_name": "Alice"})

        result = await executor.execute("searchLeads", {"query": "jane"})
        assert result["count"] == 1
        assert result["leads"][0]["name"] == "Jane Alice"
        assert result["name"] == "Jane Alice"

    async def test_search_is_cached_until_write(
        self, executor: ToolExecutor, grant, search_cache: SearchResultCache,
    ) -> None:
        await grant("alice", module_perm("leads"))
        first = await executor.execute("searchLeads", {"query": "doe"})
        assert first["count"] == 0
        assert await executor.execute("searchLeads", {"query": "doe"}) == first
        assert search_cache.hits == 1

        await executor.execute("createLead", {"first_name": "Jane", "last_name": "Doe"})
        after = await executor.execute("searchLeads", {"query": "doe"})
        assert after["count"] == 1

    async def test_revoked_role_gets_no_cached_page(
        self, executor_factory, grant, db_session, search_cache: SearchResultCache,
    ) -> None:
        await grant("alice", module_perm("leads"))
        executor = executor_factory()
        await executor.execute("createLead", {"first_name": "Jane", "last_name": "Doe"})
        assert (await executor.execute("searchLeads", {"query": "doe"}))["count"] == 1
        assert len(search_cache) == 1

        await UserRoleRepository(db_session).delete_for_user("alice", ORG_ID)

        result = await executor_factory().execute("searchLeads", {"query": "doe"})
        assert result == {"success": False, "message": "You don't have permission to view leads"}
        assert search_cache.hits == 0

    async def test_narrowed_field_mask_misses_cache(
        self, executor_factory, grant, db_session, search_cache: SearchResultCache,
    ) -> None:
        role = await grant("alice", module_perm("leads"))
        executor = executor_factory()
        await executor.execute(
            "createLead", {"first_name": "Jane", "last_name": "Doe", "company": "Acme"},
        )
        assert (await executor.execute("searchLeads", {"query": "acme"}))["count"] == 1

        await RoleRepository(db_session).replace_permissions(
            role, [module_perm("leads", view=["first_name", "last_name"])],
        )

        result = await executor_factory().execute("searchLeads", {"query": "acme"})
        assert result["count"] == 0
        assert search_cache.hits == 0

    async def test_write_summary(
        self, executor: ToolExecutor, grant, audit_writer: AuditLogWriter,
    ) -> None:
        await grant("alice", module_perm("leads"))
        await executor.execute("createLead", {"first_name": "Jane", "last_name": "Doe"})
        await executor.write_summary(
            model="fake-model", message_count=3, workspace=Workspace.SALES,
            finish_reason="end_turn",
        )
        entries = await audit_writer.get_audit_logs_by_request_id("req-tools")
        assert [e.action for e in entries] == ["CREATE", "AI_EXECUTION"]
        summary = entries[-1]
        assert summary.module == "SYSTEM"
        assert summary.actor_type == ActorType.AI_AGENT.value
        assert summary.metadata == {
            "model": "fake-model",
            "workspace": "sales",
            "tools_called": ["createLead"],
            "message_count": 3,
            "finish_reason": "end_turn",
        }
