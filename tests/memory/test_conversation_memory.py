"""Tests for conversation memory: bounds, entity recency, TTL, summary."""

import pytest

from src.memory.conversation import (
    ConversationMemoryStore,
    build_context_summary,
    conversation_key,
    extract_entity_from_tool_result,
)
from src.memory.kv import InMemoryKeyValueStore
from src.models.common import Workspace
from src.models.conversation import (
    ChatMessage,
    ConversationContext,
    ConversationMetadata,
    EntityReference,
    EntityType,
    ToolCallRecord,
)

ORG = "org_1"
SESSION = "sess_1"


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> ConversationMemoryStore:
    return ConversationMemoryStore(InMemoryKeyValueStore(clock=clock), clock=clock)


def _entity(entity_id: str, entity_type: EntityType = EntityType.LEAD) -> EntityReference:
    return EntityReference(type=entity_type, id=entity_id, name=f"Name {entity_id}", created_at=0)


def _call(name: str, success: bool = True) -> ToolCallRecord:
    return ToolCallRecord(name=name, result={"success": success}, timestamp=0)


@pytest.mark.anyio
class TestSaveAndLoad:
    async def test_absent_session_is_none(self, store: ConversationMemoryStore) -> None:
        assert await store.get_conversation_context(ORG, SESSION) is None

    async def test_first_save_creates_context(
        self, store: ConversationMemoryStore, clock: FakeClock,
    ) -> None:
        saved = await store.save_conversation_context(
            ORG, SESSION, "u1",
            messages=[ChatMessage(role="user", content="hi")],
            workspace=Workspace.SALES,
        )
        assert saved.metadata.started_at == clock.now
        loaded = await store.get_conversation_context(ORG, SESSION)
        assert loaded.user_id == "u1"
        assert loaded.metadata.message_count == 1
        assert loaded.metadata.workspace == Workspace.SALES

    async def test_messages_keep_last_ten(self, store: ConversationMemoryStore) -> None:
        for i in range(12):
            await store.save_conversation_context(
                ORG, SESSION, "u1", messages=[ChatMessage(role="user", content=str(i))],
            )
        context = await store.get_conversation_context(ORG, SESSION)
        assert [m.content for m in context.messages] == [str(i) for i in range(2, 12)]
        assert context.metadata.message_count == 12

    async def test_tool_calls_keep_last_five(self, store: ConversationMemoryStore) -> None:
        for i in range(7):
            await store.save_conversation_context(ORG, SESSION, "u1", tool_call=_call(f"t{i}"))
        context = await store.get_conversation_context(ORG, SESSION)
        assert [c.name for c in context.last_tool_calls] == ["t2", "t3", "t4", "t5", "t6"]

    async def test_entities_deduplicated_and_moved_to_end(
        self, store: ConversationMemoryStore,
    ) -> None:
        for entity_id in ("a", "b", "c"):
            await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity(entity_id))
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("a"))
        context = await store.get_conversation_context(ORG, SESSION)
        assert [e.id for e in context.recent_entities] == ["b", "c", "a"]

    async def test_same_id_different_type_is_distinct(
        self, store: ConversationMemoryStore,
    ) -> None:
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("x"))
        await store.save_conversation_context(
            ORG, SESSION, "u1", entity=_entity("x", EntityType.ACCOUNT),
        )
        context = await store.get_conversation_context(ORG, SESSION)
        assert len(context.recent_entities) == 2

    async def test_entities_bounded(self, store: ConversationMemoryStore) -> None:
        for i in range(12):
            await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity(str(i)))
        context = await store.get_conversation_context(ORG, SESSION)
        assert [e.id for e in context.recent_entities] == [str(i) for i in range(2, 12)]

    async def test_sessions_are_org_scoped(self, store: ConversationMemoryStore) -> None:
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("a"))
        assert await store.get_conversation_context("org_2", SESSION) is None


@pytest.mark.anyio
class TestLifecycle:
    async def test_expires_after_ttl(
        self, store: ConversationMemoryStore, clock: FakeClock,
    ) -> None:
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("a"))
        clock.advance(31 * 60)
        assert await store.get_conversation_context(ORG, SESSION) is None

    async def test_save_refreshes_ttl(
        self, store: ConversationMemoryStore, clock: FakeClock,
    ) -> None:
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("a"))
        clock.advance(20 * 60)
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("b"))
        clock.advance(20 * 60)
        context = await store.get_conversation_context(ORG, SESSION)
        assert [e.id for e in context.recent_entities] == ["a", "b"]

    async def test_extend_ttl(self, store: ConversationMemoryStore, clock: FakeClock) -> None:
        assert not await store.extend_conversation_ttl(ORG, SESSION)
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("a"))
        clock.advance(25 * 60)
        assert await store.extend_conversation_ttl(ORG, SESSION)
        clock.advance(25 * 60)
        assert await store.get_conversation_context(ORG, SESSION) is not None

    async def test_clear(self, store: ConversationMemoryStore) -> None:
        await store.save_conversation_context(ORG, SESSION, "u1", entity=_entity("a"))
        assert await store.clear_conversation_context(ORG, SESSION)
        assert await store.get_conversation_context(ORG, SESSION) is None

    async def test_active_sessions_count(
        self, store: ConversationMemoryStore, clock: FakeClock,
    ) -> None:
        await store.save_conversation_context(ORG, "s1", "u1", entity=_entity("a"))
        await store.save_conversation_context(ORG, "s2", "u1", entity=_entity("a"))
        await store.save_conversation_context("org_2", "s3", "u1", entity=_entity("a"))
        assert await store.get_active_sessions_count(ORG) == 2
        clock.advance(31 * 60)
        assert await store.get_active_sessions_count(ORG) == 0


class BrokenStore(InMemoryKeyValueStore):
    async def get(self, key: str) -> str | None:
        raise ConnectionError("down")

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        raise ConnectionError("down")


@pytest.mark.anyio
class TestStoreFailures:
    async def test_failures_are_not_raised(self) -> None:
        store = ConversationMemoryStore(BrokenStore())
        assert await store.get_conversation_context(ORG, SESSION) is None
        assert await store.save_conversation_context(
            ORG, SESSION, "u1", entity=_entity("a"),
        ) is None

    async def test_corrupt_payload_reads_as_absent(self) -> None:
        kv = InMemoryKeyValueStore()
        await kv.setex(conversation_key(ORG, SESSION), 60, "{not json")
        store = ConversationMemoryStore(kv)
        assert await store.get_conversation_context(ORG, SESSION) is None


class TestExtractEntity:
    def test_structured_name_wins(self) -> None:
        entity = extract_entity_from_tool_result("createLead", {
            "success": True,
            "leadId": "L1",
            "message": 'Created lead "Wrong" (ID: L1)',
            "entity": {"id": "L1", "name": "Jane Doe"},
        }, now=5.0)
        assert entity == EntityReference(type=EntityType.LEAD, id="L1", name="Jane Doe", created_at=5.0)

    def test_quoted_name_from_message(self) -> None:
        entity = extract_entity_from_tool_result("createAccount", {
            "success": True, "accountId": "A1", "message": 'Created account "Acme Corp"',
        })
        assert entity.type == EntityType.ACCOUNT
        assert entity.name == "Acme Corp"

    def test_message_prefix_without_quotes(self) -> None:
        message = "Created a task for the quarterly business review with the customer team"
        entity = extract_entity_from_tool_result("createTask", {
            "success": True, "taskId": "T1", "message": message,
        })
        assert entity.name == message[:50]

    def test_search_result_uses_name_key(self) -> None:
        entity = extract_entity_from_tool_result("searchTickets", {
            "success": True, "id": "K1", "subject": "Login broken",
        })
        assert entity.type == EntityType.TICKET
        assert entity.name == "Login broken"

    @pytest.mark.parametrize("tool, result", [
        ("createLead", {"success": False, "leadId": "L1"}),
        ("createLead", {"success": True}),
        ("sendEmail", {"success": True, "id": "x"}),
    ])
    def test_no_entity(self, tool: str, result: dict) -> None:
        assert extract_entity_from_tool_result(tool, result) is None


class TestContextSummary:
    def test_full_summary(self) -> None:
        context = ConversationContext(
            session_id=SESSION, org_id=ORG, user_id="u1",
            recent_entities=[
                EntityReference(type=EntityType.LEAD, id="L1", name="Jane Doe", created_at=0),
            ],
            last_tool_calls=[_call("searchLeads"), _call("t1"), _call("t2", False), _call("t3")],
            metadata=ConversationMetadata(started_at=0, last_activity_at=0, workspace=Workspace.CS),
        )
        summary = build_context_summary(context)
        assert '- LEAD: "Jane Doe" (ID: L1)' in summary
        assert "Current workspace: CS" in summary
        assert "## Recent Actions" in summary
        assert "searchLeads" not in summary
        assert "- ✗ t2" in summary
        assert "- ✓ t3" in summary

    def test_empty_context_is_empty(self) -> None:
        context = ConversationContext(
            session_id=SESSION, org_id=ORG, user_id="u1",
            metadata=ConversationMetadata(started_at=0, last_activity_at=0),
        )
        assert build_context_summary(context) == ""
