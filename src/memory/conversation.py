"""Conversation memory — short-lived per-session context for the assistant.

Session lifecycle: ABSENT → ACTIVE on the first save, ACTIVE → ACTIVE on
every later save (TTL refreshed), ACTIVE → EXPIRED when the TTL lapses and
ACTIVE → ABSENT on an explicit clear.

Saves are read-modify-write without locking: one writer per session is
assumed, and concurrent writers to the same session are last-write-wins.
Store failures are logged and reported as None/False, never raised.
"""

import logging
import re
import time
from collections.abc import Callable
from typing import Any

from src.config.settings import Settings
from src.memory.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from src.models.common import Workspace
from src.models.conversation import (
    ChatMessage,
    ConversationContext,
    ConversationMetadata,
    EntityReference,
    EntityType,
    ToolCallRecord,
)

logger = logging.getLogger(__name__)

_QUOTED = re.compile(r'"([^"]+)"')

# tool name → (entity type, id key, name key)
TOOL_ENTITY_MAP: dict[str, tuple[EntityType, str, str]] = {
    "createLead": (EntityType.LEAD, "leadId", "message"),
    "searchLeads": (EntityType.LEAD, "id", "name"),
    "updateLead": (EntityType.LEAD, "leadId", "message"),
    "createContact": (EntityType.CONTACT, "contactId", "message"),
    "searchContacts": (EntityType.CONTACT, "id", "name"),
    "updateContact": (EntityType.CONTACT, "contactId", "message"),
    "createAccount": (EntityType.ACCOUNT, "accountId", "message"),
    "searchAccounts": (EntityType.ACCOUNT, "id", "name"),
    "updateAccount": (EntityType.ACCOUNT, "accountId", "message"),
    "createOpportunity": (EntityType.OPPORTUNITY, "opportunityId", "message"),
    "searchOpportunities": (EntityType.OPPORTUNITY, "id", "name"),
    "createTicket": (EntityType.TICKET, "ticketId", "message"),
    "searchTickets": (EntityType.TICKET, "id", "subject"),
    "updateTicket": (EntityType.TICKET, "ticketId", "message"),
    "createTask": (EntityType.TASK, "taskId", "message"),
    "searchTasks": (EntityType.TASK, "id", "title"),
    "updateTask": (EntityType.TASK, "taskId", "message"),
    "createCampaign": (EntityType.CAMPAIGN, "campaignId", "message"),
    "searchCampaigns": (EntityType.CAMPAIGN, "id", "name"),
    "createSegment": (EntityType.SEGMENT, "segmentId", "message"),
    "searchSegments": (EntityType.SEGMENT, "id", "name"),
    "createForm": (EntityType.FORM, "formId", "message"),
    "searchForms": (EntityType.FORM, "id", "name"),
}


def conversation_key(org_id: str, session_id: str) -> str:
    return f"conv:{org_id}:{session_id}"


def extract_entity_from_tool_result(
    tool_name: str,
    result: dict[str, Any],
    now: float | None = None,
) -> EntityReference | None:
    """Entity reference for a successful tool result, or None.

    A structured ``entity.name`` in the result wins. Otherwise a ``message``
    name key yields its first double-quoted substring, falling back to the
    first 50 characters of the message.
    """
    if not result.get("success"):
        return None
    mapping = TOOL_ENTITY_MAP.get(tool_name)
    if mapping is None:
        return None
    entity_type, id_key, name_key = mapping

    entity_id = result.get(id_key)
    if not entity_id:
        return None

    name = ""
    structured = result.get("entity")
    if isinstance(structured, dict) and structured.get("name"):
        name = str(structured["name"])
    elif name_key == "message" and isinstance(result.get("message"), str):
        message = result["message"]
        match = _QUOTED.search(message)
        name = match.group(1) if match else message[:50]
    elif result.get(name_key):
        name = str(result[name_key])

    return EntityReference(
        type=entity_type,
        id=str(entity_id),
        name=name,
        created_at=now if now is not None else time.time(),
    )


def build_context_summary(context: ConversationContext) -> str:
    """Prompt-ready block describing recent entities, workspace and actions."""
    parts: list[str] = []

    if context.recent_entities:
        parts.append("## Recent Records Referenced")
        for entity in context.recent_entities:
            parts.append(f'- {entity.type.value}: "{entity.name}" (ID: {entity.id})')
        parts.append("")

    if context.metadata.workspace:
        parts.append(f"Current workspace: {context.metadata.workspace.value.upper()}")
        parts.append("")

    if context.last_tool_calls:
        parts.append("## Recent Actions")
        for call in context.last_tool_calls[-3:]:
            parts.append(f"- {'✓' if call.succeeded else '✗'} {call.name}")
        parts.append("")

    return "\n".join(parts)


class ConversationMemoryStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        ttl_seconds: int = 30 * 60,
        max_messages: int = 10,
        max_tool_calls: int = 5,
        max_entities: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages
        self.max_tool_calls = max_tool_calls
        self.max_entities = max_entities
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConversationMemoryStore":
        kv: KeyValueStore
        if settings.REDIS_URL:
            kv = RedisKeyValueStore.from_url(settings.REDIS_URL)
        else:
            kv = InMemoryKeyValueStore()
        return cls(
            kv,
            ttl_seconds=settings.CONVERSATION_TTL_SECONDS,
            max_messages=settings.CONVERSATION_MAX_MESSAGES,
            max_tool_calls=settings.CONVERSATION_MAX_TOOL_CALLS,
            max_entities=settings.CONVERSATION_MAX_ENTITIES,
        )

    async def get_conversation_context(
        self, org_id: str, session_id: str,
    ) -> ConversationContext | None:
        try:
            data = await self._kv.get(conversation_key(org_id, session_id))
            if not data:
                return None
            context = ConversationContext.model_validate_json(data)
        except Exception:
            logger.exception("Error getting conversation context for session %s", session_id)
            return None
        logger.debug(
            "Loaded context for session %s: %d messages",
            session_id, context.metadata.message_count,
        )
        return context

    async def save_conversation_context(
        self,
        org_id: str,
        session_id: str,
        user_id: str,
        *,
        messages: list[ChatMessage] | None = None,
        tool_call: ToolCallRecord | None = None,
        entity: EntityReference | None = None,
        workspace: Workspace | None = None,
    ) -> ConversationContext | None:
        try:
            now = self._clock()
            context = await self.get_conversation_context(org_id, session_id)
            if context is None:
                context = ConversationContext(
                    session_id=session_id,
                    org_id=org_id,
                    user_id=user_id,
                    metadata=ConversationMetadata(started_at=now, last_activity_at=now),
                )

            if messages:
                context.messages = (context.messages + messages)[-self.max_messages:]
                context.metadata.message_count += len(messages)

            if tool_call is not None:
                context.last_tool_calls = (
                    context.last_tool_calls + [tool_call]
                )[-self.max_tool_calls:]

            if entity is not None:
                kept = [
                    e for e in context.recent_entities
                    if not (e.type == entity.type and e.id == entity.id)
                ]
                context.recent_entities = (kept + [entity])[-self.max_entities:]

            if workspace is not None:
                context.metadata.workspace = workspace

            context.metadata.last_activity_at = now
            await self._kv.setex(
                conversation_key(org_id, session_id),
                self.ttl_seconds,
                context.model_dump_json(),
            )
        except Exception:
            logger.exception("Error saving conversation context for session %s", session_id)
            return None
        return context

    async def clear_conversation_context(self, org_id: str, session_id: str) -> bool:
        try:
            await self._kv.delete(conversation_key(org_id, session_id))
        except Exception:
            logger.exception("Error clearing conversation context for session %s", session_id)
            return False
        logger.info("Cleared conversation context for session %s", session_id)
        return True

    async def extend_conversation_ttl(self, org_id: str, session_id: str) -> bool:
        try:
            return await self._kv.expire(
                conversation_key(org_id, session_id), self.ttl_seconds,
            )
        except Exception:
            logger.exception("Error extending TTL for session %s", session_id)
            return False

    async def get_active_sessions_count(self, org_id: str) -> int:
        try:
            return await self._kv.count(f"conv:{org_id}:*")
        except Exception:
            logger.exception("Error counting active sessions for org %s", org_id)
            return 0

    async def close(self) -> None:
        await self._kv.close()
