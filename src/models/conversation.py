"""Conversation memory models for the assistant."""

from enum import StrEnum
from typing import Any

from pydantic import Field

from src.models.common import CRMBase, Workspace


class EntityType(StrEnum):
    LEAD = "LEAD"
    CONTACT = "CONTACT"
    ACCOUNT = "ACCOUNT"
    OPPORTUNITY = "OPPORTUNITY"
    TICKET = "TICKET"
    TASK = "TASK"
    CAMPAIGN = "CAMPAIGN"
    SEGMENT = "SEGMENT"
    FORM = "FORM"
    EMPLOYEE = "EMPLOYEE"


class EntityReference(CRMBase):
    """A record the assistant touched, for follow-up references."""

    type: EntityType
    id: str
    name: str
    created_at: float


class ToolCallRecord(CRMBase):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)
    timestamp: float

    @property
    def succeeded(self) -> bool:
        return bool(self.result.get("success"))


class ChatMessage(CRMBase):
    role: str
    content: Any


class ConversationMetadata(CRMBase):
    started_at: float
    last_activity_at: float
    message_count: int = 0
    workspace: Workspace | None = None


class ConversationContext(CRMBase):
    """Per-session assistant state kept in the TTL store."""

    session_id: str
    org_id: str
    user_id: str
    messages: list[ChatMessage] = Field(default_factory=list)
    last_tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    recent_entities: list[EntityReference] = Field(default_factory=list)
    metadata: ConversationMetadata
