"""Shared types, enums, and base models used across the CRM core domain models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]


# --- Shared enums ---


class ActionType(StrEnum):
    """Actions a role can be granted on a module."""

    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


ALL_ACTIONS: tuple[ActionType, ...] = (
    ActionType.VIEW,
    ActionType.CREATE,
    ActionType.EDIT,
    ActionType.DELETE,
)


class RecordVisibility(StrEnum):
    """Which records of a module a role may see."""

    ALL = "ALL"
    OWN_ONLY = "OWN_ONLY"
    UNASSIGNED = "UNASSIGNED"


class ActorType(StrEnum):
    """Who performed an audited operation."""

    USER = "USER"
    AI_AGENT = "AI_AGENT"
    SYSTEM = "SYSTEM"
    API = "API"


class AuditAction(StrEnum):
    """Audited operation kinds."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    VOICE_COMMAND = "VOICE_COMMAND"
    AI_EXECUTION = "AI_EXECUTION"
    AI_EXECUTION_COMPLETE = "AI_EXECUTION_COMPLETE"
    AI_EXECUTION_FAILED = "AI_EXECUTION_FAILED"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    IMPORT = "IMPORT"
    EXPORT = "EXPORT"


class AuditModule(StrEnum):
    """Entity classifier recorded on every audit entry."""

    LEAD = "LEAD"
    CONTACT = "CONTACT"
    ACCOUNT = "ACCOUNT"
    OPPORTUNITY = "OPPORTUNITY"
    TASK = "TASK"
    NOTE = "NOTE"
    ACTIVITY = "ACTIVITY"
    DOCUMENT = "DOCUMENT"
    CUSTOM_MODULE = "CUSTOM_MODULE"
    CUSTOM_MODULE_RECORD = "CUSTOM_MODULE_RECORD"
    CUSTOM_FIELD = "CUSTOM_FIELD"
    # Customer Success
    TICKET = "TICKET"
    TICKET_MESSAGE = "TICKET_MESSAGE"
    ACCOUNT_HEALTH = "ACCOUNT_HEALTH"
    PLAYBOOK = "PLAYBOOK"
    PLAYBOOK_RUN = "PLAYBOOK_RUN"
    RENEWAL = "RENEWAL"
    # Marketing
    CAMPAIGN = "CAMPAIGN"
    SEGMENT = "SEGMENT"
    FORM = "FORM"
    FORM_SUBMISSION = "FORM_SUBMISSION"
    # HR
    EMPLOYEE = "EMPLOYEE"
    LEAVE = "LEAVE"
    PAYROLL = "PAYROLL"
    # System
    ROLE = "ROLE"
    SYSTEM = "SYSTEM"
    AUTH = "AUTH"


class Workspace(StrEnum):
    """CRM workspaces a conversation or task belongs to."""

    SALES = "sales"
    CS = "cs"
    MARKETING = "marketing"
    HR = "hr"


# --- Base model ---


class CRMBase(BaseModel):
    """Base model with common configuration for all CRM core Pydantic models."""

    model_config = {
        "populate_by_name": True,
        "ser_json_timedelta": "iso8601",
        "protected_namespaces": (),
    }
