"""Business record schemas and the record module registry.

Records of every registered module share one table (see RecordRow); the
per-module pydantic schemas here validate payloads before they reach it.
Update schemas are the create schemas with no required fields.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, HttpUrl, create_model

from src.models.common import AuditModule, CRMBase, Workspace

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LeadSource(StrEnum):
    REFERRAL = "REFERRAL"
    WEBSITE = "WEBSITE"
    COLD_CALL = "COLD_CALL"
    LINKEDIN = "LINKEDIN"
    TRADE_SHOW = "TRADE_SHOW"
    ADVERTISEMENT = "ADVERTISEMENT"
    EMAIL_CAMPAIGN = "EMAIL_CAMPAIGN"
    OTHER = "OTHER"


class LeadStatus(StrEnum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    CONVERTED = "CONVERTED"
    LOST = "LOST"


class AccountType(StrEnum):
    PROSPECT = "PROSPECT"
    CUSTOMER = "CUSTOMER"
    PARTNER = "PARTNER"
    VENDOR = "VENDOR"


class AccountRating(StrEnum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"


class Priority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TicketStatus(StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_ON_CUSTOMER = "WAITING_ON_CUSTOMER"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskType(StrEnum):
    CALL = "CALL"
    EMAIL = "EMAIL"
    MEETING = "MEETING"
    FOLLOW_UP = "FOLLOW_UP"
    OTHER = "OTHER"


class EmploymentType(StrEnum):
    FULL_TIME = "FULL_TIME"
    PART_TIME = "PART_TIME"
    CONTRACT = "CONTRACT"
    INTERN = "INTERN"


class EmployeeStatus(StrEnum):
    ACTIVE = "ACTIVE"
    ON_LEAVE = "ON_LEAVE"
    TERMINATED = "TERMINATED"
    RESIGNED = "RESIGNED"


# ---------------------------------------------------------------------------
# Create schemas
# ---------------------------------------------------------------------------


class Address(CRMBase):
    street: str | None = Field(default=None, max_length=200)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    zip: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=100)


class CreateLead(CRMBase):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=30)
    company: str | None = Field(default=None, max_length=200)
    title: str | None = Field(default=None, max_length=200)
    source: LeadSource | None = None
    status: LeadStatus = LeadStatus.NEW
    assigned_to_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class CreateContact(CRMBase):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=30)
    title: str | None = Field(default=None, max_length=200)
    department: str | None = Field(default=None, max_length=200)
    account_id: UUID | None = None
    is_primary: bool = False
    assigned_to_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class CreateAccount(CRMBase):
    name: str = Field(..., min_length=1, max_length=200)
    industry: str | None = Field(default=None, max_length=100)
    website: HttpUrl | None = None
    phone: str | None = Field(default=None, max_length=30)
    address: Address | None = None
    annual_revenue: float | None = Field(default=None, gt=0)
    employee_count: int | None = Field(default=None, gt=0)
    type: AccountType | None = None
    rating: AccountRating | None = None
    assigned_to_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class CreateTicket(CRMBase):
    subject: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    account_id: UUID
    contact_id: UUID | None = None
    priority: Priority = Priority.MEDIUM
    status: TicketStatus = TicketStatus.OPEN
    category: str | None = None
    assigned_to_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class CreateTask(CRMBase):
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    due_date: datetime | None = None
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    task_type: TaskType | None = None
    lead_id: UUID | None = None
    contact_id: UUID | None = None
    account_id: UUID | None = None
    assigned_to_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class CreateEmployee(CRMBase):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str | None = None
    address: Address | None = None
    employee_id: str = Field(..., min_length=1)
    department: str | None = None
    position: str | None = None
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    join_date: datetime
    salary: float | None = None
    currency: str = "USD"
    manager_id: str | None = None
    assigned_to_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


def partial_model(model: type[BaseModel]) -> type[BaseModel]:
    """Derive an update schema: same fields, none required.

    Annotations are kept, so an explicit null is accepted only where the
    create schema accepts one. Omitted fields stay unset.
    """
    fields: dict[str, Any] = {
        name: (info.annotation, Field(default=None, **_constraints(info)))
        for name, info in model.model_fields.items()
    }
    return create_model(f"Update{model.__name__.removeprefix('Create')}", __base__=CRMBase, **fields)


def _constraints(info) -> dict[str, Any]:
    # Carry min/max length and bounds across to the optional field
    kwargs: dict[str, Any] = {}
    for meta in info.metadata:
        for attr in ("min_length", "max_length", "gt", "ge", "lt", "le"):
            value = getattr(meta, attr, None)
            if value is not None:
                kwargs[attr] = value
    return kwargs


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecordModule:
    """A business module served by the generic record routes and tools."""

    name: str
    entity_type: str
    audit_module: AuditModule
    workspace: Workspace
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    name_fields: tuple[str, ...]
    search_fields: tuple[str, ...]
    unique_keys: tuple[str, ...] = ()

    def display_name(self, data: dict[str, Any]) -> str:
        parts = [str(data[f]) for f in self.name_fields if data.get(f)]
        return " ".join(parts) or self.entity_type.title()


def _module(name, entity_type, audit_module, workspace, schema, name_fields,
            search_fields, unique_keys=()) -> RecordModule:
    return RecordModule(
        name=name,
        entity_type=entity_type,
        audit_module=audit_module,
        workspace=workspace,
        create_schema=schema,
        update_schema=partial_model(schema),
        name_fields=name_fields,
        search_fields=search_fields,
        unique_keys=unique_keys,
    )


RECORD_MODULES: dict[str, RecordModule] = {
    m.name: m
    for m in (
        _module("leads", "LEAD", AuditModule.LEAD, Workspace.SALES, CreateLead,
                ("first_name", "last_name"),
                ("first_name", "last_name", "email", "company"),
                unique_keys=("email",)),
        _module("contacts", "CONTACT", AuditModule.CONTACT, Workspace.SALES, CreateContact,
                ("first_name", "last_name"),
                ("first_name", "last_name", "email")),
        _module("accounts", "ACCOUNT", AuditModule.ACCOUNT, Workspace.SALES, CreateAccount,
                ("name",), ("name", "industry")),
        _module("tickets", "TICKET", AuditModule.TICKET, Workspace.CS, CreateTicket,
                ("subject",), ("subject", "description", "category")),
        _module("tasks", "TASK", AuditModule.TASK, Workspace.SALES, CreateTask,
                ("title",), ("title", "description")),
        _module("employees", "EMPLOYEE", AuditModule.EMPLOYEE, Workspace.HR, CreateEmployee,
                ("first_name", "last_name"),
                ("first_name", "last_name", "email", "employee_id", "department"),
                unique_keys=("email", "employee_id")),
    )
}


def get_record_module(name: str) -> RecordModule | None:
    return RECORD_MODULES.get(name)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def record_to_dict(row: Any) -> dict[str, Any]:
    """Flat API shape of a record row."""
    return {
        "id": str(row.record_id),
        "assigned_to_id": row.assigned_to_id,
        **(row.data or {}),
        "created_at": row.created_at.isoformat(),
        "updated_at": row.updated_at.isoformat(),
    }


class RecordPage(CRMBase):
    data: list[dict[str, Any]]
    total: int
    page: int
    limit: int
    total_pages: int
