"""Access-control models — roles, module permissions, field masks.

A field mask is either AllFields (no restriction) or a FieldSet naming the
allowed fields. Persisted masks are nullable JSON lists: null means all
fields, a list (possibly empty) is an explicit allow set.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import Field, field_validator
from sqlalchemy import ColumnElement, true

from src.models.common import ALL_ACTIONS, ActionType, ActorType, CRMBase, RecordVisibility

# ---------------------------------------------------------------------------
# Module catalogue
# ---------------------------------------------------------------------------

BUILT_IN_MODULES: tuple[str, ...] = (
    # Sales
    "leads",
    "contacts",
    "accounts",
    "opportunities",
    "invoices",
    "inventory",
    # Customer Success
    "tickets",
    "health_scores",
    "renewals",
    "playbooks",
    # Marketing
    "campaigns",
    "segments",
    "forms",
    # HR
    "employees",
    "leaves",
    "payroll",
    # Shared
    "tasks",
    "documents",
    "reports",
    "settings",
    "ai_assistant",
)

# Modules only admins get in the default role set
ADMIN_ONLY_MODULES: frozenset[str] = frozenset({"settings", "ai_assistant"})


# ---------------------------------------------------------------------------
# Field masks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllFields:
    """No field restriction."""

    def allows(self, name: str) -> bool:
        return True

    def to_json(self) -> None:
        return None


@dataclass(frozen=True)
class FieldSet:
    """Explicit allow set. An empty set allows nothing."""

    fields: frozenset[str] = field(default_factory=frozenset)

    def allows(self, name: str) -> bool:
        return name in self.fields

    def to_json(self) -> list[str]:
        return sorted(self.fields)


FieldMask = AllFields | FieldSet

ALL_FIELDS = AllFields()
NO_FIELDS = FieldSet()


def field_mask_from_json(value: list[str] | None) -> FieldMask:
    """Build a mask from its persisted form (None = all fields)."""
    if value is None:
        return ALL_FIELDS
    return FieldSet(frozenset(value))


# ---------------------------------------------------------------------------
# Resolved permissions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModulePermission:
    """Effective permission of one role on one module."""

    actions: frozenset[ActionType]
    view_fields: FieldMask = ALL_FIELDS
    edit_fields: FieldMask = ALL_FIELDS
    record_visibility: RecordVisibility = RecordVisibility.ALL

    def fields_for(self, action: str) -> FieldMask:
        return self.view_fields if action == ActionType.VIEW else self.edit_fields


FULL_ACCESS = ModulePermission(actions=frozenset(ALL_ACTIONS))


@dataclass(frozen=True)
class RoleSummary:
    role_id: str
    name: str
    is_system: bool


@dataclass(frozen=True)
class UserPermissions:
    """Everything the resolver knows about one user in one org."""

    role: RoleSummary | None
    permissions: dict[str, ModulePermission]
    is_admin: bool


@dataclass(frozen=True)
class PermissionContext:
    """Per-request decision for one (module, action) pair.

    A denied context carries empty field sets (show nothing), which is
    distinct from AllFields (permitted, no field restriction).
    """

    allowed: bool
    view_fields: FieldMask
    edit_fields: FieldMask
    record_visibility: RecordVisibility
    visibility_filter: ColumnElement[bool]


def denied_context() -> PermissionContext:
    return PermissionContext(
        allowed=False,
        view_fields=NO_FIELDS,
        edit_fields=NO_FIELDS,
        record_visibility=RecordVisibility.ALL,
        visibility_filter=true(),
    )


# ---------------------------------------------------------------------------
# Role payloads
# ---------------------------------------------------------------------------


class FieldsConfig(CRMBase):
    """Persisted field masks. None (or missing) means all fields."""

    view: list[str] | None = None
    edit: list[str] | None = None


class ModulePermissionIn(CRMBase):
    module: str = Field(..., min_length=1, max_length=100)
    actions: list[ActionType] = Field(default_factory=list)
    fields: FieldsConfig | None = None
    record_visibility: RecordVisibility = RecordVisibility.ALL

    @field_validator("actions")
    @classmethod
    def _dedupe_actions(cls, value: list[ActionType]) -> list[ActionType]:
        return list(dict.fromkeys(value))

    @property
    def is_field_restricted(self) -> bool:
        return self.fields is not None and (
            self.fields.view is not None or self.fields.edit is not None
        )


class CreateRoleRequest(CRMBase):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_default: bool = False
    permissions: list[ModulePermissionIn] = Field(default_factory=list)


class UpdateRoleRequest(CRMBase):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_default: bool | None = None
    permissions: list[ModulePermissionIn] | None = None


def module_permission_to_dict(module: str, perm: ModulePermission) -> dict[str, Any]:
    """Render a resolved permission for API responses."""
    return {
        "module": module,
        "actions": sorted(a.value for a in perm.actions),
        "fields": {
            "view": perm.view_fields.to_json(),
            "edit": perm.edit_fields.to_json(),
        },
        "record_visibility": perm.record_visibility.value,
    }


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Caller:
    """Authenticated identity a request or tool call acts as."""

    user_id: str
    org_id: str
    actor_type: ActorType = ActorType.USER
    request_id: str | None = None
