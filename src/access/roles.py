"""Role store operations — CRUD rules, default roles, user assignment.

Rules enforced here (API layer only maps errors):
- role names are unique per org (400 on duplicate)
- system roles cannot be renamed, field-restricted or deleted (400)
- a role with assigned users cannot be deleted (409)
- at most one default role per org; setting a default clears the others
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.access.errors import ConflictState, NotFound, ValidationFailed
from src.audit.writer import AuditContext
from src.db.tables import RoleRow, UserRoleRow
from src.memory.search_cache import SearchResultCache
from src.models.access import (
    ADMIN_ONLY_MODULES,
    BUILT_IN_MODULES,
    CreateRoleRequest,
    ModulePermissionIn,
    UpdateRoleRequest,
)
from src.models.common import ALL_ACTIONS, ActionType, AuditAction, AuditModule, RecordVisibility
from src.repositories.roles import RoleRepository, UserRoleRepository

logger = logging.getLogger(__name__)


def _grant(modules, actions, visibility=RecordVisibility.ALL) -> list[ModulePermissionIn]:
    return [
        ModulePermissionIn(module=m, actions=list(actions), record_visibility=visibility)
        for m in modules
    ]


def default_role_templates() -> list[dict]:
    """The four roles every new organization starts with."""
    standard = [m for m in BUILT_IN_MODULES if m not in ADMIN_ONLY_MODULES]
    return [
        {
            "name": "Admin",
            "description": "Full access to all features including settings",
            "is_system": True,
            "is_default": False,
            "permissions": _grant(BUILT_IN_MODULES, ALL_ACTIONS),
        },
        {
            "name": "Manager",
            "description": "Can manage all records but not system settings",
            "is_system": False,
            "is_default": False,
            "permissions": _grant(standard, ALL_ACTIONS),
        },
        {
            "name": "Sales Rep",
            "description": "Standard access for sales team members",
            "is_system": False,
            "is_default": True,
            "permissions": _grant(
                standard,
                (ActionType.VIEW, ActionType.CREATE, ActionType.EDIT),
                RecordVisibility.OWN_ONLY,
            ),
        },
        {
            "name": "Read Only",
            "description": "View-only access to records",
            "is_system": False,
            "is_default": False,
            "permissions": _grant(standard, (ActionType.VIEW,)),
        },
    ]


def role_snapshot(role: RoleRow) -> dict[str, Any]:
    """Audit state of a role and its permission rows."""
    return {
        "id": str(role.role_id),
        "name": role.name,
        "description": role.description,
        "is_default": role.is_default,
        "is_system": role.is_system,
        "permissions": [
            {
                "module": p.module,
                "actions": list(p.actions or []),
                "fields": {"view": p.view_fields, "edit": p.edit_fields},
                "record_visibility": p.record_visibility,
            }
            for p in role.permissions
        ],
    }


def _assignment_snapshot(row: UserRoleRow) -> dict[str, Any]:
    return {
        "user_id": row.user_id,
        "role_id": str(row.role_id),
        "role_name": row.role.name if row.role else None,
    }


class RoleService:
    """Role and assignment rules.

    With an audit context, every change is committed and then audited in
    its own transaction, like record mutations. Without one (the seed
    script) the caller owns the transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        audit: AuditContext | None = None,
        search_cache: SearchResultCache | None = None,
    ) -> None:
        self._session = session
        self._roles = RoleRepository(session)
        self._user_roles = UserRoleRepository(session)
        self._audit = audit
        self._search_cache = search_cache

    async def _changed(
        self,
        org_id: str,
        action: AuditAction,
        record_id: str,
        previous: dict[str, Any] | None = None,
        new: dict[str, Any] | None = None,
    ) -> None:
        if self._audit is not None:
            await self._session.commit()
        # Cached search pages were computed under the old permissions
        if self._search_cache is not None:
            self._search_cache.invalidate(org_id)
        if self._audit is not None:
            await self._audit.log(
                action, AuditModule.ROLE,
                record_id=record_id, previous_state=previous, new_state=new,
            )

    # --- Roles ---

    async def list_roles(self, org_id: str) -> list[RoleRow]:
        return await self._roles.list_for_org(org_id)

    async def get_role(self, org_id: str, role_id: UUID) -> RoleRow:
        role = await self._roles.get(role_id, org_id)
        if role is None:
            raise NotFound("Role not found")
        return role

    async def user_count(self, role: RoleRow) -> int:
        return await self._user_roles.count_for_role(role.role_id)

    async def create_role(self, org_id: str, body: CreateRoleRequest) -> RoleRow:
        if await self._roles.get_by_name(org_id, body.name) is not None:
            raise ConflictState("A role with this name already exists", status_code=400)
        role = await self._roles.create(
            org_id=org_id,
            name=body.name,
            description=body.description,
            is_default=body.is_default,
            permissions=body.permissions,
        )
        logger.info("Created role %s (%s) in org %s", role.name, role.role_id, org_id)
        await self._changed(org_id, AuditAction.CREATE, str(role.role_id), new=role_snapshot(role))
        return role

    async def update_role(self, org_id: str, role_id: UUID, body: UpdateRoleRequest) -> RoleRow:
        role = await self.get_role(org_id, role_id)
        renaming = body.name is not None and body.name != role.name

        if role.is_system and renaming:
            raise ConflictState("Cannot rename system roles", status_code=400)
        if role.is_system and body.permissions and any(
            p.is_field_restricted for p in body.permissions
        ):
            raise ConflictState("Cannot restrict fields on system roles", status_code=400)
        if renaming and await self._roles.get_by_name(org_id, body.name) is not None:
            raise ConflictState("A role with this name already exists", status_code=400)

        previous = role_snapshot(role)
        await self._roles.update(
            role,
            name=body.name if renaming else None,
            description=body.description,
            is_default=body.is_default,
        )
        if body.permissions is not None:
            await self._roles.replace_permissions(role, body.permissions)
        await self._changed(
            org_id, AuditAction.UPDATE, str(role.role_id),
            previous=previous, new=role_snapshot(role),
        )
        return role

    async def delete_role(self, org_id: str, role_id: UUID) -> None:
        role = await self.get_role(org_id, role_id)
        if role.is_system:
            raise ConflictState("Cannot delete system roles", status_code=400)
        if await self._user_roles.count_for_role(role.role_id) > 0:
            raise ConflictState(
                "Cannot delete role with assigned users. Reassign users first."
            )
        previous = role_snapshot(role)
        await self._roles.delete(role)
        logger.info("Deleted role %s in org %s", role_id, org_id)
        await self._changed(org_id, AuditAction.DELETE, str(role_id), previous=previous)

    async def create_default_roles(self, org_id: str) -> list[RoleRow]:
        """Bootstrap the default role set. Names that already exist are skipped."""
        created = []
        for template in default_role_templates():
            if await self._roles.get_by_name(org_id, template["name"]) is not None:
                continue
            created.append(await self._roles.create(org_id=org_id, **template))
        logger.info("Created %d default roles for org %s", len(created), org_id)
        for role in created:
            await self._changed(
                org_id, AuditAction.CREATE, str(role.role_id), new=role_snapshot(role),
            )
        return created

    # --- Assignments ---

    async def _assign(self, org_id: str, user_id: str, role: RoleRow) -> UserRoleRow:
        existing = await self._user_roles.get_for_user(user_id, org_id)
        previous = _assignment_snapshot(existing) if existing is not None else None
        row = await self._user_roles.upsert(user_id=user_id, org_id=org_id, role_id=role.role_id)
        await self._changed(
            org_id,
            AuditAction.UPDATE if previous else AuditAction.CREATE,
            user_id,
            previous=previous,
            new={"user_id": user_id, "role_id": str(role.role_id), "role_name": role.name},
        )
        return row

    async def assign_role(self, org_id: str, user_id: str, role_id: UUID) -> UserRoleRow:
        role = await self._roles.get(role_id, org_id)
        if role is None:
            raise ValidationFailed("Invalid role")
        return await self._assign(org_id, user_id, role)

    async def assign_default_role(self, org_id: str, user_id: str) -> UserRoleRow | None:
        """Give a new user the org's default role.

        Falls back to the first non-system role. Returns None when the org
        has no candidate role. Existing assignments are left untouched.
        """
        existing = await self._user_roles.get_for_user(user_id, org_id)
        if existing is not None:
            return existing
        role = await self._roles.get_default(org_id)
        if role is None:
            role = await self._roles.get_first_non_system(org_id)
        if role is None:
            logger.warning("No default role in org %s; %s left unassigned", org_id, user_id)
            return None
        return await self._assign(org_id, user_id, role)

    async def remove_user(self, org_id: str, user_id: str, *, acting_user_id: str) -> None:
        if user_id == acting_user_id:
            raise ConflictState(
                "You cannot remove yourself from the organization", status_code=400,
            )
        existing = await self._user_roles.get_for_user(user_id, org_id)
        if existing is None:
            raise NotFound("User not found in organization")
        previous = _assignment_snapshot(existing)
        await self._user_roles.delete_for_user(user_id, org_id)
        await self._changed(org_id, AuditAction.DELETE, user_id, previous=previous)
