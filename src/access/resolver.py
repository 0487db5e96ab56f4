"""Permission resolver — effective permissions of one user in one org.

A resolver is created per request (see src/api/dependencies.py) and
memoises resolve() for that request only. Nothing is cached across
requests, so a role change is visible on the very next request.

Fail-closed rules:
- no role assignment → every check denies
- no ModulePermission row for a module → zero actions on that module
- admin (role named "admin" in any case, or a system role) → full access
"""

import logging

from sqlalchemy import ColumnElement
from sqlalchemy.ext.asyncio import AsyncSession

from src.access.errors import PermissionDenied
from src.access.guard import build_visibility_filter
from src.db.tables import RecordRow, RoleRow
from src.models.access import (
    FULL_ACCESS,
    NO_FIELDS,
    FieldMask,
    ModulePermission,
    PermissionContext,
    RoleSummary,
    UserPermissions,
    denied_context,
    field_mask_from_json,
)
from src.models.common import ActionType, RecordVisibility
from src.repositories.roles import UserRoleRepository

logger = logging.getLogger(__name__)

_ACTION_VALUES = frozenset(a.value for a in ActionType)
_VISIBILITY_VALUES = frozenset(v.value for v in RecordVisibility)

NO_ROLE = UserPermissions(role=None, permissions={}, is_admin=False)


def is_admin_role(role: RoleRow) -> bool:
    return role.name.lower() == "admin" or role.is_system


def build_user_permissions(role: RoleRow) -> UserPermissions:
    """Translate a persisted role into resolved permissions."""
    permissions: dict[str, ModulePermission] = {}
    for row in role.permissions:
        visibility = row.record_visibility or RecordVisibility.ALL.value
        permissions[row.module] = ModulePermission(
            actions=frozenset(
                ActionType(a) for a in row.actions or [] if a in _ACTION_VALUES
            ),
            view_fields=field_mask_from_json(row.view_fields),
            edit_fields=field_mask_from_json(row.edit_fields),
            record_visibility=(
                RecordVisibility(visibility)
                if visibility in _VISIBILITY_VALUES
                else RecordVisibility.ALL
            ),
        )
    return UserPermissions(
        role=RoleSummary(role_id=str(role.role_id), name=role.name, is_system=role.is_system),
        permissions=permissions,
        is_admin=is_admin_role(role),
    )


class PermissionResolver:
    """Request-scoped permission lookups over the role store."""

    def __init__(self, session: AsyncSession) -> None:
        self._user_roles = UserRoleRepository(session)
        self._cache: dict[tuple[str, str], UserPermissions] = {}

    async def resolve(self, user_id: str, org_id: str) -> UserPermissions:
        key = (user_id, org_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        assignment = await self._user_roles.get_for_user(user_id, org_id)
        if assignment is None or assignment.role is None:
            resolved = NO_ROLE
        else:
            resolved = build_user_permissions(assignment.role)

        logger.debug(
            "Resolved permissions user=%s org=%s role=%s admin=%s",
            user_id, org_id,
            resolved.role.name if resolved.role else None,
            resolved.is_admin,
        )
        self._cache[key] = resolved
        return resolved

    async def get_module_permission(
        self, user_id: str, org_id: str, module: str,
    ) -> ModulePermission | None:
        resolved = await self.resolve(user_id, org_id)
        if resolved.is_admin:
            return FULL_ACCESS
        return resolved.permissions.get(module)

    async def check_permission(
        self, user_id: str, org_id: str, module: str, action: ActionType,
    ) -> bool:
        perm = await self.get_module_permission(user_id, org_id, module)
        return perm is not None and action in perm.actions

    async def require_permission(
        self, user_id: str, org_id: str, module: str, action: ActionType,
    ) -> None:
        if not await self.check_permission(user_id, org_id, module, action):
            raise PermissionDenied(
                f"You don't have permission to {ActionType(action).value} {module}"
            )

    async def get_allowed_fields(
        self, user_id: str, org_id: str, module: str, field_type: str,
    ) -> FieldMask:
        """View or edit mask for *module*; no permission means no fields."""
        perm = await self.get_module_permission(user_id, org_id, module)
        if perm is None:
            return NO_FIELDS
        return perm.fields_for(field_type)

    async def get_record_visibility(
        self, user_id: str, org_id: str, module: str,
    ) -> RecordVisibility:
        perm = await self.get_module_permission(user_id, org_id, module)
        return perm.record_visibility if perm else RecordVisibility.ALL

    async def can_access_field(
        self, user_id: str, org_id: str, module: str, field: str, field_type: str,
    ) -> bool:
        mask = await self.get_allowed_fields(user_id, org_id, module, field_type)
        return mask.allows(field)

    async def get_permission_context(
        self,
        user_id: str,
        org_id: str,
        module: str,
        action: ActionType,
        owner_column: ColumnElement | None = None,
    ) -> PermissionContext:
        """Everything a route needs to enforce (module, action).

        Denied contexts carry empty field sets, never AllFields.
        """
        perm = await self.get_module_permission(user_id, org_id, module)
        if perm is None or action not in perm.actions:
            return denied_context()

        column = owner_column if owner_column is not None else RecordRow.assigned_to_id
        return PermissionContext(
            allowed=True,
            view_fields=perm.view_fields,
            edit_fields=perm.edit_fields,
            record_visibility=perm.record_visibility,
            visibility_filter=build_visibility_filter(
                perm.record_visibility, user_id, column,
            ),
        )
