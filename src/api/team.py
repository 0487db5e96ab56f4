"""Team role assignment endpoints.

PUT    /v1/team/{user_id}/role     — assign a role (settings:edit)
POST   /v1/team/{user_id}/onboard  — assign the org's default role
DELETE /v1/team/{user_id}          — remove a user's assignment (settings:delete)
GET    /v1/me/permissions          — the caller's resolved permissions
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.access.resolver import PermissionResolver
from src.access.roles import RoleService
from src.api.dependencies import get_caller, get_resolver, get_role_service, require_permission
from src.db.tables import UserRoleRow
from src.models.access import Caller, module_permission_to_dict
from src.models.common import ActionType

router = APIRouter(prefix="/v1", tags=["team"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class AssignRoleRequest(BaseModel):
    role_id: UUID


class RoleRef(BaseModel):
    id: str
    name: str


class UserRoleResponse(BaseModel):
    user_id: str
    role: RoleRef | None = None


class AssignRoleResponse(BaseModel):
    success: bool = True
    user_role: UserRoleResponse | None = None


class RemoveUserResponse(BaseModel):
    success: bool = True


class MyPermissionsResponse(BaseModel):
    user_id: str
    org_id: str
    role: RoleRef | None = None
    is_admin: bool
    permissions: list[dict]


def _user_role(row: UserRoleRow | None) -> UserRoleResponse | None:
    if row is None:
        return None
    role = RoleRef(id=str(row.role.role_id), name=row.role.name) if row.role else None
    return UserRoleResponse(user_id=row.user_id, role=role)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.put("/team/{user_id}/role", response_model=AssignRoleResponse)
async def assign_role(
    user_id: str,
    body: AssignRoleRequest,
    caller: Caller = Depends(require_permission("settings", ActionType.EDIT)),
    service: RoleService = Depends(get_role_service),
) -> AssignRoleResponse:
    row = await service.assign_role(caller.org_id, user_id, body.role_id)
    return AssignRoleResponse(user_role=_user_role(row))


@router.post("/team/{user_id}/onboard", response_model=AssignRoleResponse)
async def onboard_user(
    user_id: str,
    caller: Caller = Depends(require_permission("settings", ActionType.EDIT)),
    service: RoleService = Depends(get_role_service),
) -> AssignRoleResponse:
    row = await service.assign_default_role(caller.org_id, user_id)
    return AssignRoleResponse(success=row is not None, user_role=_user_role(row))


@router.delete("/team/{user_id}", response_model=RemoveUserResponse)
async def remove_user(
    user_id: str,
    caller: Caller = Depends(require_permission("settings", ActionType.DELETE)),
    service: RoleService = Depends(get_role_service),
) -> RemoveUserResponse:
    await service.remove_user(caller.org_id, user_id, acting_user_id=caller.user_id)
    return RemoveUserResponse()


@router.get("/me/permissions", response_model=MyPermissionsResponse)
async def my_permissions(
    caller: Caller = Depends(get_caller),
    resolver: PermissionResolver = Depends(get_resolver),
) -> MyPermissionsResponse:
    resolved = await resolver.resolve(caller.user_id, caller.org_id)
    return MyPermissionsResponse(
        user_id=caller.user_id,
        org_id=caller.org_id,
        role=(
            RoleRef(id=resolved.role.role_id, name=resolved.role.name)
            if resolved.role else None
        ),
        is_admin=resolved.is_admin,
        permissions=[
            module_permission_to_dict(module, perm)
            for module, perm in sorted(resolved.permissions.items())
        ],
    )
