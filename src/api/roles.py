"""Role management endpoints.

GET    /v1/roles             — list roles with user counts
POST   /v1/roles             — create role
POST   /v1/roles/defaults    — bootstrap the default role set
GET    /v1/roles/{id}        — role detail
PUT    /v1/roles/{id}        — update role, replacing its permissions
DELETE /v1/roles/{id}        — delete role

All routes are guarded by the ``settings`` module permission.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.access.roles import RoleService
from src.api.dependencies import get_role_service, require_permission
from src.db.tables import RoleRow
from src.models.access import Caller, CreateRoleRequest, UpdateRoleRequest
from src.models.common import ActionType

router = APIRouter(prefix="/v1/roles", tags=["roles"])

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class PermissionFieldsOut(BaseModel):
    view: list[str] | None = None
    edit: list[str] | None = None


class ModulePermissionOut(BaseModel):
    module: str
    actions: list[str]
    fields: PermissionFieldsOut
    record_visibility: str


class RoleResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    is_default: bool
    is_system: bool
    user_count: int
    permissions: list[ModulePermissionOut]
    created_at: datetime
    updated_at: datetime


class RoleListResponse(BaseModel):
    roles: list[RoleResponse]


class DeleteRoleResponse(BaseModel):
    success: bool = True


def _role_response(role: RoleRow, user_count: int) -> RoleResponse:
    return RoleResponse(
        id=str(role.role_id),
        name=role.name,
        description=role.description,
        is_default=role.is_default,
        is_system=role.is_system,
        user_count=user_count,
        permissions=[
            ModulePermissionOut(
                module=p.module,
                actions=list(p.actions or []),
                fields=PermissionFieldsOut(view=p.view_fields, edit=p.edit_fields),
                record_visibility=p.record_visibility,
            )
            for p in role.permissions
        ],
        created_at=role.created_at,
        updated_at=role.updated_at,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=RoleListResponse)
async def list_roles(
    caller: Caller = Depends(require_permission("settings", ActionType.VIEW)),
    service: RoleService = Depends(get_role_service),
) -> RoleListResponse:
    roles = await service.list_roles(caller.org_id)
    return RoleListResponse(
        roles=[_role_response(r, await service.user_count(r)) for r in roles],
    )


@router.post("", status_code=201, response_model=RoleResponse)
async def create_role(
    body: CreateRoleRequest,
    caller: Caller = Depends(require_permission("settings", ActionType.CREATE)),
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    role = await service.create_role(caller.org_id, body)
    return _role_response(role, 0)


@router.post("/defaults", status_code=201, response_model=RoleListResponse)
async def create_default_roles(
    caller: Caller = Depends(require_permission("settings", ActionType.CREATE)),
    service: RoleService = Depends(get_role_service),
) -> RoleListResponse:
    """Create whichever of Admin, Manager, Sales Rep and Read Only are missing."""
    roles = await service.create_default_roles(caller.org_id)
    return RoleListResponse(roles=[_role_response(r, 0) for r in roles])


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: UUID,
    caller: Caller = Depends(require_permission("settings", ActionType.VIEW)),
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    role = await service.get_role(caller.org_id, role_id)
    return _role_response(role, await service.user_count(role))


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: UUID,
    body: UpdateRoleRequest,
    caller: Caller = Depends(require_permission("settings", ActionType.EDIT)),
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    role = await service.update_role(caller.org_id, role_id, body)
    return _role_response(role, await service.user_count(role))


@router.delete("/{role_id}", response_model=DeleteRoleResponse)
async def delete_role(
    role_id: UUID,
    caller: Caller = Depends(require_permission("settings", ActionType.DELETE)),
    service: RoleService = Depends(get_role_service),
) -> DeleteRoleResponse:
    await service.delete_role(caller.org_id, role_id)
    return DeleteRoleResponse()
