"""Role, module-permission and user-role repositories."""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ModulePermissionRow, RoleRow, UserRoleRow
from src.models.access import ModulePermissionIn
from src.models.common import new_uuid7, utc_now


def _permission_row(perm: ModulePermissionIn) -> ModulePermissionRow:
    fields = perm.fields
    return ModulePermissionRow(
        permission_id=new_uuid7(),
        module=perm.module,
        actions=[a.value for a in perm.actions],
        view_fields=fields.view if fields else None,
        edit_fields=fields.edit if fields else None,
        record_visibility=perm.record_visibility.value,
    )


class RoleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, org_id: str, name: str,
                     description: str | None = None,
                     is_default: bool = False, is_system: bool = False,
                     permissions: list[ModulePermissionIn] | None = None) -> RoleRow:
        if is_default:
            await self.clear_default(org_id)
        now = utc_now()
        row = RoleRow(
            role_id=new_uuid7(), org_id=org_id, name=name,
            description=description, is_default=is_default,
            is_system=is_system, created_at=now, updated_at=now,
            permissions=[_permission_row(p) for p in permissions or []],
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, role_id: UUID, org_id: str) -> RoleRow | None:
        result = await self._session.execute(
            select(RoleRow).where(
                RoleRow.role_id == role_id,
                RoleRow.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_name(self, org_id: str, name: str) -> RoleRow | None:
        result = await self._session.execute(
            select(RoleRow).where(RoleRow.org_id == org_id, RoleRow.name == name)
        )
        return result.scalar_one_or_none()

    async def get_default(self, org_id: str) -> RoleRow | None:
        result = await self._session.execute(
            select(RoleRow).where(
                RoleRow.org_id == org_id,
                RoleRow.is_default.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def get_first_non_system(self, org_id: str) -> RoleRow | None:
        result = await self._session.execute(
            select(RoleRow)
            .where(RoleRow.org_id == org_id, RoleRow.is_system.is_(False))
            .order_by(RoleRow.created_at, RoleRow.role_id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_org(self, org_id: str) -> list[RoleRow]:
        result = await self._session.execute(
            select(RoleRow)
            .where(RoleRow.org_id == org_id)
            .order_by(RoleRow.is_system.desc(), RoleRow.name)
        )
        return list(result.scalars().all())

    async def count_for_org(self, org_id: str) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(RoleRow).where(RoleRow.org_id == org_id)
        )
        return result.scalar_one()

    async def clear_default(self, org_id: str) -> None:
        """Unset is_default on every role of the org (same transaction)."""
        await self._session.execute(
            update(RoleRow)
            .where(RoleRow.org_id == org_id, RoleRow.is_default.is_(True))
            .values(is_default=False)
        )
        await self._session.flush()

    async def update(self, row: RoleRow, *, name: str | None = None,
                     description: str | None = None,
                     is_default: bool | None = None) -> RoleRow:
        if is_default and not row.is_default:
            await self.clear_default(row.org_id)
        if name is not None:
            row.name = name
        if description is not None:
            row.description = description
        if is_default is not None:
            row.is_default = is_default
        row.updated_at = utc_now()
        await self._session.flush()
        return row

    async def replace_permissions(self, row: RoleRow,
                                  permissions: list[ModulePermissionIn]) -> RoleRow:
        """Swap the role's permission rows.

        Old rows are flushed out before the new ones go in so the
        (role_id, module) constraint never sees both.
        """
        row.permissions.clear()
        await self._session.flush()
        row.permissions.extend(_permission_row(p) for p in permissions)
        row.updated_at = utc_now()
        await self._session.flush()
        return row

    async def delete(self, row: RoleRow) -> None:
        await self._session.delete(row)
        await self._session.flush()


class UserRoleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_user(self, user_id: str, org_id: str) -> UserRoleRow | None:
        result = await self._session.execute(
            select(UserRoleRow).where(
                UserRoleRow.user_id == user_id,
                UserRoleRow.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(self, *, user_id: str, org_id: str, role_id: UUID) -> UserRoleRow:
        row = await self.get_for_user(user_id, org_id)
        now = utc_now()
        if row is None:
            row = UserRoleRow(
                user_id=user_id, org_id=org_id, role_id=role_id,
                created_at=now, updated_at=now,
            )
            self._session.add(row)
        else:
            row.role_id = role_id
            row.updated_at = now
        await self._session.flush()
        await self._session.refresh(row, attribute_names=["role"])
        return row

    async def delete_for_user(self, user_id: str, org_id: str) -> bool:
        row = await self.get_for_user(user_id, org_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True

    async def count_for_role(self, role_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(UserRoleRow)
            .where(UserRoleRow.role_id == role_id)
        )
        return result.scalar_one()

    async def list_for_org(self, org_id: str) -> list[UserRoleRow]:
        result = await self._session.execute(
            select(UserRoleRow)
            .where(UserRoleRow.org_id == org_id)
            .order_by(UserRoleRow.created_at)
        )
        return list(result.scalars().all())
