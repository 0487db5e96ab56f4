"""Audit log repository — INSERT and SELECT only (append-only table)."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import AuditLogRow
from src.models.common import new_uuid7, utc_now


class AuditLogRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, org_id: str, action: str, module: str,
                     actor_type: str, record_id: str | None = None,
                     actor_id: str | None = None,
                     previous_state: dict | None = None,
                     new_state: dict | None = None,
                     metadata: dict | None = None,
                     request_id: str | None = None,
                     parent_log_id: UUID | None = None) -> AuditLogRow:
        row = AuditLogRow(
            log_id=new_uuid7(),
            org_id=org_id,
            action=action,
            module=module,
            record_id=record_id,
            actor_type=actor_type,
            actor_id=actor_id,
            previous_state=previous_state,
            new_state=new_state,
            metadata_json=metadata,
            request_id=request_id,
            parent_log_id=parent_log_id,
            created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_org(self, org_id: str, *,
                           module: str | None = None,
                           action: str | None = None,
                           actor_type: str | None = None,
                           record_id: str | None = None,
                           actor_id: str | None = None,
                           start: datetime | None = None,
                           end: datetime | None = None,
                           limit: int = 50,
                           offset: int = 0) -> tuple[list[AuditLogRow], int]:
        """Newest-first page of audit entries plus the unpaged total."""
        conditions = [AuditLogRow.org_id == org_id]
        if module:
            conditions.append(AuditLogRow.module == module)
        if action:
            conditions.append(AuditLogRow.action == action)
        if actor_type:
            conditions.append(AuditLogRow.actor_type == actor_type)
        if record_id:
            conditions.append(AuditLogRow.record_id == record_id)
        if actor_id:
            conditions.append(AuditLogRow.actor_id == actor_id)
        if start is not None:
            conditions.append(AuditLogRow.created_at >= start)
        if end is not None:
            conditions.append(AuditLogRow.created_at <= end)

        result = await self._session.execute(
            select(AuditLogRow)
            .where(*conditions)
            .order_by(AuditLogRow.created_at.desc(), AuditLogRow.row_id.desc())
            .limit(limit)
            .offset(offset)
        )
        total = await self._session.execute(
            select(func.count()).select_from(AuditLogRow).where(*conditions)
        )
        return list(result.scalars().all()), total.scalar_one()

    async def list_by_request_id(self, request_id: str) -> list[AuditLogRow]:
        result = await self._session.execute(
            select(AuditLogRow)
            .where(AuditLogRow.request_id == request_id)
            .order_by(AuditLogRow.created_at, AuditLogRow.row_id)
        )
        return list(result.scalars().all())
