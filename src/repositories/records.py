"""Business record repository — one table for every registered module."""

from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, false, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import RecordRow
from src.models.common import new_uuid7, utc_now


class RecordRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, org_id: str, module: str, data: dict[str, Any],
                     assigned_to_id: str | None = None,
                     created_by_id: str | None = None) -> RecordRow:
        now = utc_now()
        row = RecordRow(
            record_id=new_uuid7(), org_id=org_id, module=module,
            assigned_to_id=assigned_to_id, data=data,
            created_by_id=created_by_id, created_at=now, updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, org_id: str, module: str, record_id: UUID) -> RecordRow | None:
        result = await self._session.execute(
            select(RecordRow).where(
                RecordRow.record_id == record_id,
                RecordRow.org_id == org_id,
                RecordRow.module == module,
            )
        )
        return result.scalar_one_or_none()

    async def list_visible(self, org_id: str, module: str, *,
                           visibility_filter: ColumnElement[bool],
                           search: str | None = None,
                           search_fields: tuple[str, ...] = (),
                           filters: dict[str, str] | None = None,
                           limit: int = 20, offset: int = 0) -> tuple[list[RecordRow], int]:
        """Visible records of one module, newest first, with the unpaged total."""
        conditions: list[ColumnElement[bool]] = [
            RecordRow.org_id == org_id,
            RecordRow.module == module,
            visibility_filter,
        ]
        if search:
            pattern = f"%{search}%"
            # No searchable field left means nothing can match
            conditions.append(
                or_(*(RecordRow.data[f].as_string().ilike(pattern) for f in search_fields))
                if search_fields else false()
            )
        for key, value in (filters or {}).items():
            conditions.append(RecordRow.data[key].as_string() == value)

        result = await self._session.execute(
            select(RecordRow)
            .where(*conditions)
            .order_by(RecordRow.created_at.desc(), RecordRow.record_id.desc())
            .limit(limit)
            .offset(offset)
        )
        total = await self._session.execute(
            select(func.count()).select_from(RecordRow).where(*conditions)
        )
        return list(result.scalars().all()), total.scalar_one()

    async def find_by_data_key(self, org_id: str, module: str, key: str, value: str,
                               exclude_id: UUID | None = None) -> RecordRow | None:
        query = select(RecordRow).where(
            RecordRow.org_id == org_id,
            RecordRow.module == module,
            RecordRow.data[key].as_string() == value,
        )
        if exclude_id is not None:
            query = query.where(RecordRow.record_id != exclude_id)
        result = await self._session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def update(self, row: RecordRow, *, data: dict[str, Any],
                     assigned_to_id: str | None) -> RecordRow:
        # Reassign so the JSON column is marked dirty
        row.data = data
        row.assigned_to_id = assigned_to_id
        row.updated_at = utc_now()
        await self._session.flush()
        return row

    async def delete(self, row: RecordRow) -> None:
        await self._session.delete(row)
        await self._session.flush()
