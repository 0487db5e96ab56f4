"""Activity repository — append-only timeline entries."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ActivityRow
from src.models.common import new_uuid7, utc_now


class ActivityRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, org_id: str, type: str, subject: str,
                     performed_by_type: str, description: str | None = None,
                     workspace: str = "sales", module: str | None = None,
                     record_id: UUID | None = None,
                     performed_by_id: str | None = None) -> ActivityRow:
        row = ActivityRow(
            activity_id=new_uuid7(), org_id=org_id, type=type, subject=subject,
            description=description, workspace=workspace, module=module,
            record_id=record_id, performed_by_id=performed_by_id,
            performed_by_type=performed_by_type, created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_record(self, org_id: str, record_id: UUID) -> list[ActivityRow]:
        result = await self._session.execute(
            select(ActivityRow)
            .where(ActivityRow.org_id == org_id, ActivityRow.record_id == record_id)
            .order_by(ActivityRow.created_at)
        )
        return list(result.scalars().all())

    async def list_for_org(self, org_id: str, *, type: str | None = None) -> list[ActivityRow]:
        query = select(ActivityRow).where(ActivityRow.org_id == org_id)
        if type:
            query = query.where(ActivityRow.type == type)
        result = await self._session.execute(query.order_by(ActivityRow.created_at))
        return list(result.scalars().all())
