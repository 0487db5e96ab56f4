"""Playbook and playbook-run repositories."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import PlaybookRow, PlaybookRunRow
from src.models.common import new_uuid7, utc_now


class PlaybookRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, org_id: str, name: str, trigger: str,
                     steps: list[dict], description: str | None = None,
                     trigger_config: dict | None = None, is_active: bool = True,
                     created_by_id: str | None = None) -> PlaybookRow:
        row = PlaybookRow(
            playbook_id=new_uuid7(), org_id=org_id, name=name,
            description=description, trigger=trigger,
            trigger_config=trigger_config, steps=steps, is_active=is_active,
            created_by_id=created_by_id, created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, org_id: str, playbook_id: UUID) -> PlaybookRow | None:
        result = await self._session.execute(
            select(PlaybookRow).where(
                PlaybookRow.playbook_id == playbook_id,
                PlaybookRow.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_org(self, org_id: str) -> list[PlaybookRow]:
        result = await self._session.execute(
            select(PlaybookRow)
            .where(PlaybookRow.org_id == org_id)
            .order_by(PlaybookRow.created_at)
        )
        return list(result.scalars().all())

    async def list_active_for_trigger(self, org_id: str, trigger: str) -> list[PlaybookRow]:
        result = await self._session.execute(
            select(PlaybookRow)
            .where(
                PlaybookRow.org_id == org_id,
                PlaybookRow.trigger == trigger,
                PlaybookRow.is_active.is_(True),
            )
            .order_by(PlaybookRow.created_at)
        )
        return list(result.scalars().all())


class PlaybookRunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, org_id: str, playbook_id: UUID, account_id: UUID,
                     total_steps: int, task_ids: list[str],
                     started_by_id: str) -> PlaybookRunRow:
        row = PlaybookRunRow(
            run_id=new_uuid7(), org_id=org_id, playbook_id=playbook_id,
            account_id=account_id, status="IN_PROGRESS", current_step=1,
            total_steps=total_steps, task_ids=task_ids,
            started_by_id=started_by_id, created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_in_progress(self, playbook_id: UUID, account_id: UUID) -> PlaybookRunRow | None:
        result = await self._session.execute(
            select(PlaybookRunRow).where(
                PlaybookRunRow.playbook_id == playbook_id,
                PlaybookRunRow.account_id == account_id,
                PlaybookRunRow.status == "IN_PROGRESS",
            )
        )
        return result.scalars().first()

    async def list_for_account(self, org_id: str, account_id: UUID) -> list[PlaybookRunRow]:
        result = await self._session.execute(
            select(PlaybookRunRow)
            .where(PlaybookRunRow.org_id == org_id, PlaybookRunRow.account_id == account_id)
            .order_by(PlaybookRunRow.created_at)
        )
        return list(result.scalars().all())
