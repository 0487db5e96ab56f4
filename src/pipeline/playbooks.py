"""Playbook trigger engine and activity side effects.

Runs inside the trigger dispatcher, never on the request path. Each entry
point opens its own session from the injected factory and commits it.

Triggers:
- NEW_CUSTOMER: an account's type changes to CUSTOMER
- TICKET_ESCALATION: a ticket's priority changes to URGENT
- HEALTH_DROP: a health score falls below the playbook threshold
"""

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from src.audit.writer import AuditLogWriter, SessionFactory
from src.db.tables import PlaybookRunRow
from src.models.audit import CreateAuditLogParams
from src.models.common import ActorType, AuditAction, AuditModule, Workspace, utc_now
from src.models.playbooks import (
    AssigneeType,
    PlaybookStartResult,
    PlaybookStep,
    PlaybookTrigger,
    TriggerConfig,
)
from src.models.records import CreateTask, TaskType
from src.repositories.activities import ActivityRepository
from src.repositories.playbooks import PlaybookRepository, PlaybookRunRepository
from src.repositories.records import RecordRepository

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
DEFAULT_HEALTH_THRESHOLD = 40
_TASK_TYPES = frozenset(t.value for t in TaskType)


def _task_data(playbook_name: str, step: PlaybookStep, total: int,
               account_id: UUID) -> dict[str, Any]:
    task = CreateTask(
        title=f"[{playbook_name}] {step.title}"[:200],
        description=step.description or f"Playbook step {step.order} of {total}",
        due_date=utc_now() + timedelta(days=step.day_offset),
        task_type=step.task_type if step.task_type in _TASK_TYPES else TaskType.OTHER,
        account_id=account_id,
    )
    return task.model_dump(mode="json", exclude={"assigned_to_id"})


def run_snapshot(run: PlaybookRunRow) -> dict[str, Any]:
    return {
        "id": str(run.run_id),
        "playbook_id": str(run.playbook_id),
        "account_id": str(run.account_id),
        "status": run.status,
        "current_step": run.current_step,
        "total_steps": run.total_steps,
        "task_ids": list(run.task_ids or []),
        "started_by_id": run.started_by_id,
    }


class PlaybookEngine:
    def __init__(self, session_factory: SessionFactory,
                 audit: AuditLogWriter | None = None) -> None:
        self._session_factory = session_factory
        self._audit = audit

    async def start_playbook_for_account(
        self,
        org_id: str,
        playbook_id: UUID,
        account_id: UUID,
        triggered_by: str = SYSTEM_ACTOR,
        request_id: str | None = None,
    ) -> PlaybookStartResult:
        """Start *playbook_id* for one account.

        Runs started by a trigger are audited as SYSTEM, manual starts as
        the user named by *triggered_by*.
        """
        async with self._session_factory() as session:
            playbooks = PlaybookRepository(session)
            runs = PlaybookRunRepository(session)
            records = RecordRepository(session)

            playbook = await playbooks.get(org_id, playbook_id)
            if playbook is None or not playbook.is_active:
                return PlaybookStartResult(success=False, error="Playbook not found or inactive")

            account = await records.get(org_id, "accounts", account_id)
            if account is None:
                return PlaybookStartResult(success=False, error="Account not found")

            if await runs.get_in_progress(playbook_id, account_id) is not None:
                return PlaybookStartResult(
                    success=False, error="Playbook already running for this account",
                )

            steps = [PlaybookStep.model_validate(s) for s in playbook.steps or []]
            task_ids: list[str] = []
            for step in steps:
                owner = (
                    account.assigned_to_id
                    if step.assignee_type in (AssigneeType.CSM, AssigneeType.ACCOUNT_OWNER)
                    else None
                )
                task = await records.create(
                    org_id=org_id,
                    module="tasks",
                    data=_task_data(playbook.name, step, len(steps), account_id),
                    assigned_to_id=owner,
                    created_by_id=triggered_by,
                )
                task_ids.append(str(task.record_id))

            run = await runs.create(
                org_id=org_id,
                playbook_id=playbook_id,
                account_id=account_id,
                total_steps=len(steps),
                task_ids=task_ids,
                started_by_id=triggered_by,
            )
            await ActivityRepository(session).create(
                org_id=org_id,
                type="PLAYBOOK_STARTED",
                subject=f"Playbook auto-started: {playbook.name}",
                description=f"Triggered by {playbook.trigger} with {len(steps)} steps",
                workspace=Workspace.CS.value,
                module="accounts",
                record_id=account_id,
                performed_by_id=triggered_by,
                performed_by_type=ActorType.SYSTEM.value,
            )
            snapshot = run_snapshot(run)
            await session.commit()

        logger.info(
            "Started playbook %s for account %s (%d tasks)",
            playbook.name, account_id, len(task_ids),
        )
        if self._audit is not None:
            system = triggered_by == SYSTEM_ACTOR
            await self._audit.create_audit_log(
                CreateAuditLogParams(
                    org_id=org_id,
                    action=AuditAction.CREATE,
                    module=AuditModule.PLAYBOOK_RUN,
                    record_id=str(run.run_id),
                    actor_type=ActorType.SYSTEM if system else ActorType.USER,
                    actor_id=None if system else triggered_by,
                    new_state=snapshot,
                    metadata={"playbook_name": playbook.name, "trigger": playbook.trigger},
                    request_id=request_id,
                )
            )
        return PlaybookStartResult(success=True, run_id=str(run.run_id))

    async def _run_trigger(self, org_id: str, trigger: PlaybookTrigger,
                           account_id: UUID) -> list[PlaybookStartResult]:
        async with self._session_factory() as session:
            playbooks = await PlaybookRepository(session).list_active_for_trigger(
                org_id, trigger.value,
            )
            ids = [p.playbook_id for p in playbooks]
        return [
            await self.start_playbook_for_account(org_id, playbook_id, account_id)
            for playbook_id in ids
        ]

    async def trigger_new_customer(self, org_id: str, account_id: UUID) -> list[PlaybookStartResult]:
        return await self._run_trigger(org_id, PlaybookTrigger.NEW_CUSTOMER, account_id)

    async def trigger_ticket_escalation(
        self, org_id: str, account_id: UUID, ticket_id: UUID,
    ) -> list[PlaybookStartResult]:
        logger.info("Ticket %s escalated to URGENT", ticket_id)
        return await self._run_trigger(org_id, PlaybookTrigger.TICKET_ESCALATION, account_id)

    async def trigger_health_drop(
        self,
        org_id: str,
        account_id: UUID,
        new_score: int,
        previous_score: int | None,
    ) -> list[PlaybookStartResult]:
        # Only a real drop across the threshold fires
        if previous_score is None or new_score >= previous_score:
            return []
        async with self._session_factory() as session:
            playbooks = await PlaybookRepository(session).list_active_for_trigger(
                org_id, PlaybookTrigger.HEALTH_DROP.value,
            )
            candidates = []
            for p in playbooks:
                try:
                    config = TriggerConfig.model_validate(p.trigger_config or {})
                except ValidationError:
                    config = TriggerConfig()
                threshold = config.health_score_threshold or DEFAULT_HEALTH_THRESHOLD
                if new_score < threshold <= previous_score:
                    candidates.append(p.playbook_id)
        return [
            await self.start_playbook_for_account(org_id, playbook_id, account_id)
            for playbook_id in candidates
        ]

    async def record_activity(
        self,
        *,
        org_id: str,
        type: str,
        subject: str,
        module: str,
        record_id: UUID,
        workspace: Workspace,
        performed_by_id: str | None,
        performed_by_type: ActorType,
        description: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            await ActivityRepository(session).create(
                org_id=org_id,
                type=type,
                subject=subject,
                description=description,
                workspace=workspace.value,
                module=module,
                record_id=record_id,
                performed_by_id=performed_by_id,
                performed_by_type=performed_by_type.value,
            )
            await session.commit()
