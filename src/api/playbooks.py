"""Customer-success playbook endpoints (module ``playbooks``).

GET  /v1/playbooks               — list playbooks
POST /v1/playbooks               — create playbook
POST /v1/playbooks/{id}/start    — start a playbook for an account
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_audit_writer, get_playbook_engine, require_permission
from src.audit.writer import AuditLogWriter
from src.db.session import get_async_session
from src.db.tables import PlaybookRow
from src.models.access import Caller
from src.models.audit import CreateAuditLogParams
from src.models.common import ActionType, AuditAction, AuditModule
from src.models.playbooks import CreatePlaybookRequest, PlaybookStartResult
from src.pipeline.playbooks import PlaybookEngine
from src.repositories.playbooks import PlaybookRepository

router = APIRouter(prefix="/v1/playbooks", tags=["playbooks"])


class PlaybookResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    trigger: str
    trigger_config: dict[str, Any] | None = None
    steps: list[dict[str, Any]]
    is_active: bool
    created_at: datetime


class PlaybookListResponse(BaseModel):
    playbooks: list[PlaybookResponse]


class StartPlaybookRequest(BaseModel):
    account_id: UUID


def _playbook_response(row: PlaybookRow) -> PlaybookResponse:
    return PlaybookResponse(
        id=str(row.playbook_id),
        name=row.name,
        description=row.description,
        trigger=row.trigger,
        trigger_config=row.trigger_config,
        steps=row.steps or [],
        is_active=row.is_active,
        created_at=row.created_at,
    )


@router.get("", response_model=PlaybookListResponse)
async def list_playbooks(
    caller: Caller = Depends(require_permission("playbooks", ActionType.VIEW)),
    session: AsyncSession = Depends(get_async_session),
) -> PlaybookListResponse:
    rows = await PlaybookRepository(session).list_for_org(caller.org_id)
    return PlaybookListResponse(playbooks=[_playbook_response(r) for r in rows])


@router.post("", status_code=201, response_model=PlaybookResponse)
async def create_playbook(
    body: CreatePlaybookRequest,
    caller: Caller = Depends(require_permission("playbooks", ActionType.CREATE)),
    session: AsyncSession = Depends(get_async_session),
    audit: AuditLogWriter = Depends(get_audit_writer),
) -> PlaybookResponse:
    row = await PlaybookRepository(session).create(
        org_id=caller.org_id,
        name=body.name,
        description=body.description,
        trigger=body.trigger.value,
        trigger_config=(
            body.trigger_config.model_dump(exclude_none=True) if body.trigger_config else None
        ),
        steps=[s.model_dump(mode="json") for s in body.steps],
        is_active=body.is_active,
        created_by_id=caller.user_id,
    )
    await session.commit()
    response = _playbook_response(row)
    await audit.create_audit_log(CreateAuditLogParams(
        org_id=caller.org_id,
        action=AuditAction.CREATE,
        module=AuditModule.PLAYBOOK,
        record_id=response.id,
        actor_type=caller.actor_type,
        actor_id=caller.user_id,
        new_state=response.model_dump(mode="json"),
        request_id=caller.request_id,
    ))
    return response


@router.post("/{playbook_id}/start", response_model=PlaybookStartResult)
async def start_playbook(
    playbook_id: UUID,
    body: StartPlaybookRequest,
    caller: Caller = Depends(require_permission("playbooks", ActionType.EDIT)),
    engine: PlaybookEngine = Depends(get_playbook_engine),
) -> PlaybookStartResult:
    return await engine.start_playbook_for_account(
        caller.org_id, playbook_id, body.account_id, triggered_by=caller.user_id,
        request_id=caller.request_id,
    )
