"""Audit log browsing endpoints (settings:view).

GET /v1/audit-logs                          — filtered, newest first
GET /v1/audit-logs/requests/{request_id}    — one request's entries, in order
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_audit_writer, require_permission
from src.audit.writer import AuditLogWriter
from src.models.access import Caller
from src.models.audit import AuditLogEntry, AuditLogPage
from src.models.common import ActionType

router = APIRouter(prefix="/v1/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    module: str | None = Query(default=None),
    action: str | None = Query(default=None),
    actor_type: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    record_id: str | None = Query(default=None),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(require_permission("settings", ActionType.VIEW)),
    writer: AuditLogWriter = Depends(get_audit_writer),
) -> AuditLogPage:
    return await writer.get_audit_logs(
        caller.org_id,
        module=module,
        action=action,
        actor_type=actor_type,
        actor_id=actor_id,
        record_id=record_id,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )


@router.get("/requests/{request_id}", response_model=list[AuditLogEntry])
async def get_request_audit_logs(
    request_id: str,
    caller: Caller = Depends(require_permission("settings", ActionType.VIEW)),
    writer: AuditLogWriter = Depends(get_audit_writer),
) -> list[AuditLogEntry]:
    entries = await writer.get_audit_logs_by_request_id(request_id)
    return [e for e in entries if e.org_id == caller.org_id]
