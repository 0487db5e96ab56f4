"""Audit log writer — best-effort, independently committed.

Every write opens its own session from the injected factory and commits
it on its own, so an audit entry never shares a transaction with the
mutation it describes. create_audit_log never raises: a failed write is
logged and reported as None, and the caller's mutation stands.
"""

import logging
import uuid
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit import AuditLogEntry, AuditLogPage, CreateAuditLogParams
from src.models.common import ActorType, AuditAction, AuditModule
from src.repositories.audit import AuditLogRepository

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _snapshot(value: dict[str, Any] | None) -> dict[str, Any] | None:
    """JSON-safe copy of a state snapshot (UUIDs, datetimes, decimals)."""
    if value is None:
        return None
    return to_jsonable_python(value)


class AuditLogWriter:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create_audit_log(self, params: CreateAuditLogParams) -> AuditLogEntry | None:
        try:
            async with self._session_factory() as session:
                row = await AuditLogRepository(session).create(
                    org_id=params.org_id,
                    action=params.action.value,
                    module=params.module.value,
                    actor_type=params.actor_type.value,
                    record_id=params.record_id,
                    actor_id=params.actor_id,
                    previous_state=_snapshot(params.previous_state),
                    new_state=_snapshot(params.new_state),
                    metadata=_snapshot(params.metadata),
                    request_id=params.request_id,
                    parent_log_id=params.parent_log_id,
                )
                await session.commit()
                return AuditLogEntry.from_row(row)
        except Exception:
            logger.exception(
                "Failed to create audit log org=%s action=%s module=%s record=%s",
                params.org_id, params.action, params.module, params.record_id,
            )
            return None

    async def get_audit_logs(
        self,
        org_id: str,
        *,
        module: str | None = None,
        action: str | None = None,
        actor_type: str | None = None,
        record_id: str | None = None,
        actor_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> AuditLogPage:
        async with self._session_factory() as session:
            rows, total = await AuditLogRepository(session).list_for_org(
                org_id,
                module=module, action=action, actor_type=actor_type,
                record_id=record_id, actor_id=actor_id,
                start=start, end=end, limit=limit, offset=offset,
            )
            return AuditLogPage(logs=[AuditLogEntry.from_row(r) for r in rows], total=total)

    async def get_audit_logs_by_request_id(self, request_id: str) -> list[AuditLogEntry]:
        """Entries sharing *request_id*, in creation order."""
        async with self._session_factory() as session:
            rows = await AuditLogRepository(session).list_by_request_id(request_id)
            return [AuditLogEntry.from_row(r) for r in rows]

    def create_audit_context(
        self,
        org_id: str,
        actor_id: str | None,
        actor_type: ActorType,
        request_id: str | None = None,
    ) -> "AuditContext":
        return AuditContext(
            writer=self,
            org_id=org_id,
            actor_id=actor_id,
            actor_type=actor_type,
            request_id=request_id or str(uuid.uuid4()),
        )


@dataclass
class AuditContext:
    """Audit helper bound to one actor and one request id."""

    writer: AuditLogWriter
    org_id: str
    actor_id: str | None
    actor_type: ActorType
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    async def log(
        self,
        action: AuditAction,
        module: AuditModule,
        **details: Any,
    ) -> AuditLogEntry | None:
        return await self.writer.create_audit_log(
            CreateAuditLogParams(
                org_id=self.org_id,
                actor_id=self.actor_id,
                actor_type=self.actor_type,
                action=action,
                module=module,
                request_id=self.request_id,
                **details,
            )
        )
