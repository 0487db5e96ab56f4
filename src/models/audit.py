"""Audit log models — append-only entries and write parameters."""

from typing import Any

from pydantic import Field

from src.models.common import (
    ActorType,
    AuditAction,
    AuditModule,
    CRMBase,
    UTCTimestamp,
    UUIDv7,
)


class CreateAuditLogParams(CRMBase):
    """Everything needed to append one audit entry."""

    org_id: str
    action: AuditAction
    module: AuditModule
    actor_type: ActorType
    record_id: str | None = None
    actor_id: str | None = None
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    request_id: str | None = None
    parent_log_id: UUIDv7 | None = None


class AuditLogEntry(CRMBase):
    """Immutable audit record as returned to callers."""

    log_id: UUIDv7
    org_id: str
    action: str
    module: str
    record_id: str | None = None
    actor_type: str
    actor_id: str | None = None
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    request_id: str | None = None
    parent_log_id: UUIDv7 | None = None
    created_at: UTCTimestamp

    @classmethod
    def from_row(cls, row: Any) -> "AuditLogEntry":
        return cls(
            log_id=row.log_id,
            org_id=row.org_id,
            action=row.action,
            module=row.module,
            record_id=row.record_id,
            actor_type=row.actor_type,
            actor_id=row.actor_id,
            previous_state=row.previous_state,
            new_state=row.new_state,
            metadata=row.metadata_json,
            request_id=row.request_id,
            parent_log_id=row.parent_log_id,
            created_at=row.created_at,
        )


class AuditLogPage(CRMBase):
    logs: list[AuditLogEntry] = Field(default_factory=list)
    total: int = 0
