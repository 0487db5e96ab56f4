"""SQLAlchemy ORM table models for the CRM core.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for masks, snapshots and
record payloads.

Categories:
- ACCESS: RoleRow, ModulePermissionRow, UserRoleRow
- IMMUTABLE: AuditLogRow, ActivityRow (append-only rows)
- OPERATIONAL: RecordRow, PlaybookRow, PlaybookRunRow
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from src.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


class RoleRow(Base):
    """Named bundle of module permissions within one organization."""

    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("org_id", "name", name="uq_role_org_name"),
        # One default role per org
        Index(
            "uq_role_org_default",
            "org_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    role_id: Mapped[UUID] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    permissions: Mapped[list["ModulePermissionRow"]] = relationship(
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ModulePermissionRow.module",
    )


class ModulePermissionRow(Base):
    """Actions, field masks and record visibility of a role on one module."""

    __tablename__ = "module_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "module", name="uq_permission_role_module"),
    )

    permission_id: Mapped[UUID] = mapped_column(primary_key=True)
    role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.role_id", ondelete="CASCADE"), nullable=False, index=True
    )
    module: Mapped[str] = mapped_column(String(100), nullable=False)
    actions = mapped_column(FlexJSON, nullable=False)
    # null = all fields
    view_fields = mapped_column(FlexJSON, nullable=True)
    edit_fields = mapped_column(FlexJSON, nullable=True)
    record_visibility: Mapped[str] = mapped_column(
        String(20), default="ALL", nullable=False
    )

    role: Mapped[RoleRow] = relationship(back_populates="permissions")


class UserRoleRow(Base):
    """The single role a user holds in an organization."""

    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "org_id", name="uq_user_role_user_org"),
    )

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    org_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.role_id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    role: Mapped[RoleRow] = relationship(lazy="selectin")


# ---------------------------------------------------------------------------
# Audit (immutable)
# ---------------------------------------------------------------------------


class AuditLogRow(Base):
    """Append-only audit entry. Surrogate PK (row_id) keeps insertion order."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_org_created", "org_id", "created_at"),
        Index("ix_audit_logs_org_module_record", "org_id", "module", "record_id"),
    )

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    log_id: Mapped[UUID] = mapped_column(unique=True, nullable=False)
    org_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    module: Mapped[str] = mapped_column(String(50), nullable=False)
    record_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    previous_state = mapped_column(FlexJSON, nullable=True)
    new_state = mapped_column(FlexJSON, nullable=True)
    metadata_json = mapped_column(FlexJSON, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    parent_log_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ActivityRow(Base):
    """Timeline entry produced by side-effect triggers."""

    __tablename__ = "activities"

    activity_id: Mapped[UUID] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    workspace: Mapped[str] = mapped_column(String(20), default="sales", nullable=False)
    module: Mapped[str | None] = mapped_column(String(100), nullable=True)
    record_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    performed_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    performed_by_type: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Business records (operational)
# ---------------------------------------------------------------------------


class RecordRow(Base):
    """Business record of any registered module.

    assigned_to_id is the owner field used by record visibility rules;
    everything else lives in the JSON payload.
    """

    __tablename__ = "records"
    __table_args__ = (
        Index("ix_records_org_module", "org_id", "module"),
        Index("ix_records_org_module_owner", "org_id", "module", "assigned_to_id"),
    )

    record_id: Mapped[UUID] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(100), nullable=False)
    module: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_to_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    data = mapped_column(FlexJSON, nullable=False)
    created_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PlaybookRow(Base):
    __tablename__ = "playbooks"

    playbook_id: Mapped[UUID] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_config = mapped_column(FlexJSON, nullable=True)
    steps = mapped_column(FlexJSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PlaybookRunRow(Base):
    __tablename__ = "playbook_runs"

    run_id: Mapped[UUID] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    playbook_id: Mapped[UUID] = mapped_column(
        ForeignKey("playbooks.playbook_id"), nullable=False, index=True
    )
    account_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="IN_PROGRESS", nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    task_ids = mapped_column(FlexJSON, nullable=False)
    started_by_id: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
