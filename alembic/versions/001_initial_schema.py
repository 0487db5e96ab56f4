"""Initial schema — access control, audit, records and playbooks.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Access control --
    op.create_table(
        "roles",
        sa.Column("role_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_default", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("is_system", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("org_id", "name", name="uq_role_org_name"),
    )
    op.create_index("ix_roles_org_id", "roles", ["org_id"])
    op.create_index(
        "uq_role_org_default", "roles", ["org_id"],
        unique=True, postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "module_permissions",
        sa.Column("permission_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("role_id", UUID(as_uuid=True),
                  sa.ForeignKey("roles.role_id", ondelete="CASCADE"), nullable=False),
        sa.Column("module", sa.String(100), nullable=False),
        sa.Column("actions", JSONB, nullable=False),
        sa.Column("view_fields", JSONB, nullable=True),
        sa.Column("edit_fields", JSONB, nullable=True),
        sa.Column("record_visibility", sa.String(20), server_default="ALL", nullable=False),
        sa.UniqueConstraint("role_id", "module", name="uq_permission_role_module"),
    )
    op.create_index("ix_module_permissions_role_id", "module_permissions", ["role_id"])

    op.create_table(
        "user_roles",
        sa.Column("row_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("org_id", sa.String(100), nullable=False),
        sa.Column("role_id", UUID(as_uuid=True),
                  sa.ForeignKey("roles.role_id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "org_id", name="uq_user_role_user_org"),
    )
    op.create_index("ix_user_roles_org_id", "user_roles", ["org_id"])
    op.create_index("ix_user_roles_role_id", "user_roles", ["role_id"])

    # -- Audit (IMMUTABLE) --
    op.create_table(
        "audit_logs",
        sa.Column("row_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("log_id", UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("org_id", sa.String(100), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("module", sa.String(50), nullable=False),
        sa.Column("record_id", sa.String(100), nullable=True),
        sa.Column("actor_type", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(100), nullable=True),
        sa.Column("previous_state", JSONB, nullable=True),
        sa.Column("new_state", JSONB, nullable=True),
        sa.Column("metadata_json", JSONB, nullable=True),
        sa.Column("request_id", sa.String(100), nullable=True),
        sa.Column("parent_log_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_org_created", "audit_logs", ["org_id", "created_at"])
    op.create_index(
        "ix_audit_logs_org_module_record", "audit_logs", ["org_id", "module", "record_id"],
    )
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"])

    op.create_table(
        "activities",
        sa.Column("activity_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(100), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("workspace", sa.String(20), server_default="sales", nullable=False),
        sa.Column("module", sa.String(100), nullable=True),
        sa.Column("record_id", UUID(as_uuid=True), nullable=True),
        sa.Column("performed_by_id", sa.String(100), nullable=True),
        sa.Column("performed_by_type", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_activities_org_id", "activities", ["org_id"])
    op.create_index("ix_activities_record_id", "activities", ["record_id"])

    # -- Records (OPERATIONAL) --
    op.create_table(
        "records",
        sa.Column("record_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(100), nullable=False),
        sa.Column("module", sa.String(100), nullable=False),
        sa.Column("assigned_to_id", sa.String(100), nullable=True),
        sa.Column("data", JSONB, nullable=False),
        sa.Column("created_by_id", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_records_org_module", "records", ["org_id", "module"])
    op.create_index(
        "ix_records_org_module_owner", "records", ["org_id", "module", "assigned_to_id"],
    )

    # -- Playbooks --
    op.create_table(
        "playbooks",
        sa.Column("playbook_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("trigger", sa.String(50), nullable=False),
        sa.Column("trigger_config", JSONB, nullable=True),
        sa.Column("steps", JSONB, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("created_by_id", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_playbooks_org_id", "playbooks", ["org_id"])

    op.create_table(
        "playbook_runs",
        sa.Column("run_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(100), nullable=False),
        sa.Column("playbook_id", UUID(as_uuid=True),
                  sa.ForeignKey("playbooks.playbook_id"), nullable=False),
        sa.Column("account_id", UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(20), server_default="IN_PROGRESS", nullable=False),
        sa.Column("current_step", sa.Integer, server_default="1", nullable=False),
        sa.Column("total_steps", sa.Integer, nullable=False),
        sa.Column("task_ids", JSONB, nullable=False),
        sa.Column("started_by_id", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_playbook_runs_org_id", "playbook_runs", ["org_id"])
    op.create_index("ix_playbook_runs_playbook_id", "playbook_runs", ["playbook_id"])
    op.create_index("ix_playbook_runs_account_id", "playbook_runs", ["account_id"])


def downgrade() -> None:
    op.drop_table("playbook_runs")
    op.drop_table("playbooks")
    op.drop_table("records")
    op.drop_table("activities")
    op.drop_table("audit_logs")
    op.drop_table("user_roles")
    op.drop_table("module_permissions")
    op.drop_table("roles")
