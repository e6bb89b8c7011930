"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("application_id", sa.String(), nullable=False),
        sa.Column("directory_id", sa.String(), nullable=False),
        sa.Column("encrypted_secret", sa.Text(), nullable=False),
        sa.Column("disabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("directory_id", "application_id", name="uq_tenants_directory_application"),
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(), primary_key=True),
        # Avoid index=True here because we create explicit indexes below.
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("token_prefix", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False, server_default="operator"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_sessions_tenant_id", "sessions", ["tenant_id"])
    op.create_index("ix_sessions_token_hash", "sessions", ["token_hash"], unique=True)
    op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"])

    op.create_table(
        "execution_runs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("subject_display_name", sa.String(), nullable=False),
        sa.Column("executed_by", sa.String(), nullable=False),
        sa.Column("execution_type", sa.String(), nullable=False, server_default="immediate"),
        sa.Column("schedule_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("partial_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("actions_json", postgresql.JSONB(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_execution_runs_tenant_id", "execution_runs", ["tenant_id"])
    op.create_index("ix_execution_runs_schedule_id", "execution_runs", ["schedule_id"])
    op.create_index("ix_execution_runs_tenant_start", "execution_runs", ["tenant_id", "start_time"])
    op.create_index("ix_execution_runs_tenant_subject", "execution_runs", ["tenant_id", "subject_id"])
    op.create_index("ix_execution_runs_tenant_status", "execution_runs", ["tenant_id", "status"])

    op.create_table(
        "scheduled_runs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("subject_display_name", sa.String(), nullable=False),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("template", sa.String(), nullable=True),
        sa.Column("actions_json", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_scheduled_runs_tenant_id", "scheduled_runs", ["tenant_id"])
    # Due-scan path: status='scheduled' ordered by run_at.
    op.create_index("ix_scheduled_runs_status_run_at", "scheduled_runs", ["status", "run_at"])
    op.create_index("ix_scheduled_runs_tenant_status", "scheduled_runs", ["tenant_id", "status"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_tenant_occurred_at", "audit_events", ["tenant_id", "occurred_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_tenant_occurred_at", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_tenant_id", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("ix_scheduled_runs_tenant_status", table_name="scheduled_runs")
    op.drop_index("ix_scheduled_runs_status_run_at", table_name="scheduled_runs")
    op.drop_index("ix_scheduled_runs_tenant_id", table_name="scheduled_runs")
    op.drop_table("scheduled_runs")

    op.drop_index("ix_execution_runs_tenant_status", table_name="execution_runs")
    op.drop_index("ix_execution_runs_tenant_subject", table_name="execution_runs")
    op.drop_index("ix_execution_runs_tenant_start", table_name="execution_runs")
    op.drop_index("ix_execution_runs_schedule_id", table_name="execution_runs")
    op.drop_index("ix_execution_runs_tenant_id", table_name="execution_runs")
    op.drop_table("execution_runs")

    op.drop_index("ix_sessions_expires_at", table_name="sessions")
    op.drop_index("ix_sessions_token_hash", table_name="sessions")
    op.drop_index("ix_sessions_tenant_id", table_name="sessions")
    op.drop_table("sessions")

    op.drop_table("tenants")
