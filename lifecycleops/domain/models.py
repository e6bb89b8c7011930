from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Use JSONB on Postgres while keeping SQLite usable for local runs and tests.
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
BigIntPk = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"
    __table_args__ = (
        UniqueConstraint("directory_id", "application_id", name="uq_tenants_directory_application"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    application_id: Mapped[str] = mapped_column(String)
    directory_id: Mapped[str] = mapped_column(String)
    # AES-GCM sealed application secret; plaintext never reaches this column.
    encrypted_secret: Mapped[str] = mapped_column(Text)
    # Soft-disable only so past execution runs keep a valid tenant reference.
    disabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PortalSession(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    # Store only the hashed capability so a DB leak does not expose live sessions.
    token_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    token_prefix: Mapped[str] = mapped_column(String)
    # operator sessions come from credential configuration; system sessions from the scheduler.
    kind: Mapped[str] = mapped_column(String, default="operator")
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ExecutionLog(Base):
    __tablename__ = "execution_runs"
    __table_args__ = (
        Index("ix_execution_runs_tenant_start", "tenant_id", "start_time"),
        Index("ix_execution_runs_tenant_subject", "tenant_id", "subject_id"),
        Index("ix_execution_runs_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    subject_id: Mapped[str] = mapped_column(String)
    subject_display_name: Mapped[str] = mapped_column(String)
    executed_by: Mapped[str] = mapped_column(String)
    # immediate runs come from the UI; scheduled runs from the scheduler.
    execution_type: Mapped[str] = mapped_column(String, default="immediate")
    schedule_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # running until sealed, then success/partial/failed.
    status: Mapped[str] = mapped_column(String)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_actions: Mapped[int] = mapped_column(Integer, default=0)
    successful_actions: Mapped[int] = mapped_column(Integer, default=0)
    failed_actions: Mapped[int] = mapped_column(Integer, default=0)
    skipped_actions: Mapped[int] = mapped_column(Integer, default=0)
    partial_actions: Mapped[int] = mapped_column(Integer, default=0)
    # Ordered ActionOutcome payloads, embedded so they share the run's lifecycle.
    actions_json: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ScheduledRun(Base):
    __tablename__ = "scheduled_runs"
    __table_args__ = (
        Index("ix_scheduled_runs_status_run_at", "status", "run_at"),
        Index("ix_scheduled_runs_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    subject_id: Mapped[str] = mapped_column(String)
    subject_display_name: Mapped[str] = mapped_column(String)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    # IANA zone the operator scheduled in; run_at itself is always UTC.
    timezone: Mapped[str] = mapped_column(String, default="UTC")
    template: Mapped[str | None] = mapped_column(String, nullable=True)
    actions_json: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    # scheduled -> in-progress -> completed/failed; cancelled while still scheduled.
    status: Mapped[str] = mapped_column(String)
    created_by: Mapped[str] = mapped_column(String)
    run_id: Mapped[str | None] = mapped_column(String, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_tenant_occurred_at", "tenant_id", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    outcome: Mapped[str] = mapped_column(String)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
