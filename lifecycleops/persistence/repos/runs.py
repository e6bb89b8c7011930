from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycleops.domain.models import ExecutionLog


async def get_run(session: AsyncSession, *, tenant_id: str, run_id: str) -> ExecutionLog | None:
    # Tenant predicate is part of the lookup so foreign run ids look nonexistent.
    result = await session.execute(
        select(ExecutionLog).where(ExecutionLog.id == run_id, ExecutionLog.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def list_runs(
    session: AsyncSession,
    *,
    tenant_id: str,
    status: str | None = None,
    subject_id: str | None = None,
    execution_type: str | None = None,
    started_from: datetime | None = None,
    started_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[ExecutionLog]:
    # Scope all run queries to a tenant to prevent cross-tenant leakage.
    stmt = select(ExecutionLog).where(ExecutionLog.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(ExecutionLog.status == status)
    if subject_id:
        stmt = stmt.where(ExecutionLog.subject_id == subject_id)
    if execution_type:
        stmt = stmt.where(ExecutionLog.execution_type == execution_type)
    if started_from:
        stmt = stmt.where(ExecutionLog.start_time >= started_from)
    if started_to:
        stmt = stmt.where(ExecutionLog.start_time <= started_to)

    stmt = stmt.order_by(ExecutionLog.start_time.desc(), ExecutionLog.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
