from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycleops.domain.models import ScheduledRun


async def get_schedule(
    session: AsyncSession,
    *,
    tenant_id: str,
    schedule_id: str,
) -> ScheduledRun | None:
    result = await session.execute(
        select(ScheduledRun).where(ScheduledRun.id == schedule_id, ScheduledRun.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def list_schedules(
    session: AsyncSession,
    *,
    tenant_id: str,
    status: str | None = None,
) -> list[ScheduledRun]:
    # All members of a tenant see every schedule of that tenant, soonest first.
    stmt = select(ScheduledRun).where(ScheduledRun.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(ScheduledRun.status == status)
    stmt = stmt.order_by(ScheduledRun.run_at.asc(), ScheduledRun.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_due(session: AsyncSession, *, now: datetime, limit: int) -> list[ScheduledRun]:
    result = await session.execute(
        select(ScheduledRun)
        .where(ScheduledRun.status == "scheduled", ScheduledRun.run_at <= now)
        .order_by(ScheduledRun.run_at.asc(), ScheduledRun.id.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def transition(
    session: AsyncSession,
    *,
    schedule_id: str,
    from_status: str,
    to_status: str,
    now: datetime,
    **values: object,
) -> bool:
    # Compare-and-set on status so two scanners never claim the same schedule.
    result = await session.execute(
        update(ScheduledRun)
        .where(ScheduledRun.id == schedule_id, ScheduledRun.status == from_status)
        .values(status=to_status, updated_at=now, **values)
    )
    return (result.rowcount or 0) == 1
