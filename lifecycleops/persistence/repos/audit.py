from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycleops.domain.models import AuditEvent


# Resource types written by the run and schedule services.
RESOURCE_RUN = "execution_run"
RESOURCE_SCHEDULE = "scheduled_run"
RESOURCE_TENANT = "tenant"


async def list_events(
    session: AsyncSession,
    *,
    tenant_id: str,
    event_family: str | None = None,
    resources: Sequence[tuple[str, str]] = (),
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEvent]:
    """Newest-first audit rows for one tenant.

    ``event_family`` matches a full event type or any type below it, so
    ``lifecycle.schedule`` returns created, cancelled, retried and executed
    rows. ``resources`` is a list of ``(resource_type, resource_id)`` pairs;
    a row matching any of them is returned.
    """
    stmt = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)
    if event_family:
        family = event_family.rstrip(".")
        stmt = stmt.where(
            or_(AuditEvent.event_type == family, AuditEvent.event_type.startswith(f"{family}.", autoescape=True))
        )
    if resources:
        stmt = stmt.where(
            or_(
                *(
                    and_(AuditEvent.resource_type == resource_type, AuditEvent.resource_id == resource_id)
                    for resource_type, resource_id in resources
                )
            )
        )
    if occurred_from is not None:
        stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
    if occurred_to is not None:
        stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)
    stmt = stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
