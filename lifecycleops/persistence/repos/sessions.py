from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycleops.domain.models import PortalSession, Tenant


async def get_session_with_tenant(
    session: AsyncSession,
    token_hash: str,
) -> tuple[PortalSession, Tenant] | None:
    result = await session.execute(
        select(PortalSession, Tenant)
        .join(Tenant, Tenant.id == PortalSession.tenant_id)
        .where(PortalSession.token_hash == token_hash)
    )
    row = result.first()
    if row is None:
        return None
    portal_session, tenant = row
    return portal_session, tenant


async def touch_session(session: AsyncSession, *, session_row_id: str, now: datetime) -> None:
    await session.execute(
        update(PortalSession)
        .where(PortalSession.id == session_row_id)
        .values(last_seen_at=now)
    )


async def revoke_session(session: AsyncSession, *, session_row_id: str, now: datetime) -> None:
    await session.execute(
        update(PortalSession)
        .where(PortalSession.id == session_row_id, PortalSession.revoked_at.is_(None))
        .values(revoked_at=now)
    )
