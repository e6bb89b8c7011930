from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycleops.domain.lifecycle import TenantRecord
from lifecycleops.domain.models import Tenant


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_tenant_by_application(
    session: AsyncSession,
    *,
    directory_id: str,
    application_id: str,
) -> Tenant | None:
    # (directory, application) identifies one organization's app registration.
    result = await session.execute(
        select(Tenant).where(
            Tenant.directory_id == directory_id,
            Tenant.application_id == application_id,
        )
    )
    return result.scalar_one_or_none()


async def update_secret(
    session: AsyncSession,
    *,
    tenant_id: str,
    encrypted_secret: str,
    now: datetime,
) -> None:
    # Reconfiguration also lifts a soft-disable.
    await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(encrypted_secret=encrypted_secret, disabled_at=None, updated_at=now)
    )


async def disable_tenant(session: AsyncSession, *, tenant_id: str, now: datetime) -> None:
    await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id, Tenant.disabled_at.is_(None))
        .values(disabled_at=now, updated_at=now)
    )


def to_record(row: Tenant) -> TenantRecord:
    return TenantRecord(
        tenant_id=row.id,
        application_id=row.application_id,
        directory_id=row.directory_id,
        encrypted_secret=row.encrypted_secret,
        created_at=row.created_at,
        updated_at=row.updated_at,
        disabled_at=row.disabled_at,
    )
