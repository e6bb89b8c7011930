from __future__ import annotations

from uuid import uuid4

from sqlalchemy import select

from lifecycleops.domain.models import AuditEvent
from lifecycleops.services.container import LifecycleServices


async def configure_test_tenant(
    services: LifecycleServices,
    *,
    application_id: str | None = None,
    directory_id: str = "contoso.onmicrosoft.com",
    secret: str = "secret-1",
    actor_id: str = "it-admin",
) -> tuple[str, str]:
    # Provision a tenant + operator session pair for integration tests.
    application_id = application_id or f"app-{uuid4().hex[:8]}"
    session_id = await services.registry.create_session(
        application_id,
        directory_id,
        secret,
        actor_id=actor_id,
    )
    tenant = await services.registry.resolve_tenant(session_id)
    return session_id, tenant.tenant_id


async def fetch_audit_events(
    services: LifecycleServices,
    *,
    tenant_id: str,
    event_type: str | None = None,
) -> list[AuditEvent]:
    # Fetch audit rows directly for assertions without going through the API.
    async with services.sessionmaker() as session:
        stmt = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)
        if event_type:
            stmt = stmt.where(AuditEvent.event_type == event_type)
        result = await session.execute(stmt.order_by(AuditEvent.id.asc()))
        return list(result.scalars().all())
