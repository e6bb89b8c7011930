from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifecycleops.core.clock import as_utc, utc_now
from lifecycleops.core.errors import DatabaseError
from lifecycleops.domain.models import AuditEvent
from lifecycleops.persistence.repos import audit as audit_repo

if TYPE_CHECKING:
    from lifecycleops.services.registry import TenantRegistry


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["secret", "token", "password", "authorization", "session_id"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub credential-bearing fields while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


async def record_event(
    sessionmaker: async_sessionmaker[AsyncSession],
    *,
    tenant_id: str | None,
    actor_id: str | None,
    event_type: str,
    outcome: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
    best_effort: bool = True,
) -> None:
    # Audit rows use their own transaction so a failed write never rolls back caller work.
    event = AuditEvent(
        occurred_at=occurred_at or utc_now(),
        tenant_id=tenant_id,
        actor_id=actor_id,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_id,
        metadata_json=sanitize_metadata(metadata or {}),
    )
    async with sessionmaker() as session:
        try:
            session.add(event)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            if not best_effort:
                raise DatabaseError("audit event write failed") from exc
            logger.warning(
                "audit_event_write_failed event_type=%s tenant_id=%s",
                event_type,
                tenant_id,
                exc_info=exc,
            )


async def list_events(
    sessionmaker: async_sessionmaker[AsyncSession],
    registry: TenantRegistry,
    session_id: str,
    *,
    event_family: str | None = None,
    run_id: str | None = None,
    schedule_id: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEvent]:
    # The session's tenant is the only scope; there is no cross-tenant view.
    tenant = await registry.resolve_tenant(session_id)
    resources: list[tuple[str, str]] = []
    if run_id:
        resources.append((audit_repo.RESOURCE_RUN, run_id))
    if schedule_id:
        resources.append((audit_repo.RESOURCE_SCHEDULE, schedule_id))
    try:
        async with sessionmaker() as session:
            return await audit_repo.list_events(
                session,
                tenant_id=tenant.tenant_id,
                event_family=event_family,
                resources=resources,
                occurred_from=as_utc(occurred_from),
                occurred_to=as_utc(occurred_to),
                offset=offset,
                limit=limit,
            )
    except SQLAlchemyError as exc:
        raise DatabaseError("audit event query failed") from exc
