from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from lifecycleops.apps.api.deps import Operator, get_operator, get_services
from lifecycleops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lifecycleops.apps.api.response import Page, SuccessEnvelope, envelope, to_page
from lifecycleops.domain.models import AuditEvent
from lifecycleops.services.audit import list_events
from lifecycleops.services.container import LifecycleServices


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    actor_id: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    metadata: dict[str, Any] | None


def _to_response(event: AuditEvent) -> AuditEventResponse:
    return AuditEventResponse(
        id=event.id,
        occurred_at=event.occurred_at.isoformat(),
        actor_id=event.actor_id,
        event_type=event.event_type,
        outcome=event.outcome,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        request_id=event.request_id,
        metadata=event.metadata_json,
    )


@router.get("/events", response_model=SuccessEnvelope[Page[AuditEventResponse]])
async def list_audit_events(
    request: Request,
    event_type: str | None = Query(default=None, description="Event type or family, e.g. lifecycle.schedule"),
    run_id: str | None = None,
    schedule_id: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    events = await list_events(
        services.sessionmaker,
        services.registry,
        operator.session_id,
        event_family=event_type,
        run_id=run_id,
        schedule_id=schedule_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        offset=offset,
        limit=limit + 1,
    )
    return envelope(request, to_page(events, offset=offset, size=limit, convert=_to_response))
