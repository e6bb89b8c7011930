from __future__ import annotations

from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from lifecycleops.apps.api.deps import Operator, get_operator, get_services
from lifecycleops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lifecycleops.apps.api.response import Page, SuccessEnvelope, envelope
from lifecycleops.apps.api.routes.runs import ActionSpecRequest
from lifecycleops.domain.lifecycle import ScheduleRecord
from lifecycleops.services.container import LifecycleServices


router = APIRouter(prefix="/schedules", tags=["schedules"], responses=DEFAULT_ERROR_RESPONSES)


class CreateScheduleRequest(BaseModel):
    subject_id: str = Field(min_length=1)
    subject_display_name: str = Field(min_length=1)
    created_by: str = Field(min_length=1)
    # Either an absolute instant, or a wall-clock date/time in ``timezone``.
    run_at: datetime | None = None
    local_date: date | None = None
    local_time: time | None = None
    timezone: str = "UTC"
    actions: list[ActionSpecRequest] | None = None
    template: str | None = None


class ScheduledActionResponse(BaseModel):
    action_name: str
    ordinal: int


class ScheduleResponse(BaseModel):
    schedule_id: str
    subject_id: str
    subject_display_name: str
    run_at: str
    timezone: str
    template: str | None
    actions: list[ScheduledActionResponse]
    status: str
    created_by: str
    run_id: str | None
    error: str | None
    executed_at: str | None


def _to_response(record: ScheduleRecord) -> ScheduleResponse:
    # Parameters are omitted; they may carry free-text messages.
    return ScheduleResponse(
        schedule_id=record.schedule_id,
        subject_id=record.subject_id,
        subject_display_name=record.subject_display_name,
        run_at=record.run_at.isoformat(),
        timezone=record.timezone,
        template=record.template,
        actions=[ScheduledActionResponse(action_name=a.action_name, ordinal=a.ordinal) for a in record.actions],
        status=record.status,
        created_by=record.created_by,
        run_id=record.run_id,
        error=record.error,
        executed_at=record.executed_at.isoformat() if record.executed_at else None,
    )


@router.post("", status_code=201, response_model=SuccessEnvelope[ScheduleResponse])
async def create_schedule(
    payload: CreateScheduleRequest,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    try:
        record = await services.schedules.create(
            operator.session_id,
            subject_id=payload.subject_id,
            subject_display_name=payload.subject_display_name,
            created_by=payload.created_by,
            run_at=payload.run_at,
            local_date=payload.local_date,
            local_time=payload.local_time,
            timezone_name=payload.timezone,
            actions=[action.to_spec() for action in payload.actions] if payload.actions is not None else None,
            template=payload.template,
            request_id=operator.request_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"code": "INVALID_SCHEDULE", "message": str(exc)}) from exc
    return envelope(request, _to_response(record))


@router.get("", response_model=SuccessEnvelope[Page[ScheduleResponse]])
async def list_schedules(
    request: Request,
    status: str | None = None,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    records = await services.schedules.list_schedules(operator.session_id, status=status)
    return envelope(request, Page(items=[_to_response(record) for record in records]))


@router.get("/{schedule_id}", response_model=SuccessEnvelope[ScheduleResponse])
async def get_schedule(
    schedule_id: str,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    record = await services.schedules.get(operator.session_id, schedule_id)
    return envelope(request, _to_response(record))


@router.post("/{schedule_id}/cancel", response_model=SuccessEnvelope[ScheduleResponse])
async def cancel_schedule(
    schedule_id: str,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    record = await services.schedules.cancel(operator.session_id, schedule_id)
    return envelope(request, _to_response(record))


@router.post("/{schedule_id}/retry", response_model=SuccessEnvelope[ScheduleResponse])
async def retry_schedule(
    schedule_id: str,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    record = await services.schedules.retry(operator.session_id, schedule_id)
    return envelope(request, _to_response(record))
