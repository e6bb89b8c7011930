from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from lifecycleops.apps.api.deps import Operator, get_operator, get_services
from lifecycleops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lifecycleops.apps.api.response import Page, SuccessEnvelope, envelope, page_size, to_page
from lifecycleops.core.clock import as_utc
from lifecycleops.core.errors import InvalidActionPlan
from lifecycleops.domain.lifecycle import ActionSpec, ExecutionRun, ExecutionRunSummary, RunFilters
from lifecycleops.services.actions.templates import expand_template
from lifecycleops.services.container import LifecycleServices


router = APIRouter(prefix="/runs", tags=["runs"], responses=DEFAULT_ERROR_RESPONSES)


class ActionSpecRequest(BaseModel):
    action_name: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    ordinal: int

    def to_spec(self) -> ActionSpec:
        return ActionSpec(action_name=self.action_name, parameters=self.parameters, ordinal=self.ordinal)


class StartRunRequest(BaseModel):
    subject_id: str = Field(min_length=1)
    subject_display_name: str = Field(min_length=1)
    executed_by: str = Field(min_length=1)
    actions: list[ActionSpecRequest] | None = None
    template: str | None = None
    # Per-action parameter overrides applied on top of a template.
    template_overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ActionOutcomeResponse(BaseModel):
    action_name: str
    status: str
    message: str
    timestamp: str
    ordinal: int | None
    detail: dict[str, Any] | None


class RunResponse(BaseModel):
    run_id: str
    subject_id: str
    subject_display_name: str
    executed_by: str
    execution_type: str
    schedule_id: str | None
    status: str
    start_time: str
    end_time: str | None
    error: str | None
    actions: list[ActionOutcomeResponse]


class RunSummaryResponse(BaseModel):
    run_id: str
    subject_id: str
    subject_display_name: str
    executed_by: str
    execution_type: str
    schedule_id: str | None
    status: str
    start_time: str
    end_time: str | None
    total_actions: int
    successful_actions: int
    failed_actions: int
    skipped_actions: int
    partial_actions: int


class RunAcceptedResponse(BaseModel):
    run_id: str
    status: str


def to_run_response(run: ExecutionRun) -> RunResponse:
    return RunResponse(
        run_id=run.run_id,
        subject_id=run.subject_id,
        subject_display_name=run.subject_display_name,
        executed_by=run.executed_by,
        execution_type=run.execution_type,
        schedule_id=run.schedule_id,
        status=run.status,
        start_time=run.start_time.isoformat(),
        end_time=run.end_time.isoformat() if run.end_time else None,
        error=run.error,
        actions=[
            ActionOutcomeResponse(
                action_name=outcome.action_name,
                status=outcome.status,
                message=outcome.message,
                timestamp=outcome.timestamp.isoformat(),
                ordinal=outcome.ordinal,
                detail=outcome.detail,
            )
            for outcome in run.actions
        ],
    )


def _to_summary_response(summary: ExecutionRunSummary) -> RunSummaryResponse:
    return RunSummaryResponse(
        run_id=summary.run_id,
        subject_id=summary.subject_id,
        subject_display_name=summary.subject_display_name,
        executed_by=summary.executed_by,
        execution_type=summary.execution_type,
        schedule_id=summary.schedule_id,
        status=summary.status,
        start_time=summary.start_time.isoformat(),
        end_time=summary.end_time.isoformat() if summary.end_time else None,
        total_actions=summary.total_actions,
        successful_actions=summary.successful_actions,
        failed_actions=summary.failed_actions,
        skipped_actions=summary.skipped_actions,
        partial_actions=summary.partial_actions,
    )


def resolve_action_specs(
    actions: list[ActionSpecRequest] | None,
    template: str | None,
    overrides: dict[str, dict[str, Any]],
) -> list[ActionSpec]:
    if (actions is None) == (template is None):
        raise InvalidActionPlan("exactly one of actions or template is required")
    if template is not None:
        try:
            return expand_template(template, overrides=overrides)
        except KeyError as exc:
            raise InvalidActionPlan(f"unknown template: {template}") from exc
    return [action.to_spec() for action in actions or []]


@router.post("", status_code=201, response_model=SuccessEnvelope[RunResponse])
async def start_run(
    payload: StartRunRequest,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    # Runs to completion; the body is the sealed run with every action outcome.
    specs = resolve_action_specs(payload.actions, payload.template, payload.template_overrides)
    run = await services.orchestrator.run(
        operator.session_id,
        payload.subject_id,
        payload.subject_display_name,
        specs,
        payload.executed_by,
        request_id=operator.request_id,
    )
    return envelope(request, to_run_response(run))


@router.post("/background", status_code=202, response_model=SuccessEnvelope[RunAcceptedResponse])
async def start_background_run(
    payload: StartRunRequest,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    # The run record exists before this returns; poll GET /runs/{run_id} for progress.
    specs = resolve_action_specs(payload.actions, payload.template, payload.template_overrides)
    run_id = await services.dispatcher.submit(
        operator.session_id,
        payload.subject_id,
        payload.subject_display_name,
        specs,
        payload.executed_by,
        request_id=operator.request_id,
    )
    return envelope(request, RunAcceptedResponse(run_id=run_id, status="running"))


@router.get("", response_model=SuccessEnvelope[Page[RunSummaryResponse]])
async def list_runs(
    request: Request,
    status: str | None = None,
    subject_id: str | None = None,
    execution_type: str | None = None,
    started_from: datetime | None = Query(default=None, alias="from"),
    started_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    size = page_size(limit)
    summaries = await services.log_store.list_runs(
        operator.session_id,
        RunFilters(
            status=status,
            subject_id=subject_id,
            execution_type=execution_type,
            started_from=as_utc(started_from),
            started_to=as_utc(started_to),
            offset=offset,
            limit=size + 1,
        ),
    )
    return envelope(request, to_page(summaries, offset=offset, size=size, convert=_to_summary_response))


@router.get("/{run_id}", response_model=SuccessEnvelope[RunResponse])
async def get_run(
    run_id: str,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    run = await services.log_store.get_run(operator.session_id, run_id)
    return envelope(request, to_run_response(run))


@router.post("/{run_id}/cancel", status_code=202, response_model=SuccessEnvelope[RunAcceptedResponse])
async def cancel_run(
    run_id: str,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    # Cancellation takes effect between actions; the run is sealed with skipped remainders.
    await services.dispatcher.cancel(operator.session_id, run_id)
    return envelope(request, RunAcceptedResponse(run_id=run_id, status="cancelling"))
