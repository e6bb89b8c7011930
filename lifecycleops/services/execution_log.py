from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifecycleops.core.clock import as_utc
from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import DatabaseError, RunNotFound, RunSealedError
from lifecycleops.domain.lifecycle import (
    ACTION_FAILED,
    ACTION_PARTIAL,
    ACTION_SKIPPED,
    ACTION_SUCCESS,
    ActionOutcome,
    ExecutionRun,
    ExecutionRunSummary,
    RunFilters,
    count_outcomes,
)
from lifecycleops.domain.models import ExecutionLog
from lifecycleops.persistence.repos import runs as runs_repo
from lifecycleops.services.registry import TenantRegistry


logger = logging.getLogger(__name__)


class ExecutionLogStore:
    """Durable, tenant-scoped record of runs.

    A run is appended when it starts, saved as each action completes, and
    sealed by the save that sets ``end_time``. Reads resolve the tenant from the
    caller's session, so another tenant's run id behaves exactly like an
    unknown one.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], registry: TenantRegistry) -> None:
        self._sessionmaker = sessionmaker
        self._registry = registry

    async def append(self, run: ExecutionRun) -> None:
        row = ExecutionLog(id=run.run_id, tenant_id=run.tenant_id)
        _apply(row, run)
        async with self._sessionmaker() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DatabaseError(f"run {run.run_id} already exists") from exc
        logger.info("run_appended run_id=%s tenant_id=%s", run.run_id, run.tenant_id)

    async def save(self, run: ExecutionRun) -> None:
        async with self._sessionmaker() as session:
            row = await runs_repo.get_run(session, tenant_id=run.tenant_id, run_id=run.run_id)
            if row is None:
                raise RunNotFound(f"run {run.run_id} not found")
            if row.end_time is not None:
                raise RunSealedError(f"run {run.run_id} is sealed")
            _apply(row, run)
            await session.commit()
        if run.sealed:
            logger.info(
                "run_sealed run_id=%s tenant_id=%s status=%s",
                run.run_id,
                run.tenant_id,
                run.overall_status,
            )

    async def list_runs(self, session_id: str, filters: RunFilters | None = None) -> list[ExecutionRunSummary]:
        tenant = await self._registry.resolve_tenant(session_id)
        filters = filters or RunFilters()
        settings = get_settings()
        # One row above the page ceiling lets callers detect a following page.
        limit = min(max(filters.limit, 1), settings.list_max_limit + 1)
        async with self._sessionmaker() as session:
            rows = await runs_repo.list_runs(
                session,
                tenant_id=tenant.tenant_id,
                status=filters.status,
                subject_id=filters.subject_id,
                execution_type=filters.execution_type,
                # Stored times are UTC; offset-aware bounds must compare as instants.
                started_from=as_utc(filters.started_from),
                started_to=as_utc(filters.started_to),
                offset=max(filters.offset, 0),
                limit=limit,
            )
        return [_to_summary(row) for row in rows]

    async def get_run(self, session_id: str, run_id: str) -> ExecutionRun:
        tenant = await self._registry.resolve_tenant(session_id)
        async with self._sessionmaker() as session:
            row = await runs_repo.get_run(session, tenant_id=tenant.tenant_id, run_id=run_id)
        if row is None:
            raise RunNotFound(f"run {run_id} not found")
        return to_run(row)


def _apply(row: ExecutionLog, run: ExecutionRun) -> None:
    counts = count_outcomes(run.actions)
    row.subject_id = run.subject_id
    row.subject_display_name = run.subject_display_name
    row.executed_by = run.executed_by
    row.execution_type = run.execution_type
    row.schedule_id = run.schedule_id
    row.status = run.status
    row.start_time = run.start_time
    row.end_time = run.end_time
    row.total_actions = counts["total"]
    row.successful_actions = counts[ACTION_SUCCESS]
    row.failed_actions = counts[ACTION_FAILED]
    row.skipped_actions = counts[ACTION_SKIPPED]
    row.partial_actions = counts[ACTION_PARTIAL]
    # Fresh list so the JSON column registers the change.
    row.actions_json = [outcome.to_dict() for outcome in run.actions]
    row.error = run.error


def to_run(row: ExecutionLog) -> ExecutionRun:
    return ExecutionRun(
        run_id=row.id,
        tenant_id=row.tenant_id,
        subject_id=row.subject_id,
        subject_display_name=row.subject_display_name,
        executed_by=row.executed_by,
        start_time=as_utc(row.start_time),
        end_time=as_utc(row.end_time),
        actions=[ActionOutcome.from_dict(item) for item in row.actions_json or []],
        execution_type=row.execution_type,
        schedule_id=row.schedule_id,
        error=row.error,
    )


def _to_summary(row: ExecutionLog) -> ExecutionRunSummary:
    return ExecutionRunSummary(
        run_id=row.id,
        subject_id=row.subject_id,
        subject_display_name=row.subject_display_name,
        executed_by=row.executed_by,
        execution_type=row.execution_type,
        status=row.status,
        start_time=as_utc(row.start_time),
        end_time=as_utc(row.end_time),
        total_actions=row.total_actions,
        successful_actions=row.successful_actions,
        failed_actions=row.failed_actions,
        skipped_actions=row.skipped_actions,
        partial_actions=row.partial_actions,
        schedule_id=row.schedule_id,
    )
