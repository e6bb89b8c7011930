from __future__ import annotations

import logging
from typing import Iterable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifecycleops.core.clock import Clock, utc_now
from lifecycleops.core.errors import InvalidActionPlan
from lifecycleops.domain.lifecycle import (
    ACTION_SKIPPED,
    EXECUTION_IMMEDIATE,
    ActionOutcome,
    ActionSpec,
    ExecutionRun,
    RUN_FAILED,
    RUN_SUCCESS,
    count_outcomes,
)
from lifecycleops.persistence.repos.audit import RESOURCE_RUN
from lifecycleops.services.actions import ActionCatalog, ActionContext
from lifecycleops.services.audit import record_event
from lifecycleops.services.directory import DirectoryClient
from lifecycleops.services.execution_log import ExecutionLogStore
from lifecycleops.services.registry import TenantRegistry
from lifecycleops.services.resilience import CancellationToken
from lifecycleops.services.token_broker import TokenBroker


logger = logging.getLogger(__name__)


class LifecycleOrchestrator:
    """Runs an ordered action plan against one subject and records the run."""

    def __init__(
        self,
        *,
        registry: TenantRegistry,
        token_broker: TokenBroker,
        directory: DirectoryClient,
        catalog: ActionCatalog,
        log_store: ExecutionLogStore,
        sessionmaker: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._broker = token_broker
        self._directory = directory
        self._catalog = catalog
        self._log_store = log_store
        self._sessionmaker = sessionmaker
        self._clock = clock

    @property
    def catalog(self) -> ActionCatalog:
        return self._catalog

    def plan(self, actions: Iterable[ActionSpec]) -> list[ActionSpec]:
        # Reject bad plans before anything is written.
        specs = list(actions)
        if not specs:
            raise InvalidActionPlan("at least one action is required")
        ordinals = [spec.ordinal for spec in specs]
        duplicates = sorted({ordinal for ordinal in ordinals if ordinals.count(ordinal) > 1})
        if duplicates:
            raise InvalidActionPlan(f"duplicate ordinals: {duplicates}")
        unknown = sorted({spec.action_name for spec in specs if spec.action_name not in self._catalog})
        if unknown:
            raise InvalidActionPlan(f"unknown actions: {', '.join(unknown)}")
        return sorted(specs, key=lambda spec: spec.ordinal)

    async def run(
        self,
        session_id: str,
        subject_id: str,
        subject_display_name: str,
        actions: Iterable[ActionSpec],
        executed_by: str,
        *,
        cancel: CancellationToken | None = None,
        execution_type: str = EXECUTION_IMMEDIATE,
        schedule_id: str | None = None,
        run_id: str | None = None,
        request_id: str | None = None,
    ) -> ExecutionRun:
        """Execute ``actions`` in ordinal order and return the sealed run.

        Tenant resolution, plan validation and the first token fetch happen
        before the run is appended, so a run that cannot start leaves no record.
        After that every action is attempted regardless of earlier failures;
        cancellation stops dispatch between actions and records the remainder
        as skipped.
        """
        run, plan = await self.start(
            session_id,
            subject_id,
            subject_display_name,
            actions,
            executed_by,
            execution_type=execution_type,
            schedule_id=schedule_id,
            run_id=run_id,
        )
        return await self.execute(session_id, run, plan, cancel=cancel, request_id=request_id)

    async def start(
        self,
        session_id: str,
        subject_id: str,
        subject_display_name: str,
        actions: Iterable[ActionSpec],
        executed_by: str,
        *,
        execution_type: str = EXECUTION_IMMEDIATE,
        schedule_id: str | None = None,
        run_id: str | None = None,
    ) -> tuple[ExecutionRun, list[ActionSpec]]:
        # Fail-fast checks, then the run is appended as running with no outcomes.
        tenant = await self._registry.resolve_tenant(session_id)
        plan = self.plan(actions)
        await self._broker.get_token(session_id)

        run = ExecutionRun(
            run_id=run_id or uuid4().hex,
            tenant_id=tenant.tenant_id,
            subject_id=subject_id,
            subject_display_name=subject_display_name,
            executed_by=executed_by,
            start_time=self._clock(),
            execution_type=execution_type,
            schedule_id=schedule_id,
        )
        await self._log_store.append(run)
        logger.info(
            "run_started run_id=%s tenant_id=%s subject_id=%s actions=%s",
            run.run_id,
            run.tenant_id,
            subject_id,
            len(plan),
        )
        return run, plan

    async def execute(
        self,
        session_id: str,
        run: ExecutionRun,
        plan: list[ActionSpec],
        *,
        cancel: CancellationToken | None = None,
        request_id: str | None = None,
    ) -> ExecutionRun:
        """Drive a started run through ``plan`` and seal it."""
        context = ActionContext(
            session_id=session_id,
            subject_id=run.subject_id,
            directory=self._directory,
            cancel=cancel,
        )
        try:
            for spec in plan:
                if cancel is not None and cancel.cancelled:
                    break
                executor = self._catalog.get(spec.action_name)
                outcome = await executor.execute(context, spec.parameters, ordinal=spec.ordinal, clock=self._clock)
                run.actions.append(outcome)
                logger.info(
                    "run_action_completed run_id=%s action=%s status=%s",
                    run.run_id,
                    outcome.action_name,
                    outcome.status,
                )
                await self._log_store.save(run)
        except BaseException as exc:
            # Seal whatever was recorded so an interrupted run is never left open.
            logger.exception("run_aborted run_id=%s", run.run_id)
            await self.abort(run, plan, error=_describe(exc))
            raise

        if len(run.actions) < len(plan):
            reason = cancel.reason if cancel is not None else "cancelled"
            run.error = f"cancelled: {reason}"
            self._skip_remaining(run, plan, "Run cancelled before this action started")
            logger.info("run_cancelled run_id=%s reason=%s", run.run_id, reason)
        run.end_time = self._clock()
        await self._log_store.save(run)

        counts = count_outcomes(run.actions)
        status = run.overall_status
        await record_event(
            self._sessionmaker,
            tenant_id=run.tenant_id,
            actor_id=run.executed_by,
            event_type="lifecycle.run.completed",
            outcome={RUN_SUCCESS: "success", RUN_FAILED: "failure"}.get(status, "partial"),
            resource_type=RESOURCE_RUN,
            resource_id=run.run_id,
            request_id=request_id,
            metadata={"status": status, "subject_id": run.subject_id, "counts": counts},
            occurred_at=run.end_time,
        )
        return run

    async def abort(self, run: ExecutionRun, plan: list[ActionSpec], *, error: str) -> None:
        # Actions that never ran are recorded as skipped; the run is sealed with ``error``.
        run.error = error
        self._skip_remaining(run, plan, "Run aborted before this action started")
        run.end_time = self._clock()
        await self._log_store.save(run)

    def _skip_remaining(self, run: ExecutionRun, plan: list[ActionSpec], message: str) -> None:
        done = {outcome.ordinal for outcome in run.actions}
        now = self._clock()
        for spec in plan:
            if spec.ordinal in done:
                continue
            run.actions.append(
                ActionOutcome(
                    action_name=spec.action_name,
                    status=ACTION_SKIPPED,
                    message=message,
                    timestamp=now,
                    ordinal=spec.ordinal,
                )
            )


def _describe(exc: BaseException) -> str:
    return f"{exc.__class__.__name__}: {exc}" if str(exc) else exc.__class__.__name__
