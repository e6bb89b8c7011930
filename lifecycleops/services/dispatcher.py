from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Iterable

from lifecycleops.core.errors import LifecycleError, RunNotFound, RunSealedError
from lifecycleops.domain.lifecycle import ActionSpec, ExecutionRun
from lifecycleops.services.execution_log import ExecutionLogStore
from lifecycleops.services.orchestrator import LifecycleOrchestrator
from lifecycleops.services.registry import TenantRegistry
from lifecycleops.services.resilience import CancellationToken


logger = logging.getLogger(__name__)


@dataclass
class _ActiveRun:
    tenant_id: str
    task: asyncio.Task
    cancel: CancellationToken


class RunDispatcher:
    """Starts runs as background tasks so operators can poll and cancel them."""

    def __init__(
        self,
        *,
        registry: TenantRegistry,
        orchestrator: LifecycleOrchestrator,
        log_store: ExecutionLogStore,
        max_concurrency: int,
    ) -> None:
        self._registry = registry
        self._orchestrator = orchestrator
        self._log_store = log_store
        self._semaphore = asyncio.Semaphore(max(max_concurrency, 1))
        self._active: dict[str, _ActiveRun] = {}

    async def submit(
        self,
        session_id: str,
        subject_id: str,
        subject_display_name: str,
        actions: Iterable[ActionSpec],
        executed_by: str,
        *,
        request_id: str | None = None,
    ) -> str:
        """Start a run in the background and return its id.

        The fail-fast checks run here and the record is appended before the
        task is queued, so the returned id is readable at once (status
        ``running`` with no outcomes while it waits for a slot).
        """
        run, plan = await self._orchestrator.start(
            session_id,
            subject_id,
            subject_display_name,
            actions,
            executed_by,
        )
        cancel = CancellationToken()
        task = asyncio.create_task(self._run(session_id, run, plan, cancel=cancel, request_id=request_id))
        self._active[run.run_id] = _ActiveRun(tenant_id=run.tenant_id, task=task, cancel=cancel)
        task.add_done_callback(lambda _task: self._active.pop(run.run_id, None))
        logger.info("run_dispatched run_id=%s tenant_id=%s", run.run_id, run.tenant_id)
        return run.run_id

    async def cancel(self, session_id: str, run_id: str, *, reason: str = "cancelled by operator") -> None:
        tenant = await self._registry.resolve_tenant(session_id)
        active = self._active.get(run_id)
        if active is None or active.tenant_id != tenant.tenant_id:
            # Raises RunNotFound for unknown and foreign ids alike.
            run = await self._log_store.get_run(session_id, run_id)
            if run.sealed:
                raise RunSealedError(f"run {run_id} already finished")
            raise RunNotFound(f"run {run_id} is not active in this process")
        active.cancel.cancel(reason)
        logger.info("run_cancel_requested run_id=%s tenant_id=%s", run_id, tenant.tenant_id)

    def active_run_ids(self) -> list[str]:
        return list(self._active)

    async def drain(self) -> None:
        tasks = [active.task for active in self._active.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(
        self,
        session_id: str,
        run: ExecutionRun,
        plan: list[ActionSpec],
        *,
        cancel: CancellationToken,
        request_id: str | None,
    ) -> None:
        started = False
        try:
            async with self._semaphore:
                started = True
                await self._orchestrator.execute(session_id, run, plan, cancel=cancel, request_id=request_id)
        except LifecycleError as exc:
            logger.warning("background_run_failed run_id=%s error=%s", run.run_id, exc)
        except BaseException:
            if not started:
                # Interrupted while queued; execute() seals runs it has begun.
                await self._orchestrator.abort(run, plan, error="interrupted before start")
            raise
