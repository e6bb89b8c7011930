from __future__ import annotations

import asyncio
from datetime import date, datetime, time
import logging
from typing import Any, Iterable
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifecycleops.core.clock import Clock, as_utc, utc_now
from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import InvalidActionPlan, LifecycleError, ScheduleNotFound, ScheduleStateError
from lifecycleops.domain.lifecycle import (
    EXECUTION_SCHEDULED,
    RUN_SUCCESS,
    SCHEDULE_CANCELLED,
    SCHEDULE_COMPLETED,
    SCHEDULE_FAILED,
    SCHEDULE_IN_PROGRESS,
    SCHEDULE_SCHEDULED,
    ActionSpec,
    ScheduleRecord,
)
from lifecycleops.domain.models import ScheduledRun
from lifecycleops.persistence.repos.audit import RESOURCE_SCHEDULE
from lifecycleops.persistence.repos import schedules as schedules_repo
from lifecycleops.services.actions.templates import expand_template
from lifecycleops.services.audit import record_event
from lifecycleops.services.orchestrator import LifecycleOrchestrator
from lifecycleops.services.registry import TenantRegistry


logger = logging.getLogger(__name__)

SYSTEM_EXECUTOR = "system-scheduler"


def resolve_run_at(
    *,
    run_at: datetime | None = None,
    local_date: date | None = None,
    local_time: time | None = None,
    timezone_name: str = "UTC",
) -> datetime:
    """Return the UTC instant for either an explicit ``run_at`` or a local wall time."""
    try:
        zone = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {timezone_name}") from exc
    if run_at is not None:
        if run_at.tzinfo is None:
            run_at = run_at.replace(tzinfo=zone)
        return as_utc(run_at)
    if local_date is None or local_time is None:
        raise ValueError("run_at or local_date and local_time are required")
    return as_utc(datetime.combine(local_date, local_time, tzinfo=zone))


class ScheduleService:
    """Deferred runs: stored per tenant, claimed when due, executed by the system actor."""

    def __init__(
        self,
        *,
        sessionmaker: async_sessionmaker[AsyncSession],
        registry: TenantRegistry,
        orchestrator: LifecycleOrchestrator,
        clock: Clock = utc_now,
        max_concurrency: int | None = None,
    ) -> None:
        settings = get_settings()
        self._sessionmaker = sessionmaker
        self._registry = registry
        self._orchestrator = orchestrator
        self._clock = clock
        self._max_concurrency = max(max_concurrency or settings.run_max_concurrency, 1)
        self._scan_limit = settings.schedule_scan_limit

    async def create(
        self,
        session_id: str,
        *,
        subject_id: str,
        subject_display_name: str,
        created_by: str,
        run_at: datetime | None = None,
        local_date: date | None = None,
        local_time: time | None = None,
        timezone_name: str = "UTC",
        actions: Iterable[ActionSpec] | None = None,
        template: str | None = None,
        request_id: str | None = None,
    ) -> ScheduleRecord:
        tenant = await self._registry.resolve_tenant(session_id)
        if (actions is None) == (template is None):
            raise InvalidActionPlan("exactly one of actions or template is required")
        if template is not None:
            try:
                specs = expand_template(template)
            except KeyError as exc:
                raise InvalidActionPlan(f"unknown template: {template}") from exc
        else:
            specs = list(actions or [])
        plan = self._orchestrator.plan(specs)
        when = resolve_run_at(
            run_at=run_at,
            local_date=local_date,
            local_time=local_time,
            timezone_name=timezone_name,
        )
        now = self._clock()
        row = ScheduledRun(
            id=uuid4().hex,
            tenant_id=tenant.tenant_id,
            subject_id=subject_id,
            subject_display_name=subject_display_name,
            run_at=when,
            timezone=timezone_name,
            template=template,
            actions_json=[spec.to_dict() for spec in plan],
            status=SCHEDULE_SCHEDULED,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        async with self._sessionmaker() as session:
            session.add(row)
            await session.commit()
        logger.info(
            "schedule_created schedule_id=%s tenant_id=%s run_at=%s",
            row.id,
            tenant.tenant_id,
            when.isoformat(),
        )
        await record_event(
            self._sessionmaker,
            tenant_id=tenant.tenant_id,
            actor_id=created_by,
            event_type="lifecycle.schedule.created",
            outcome="success",
            resource_type=RESOURCE_SCHEDULE,
            resource_id=row.id,
            request_id=request_id,
            metadata={"subject_id": subject_id, "run_at": when.isoformat(), "template": template},
            occurred_at=now,
        )
        return _to_record(row)

    async def list_schedules(self, session_id: str, *, status: str | None = None) -> list[ScheduleRecord]:
        tenant = await self._registry.resolve_tenant(session_id)
        async with self._sessionmaker() as session:
            rows = await schedules_repo.list_schedules(session, tenant_id=tenant.tenant_id, status=status)
        return [_to_record(row) for row in rows]

    async def get(self, session_id: str, schedule_id: str) -> ScheduleRecord:
        tenant = await self._registry.resolve_tenant(session_id)
        async with self._sessionmaker() as session:
            row = await schedules_repo.get_schedule(session, tenant_id=tenant.tenant_id, schedule_id=schedule_id)
        if row is None:
            raise ScheduleNotFound(f"schedule {schedule_id} not found")
        return _to_record(row)

    async def cancel(self, session_id: str, schedule_id: str, *, actor_id: str | None = None) -> ScheduleRecord:
        return await self._transition(
            session_id,
            schedule_id,
            from_status=SCHEDULE_SCHEDULED,
            to_status=SCHEDULE_CANCELLED,
            event_type="lifecycle.schedule.cancelled",
            actor_id=actor_id,
        )

    async def retry(self, session_id: str, schedule_id: str, *, actor_id: str | None = None) -> ScheduleRecord:
        # A failed schedule becomes due immediately.
        return await self._transition(
            session_id,
            schedule_id,
            from_status=SCHEDULE_FAILED,
            to_status=SCHEDULE_SCHEDULED,
            event_type="lifecycle.schedule.retried",
            actor_id=actor_id,
            run_at=self._clock(),
            error=None,
            run_id=None,
            executed_at=None,
        )

    async def run_due(self, *, limit: int | None = None) -> list[ScheduleRecord]:
        """Claim due schedules (oldest first) and run them with bounded concurrency."""
        now = self._clock()
        claimed: list[ScheduleRecord] = []
        async with self._sessionmaker() as session:
            due = await schedules_repo.list_due(session, now=now, limit=limit or self._scan_limit)
            for row in due:
                won = await schedules_repo.transition(
                    session,
                    schedule_id=row.id,
                    from_status=SCHEDULE_SCHEDULED,
                    to_status=SCHEDULE_IN_PROGRESS,
                    now=now,
                    executed_at=now,
                )
                if won:
                    claimed.append(_to_record(row))
            await session.commit()
        if not claimed:
            return []
        logger.info("schedules_claimed count=%s", len(claimed))

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _guarded(record: ScheduleRecord) -> ScheduleRecord:
            async with semaphore:
                return await self._execute(record)

        return list(await asyncio.gather(*(_guarded(record) for record in claimed)))

    async def _execute(self, record: ScheduleRecord) -> ScheduleRecord:
        run_id: str | None = None
        error: str | None = None
        final_status = SCHEDULE_FAILED
        session_id: str | None = None
        try:
            session_id = await self._registry.open_system_session(record.tenant_id)
            run = await self._orchestrator.run(
                session_id,
                record.subject_id,
                record.subject_display_name,
                record.actions,
                SYSTEM_EXECUTOR,
                execution_type=EXECUTION_SCHEDULED,
                schedule_id=record.schedule_id,
            )
            run_id = run.run_id
            if run.overall_status == RUN_SUCCESS:
                final_status = SCHEDULE_COMPLETED
            else:
                error = f"run finished with status {run.overall_status}"
        except LifecycleError as exc:
            error = str(exc) or exc.__class__.__name__
            logger.warning("schedule_run_failed schedule_id=%s error=%s", record.schedule_id, error)
        except Exception as exc:  # noqa: BLE001 - one broken schedule must not stop the scan
            error = f"{exc.__class__.__name__}: {exc}"
            logger.exception("schedule_run_crashed schedule_id=%s", record.schedule_id)
        finally:
            if session_id is not None:
                await self._registry.revoke_session(session_id)

        now = self._clock()
        async with self._sessionmaker() as session:
            await schedules_repo.transition(
                session,
                schedule_id=record.schedule_id,
                from_status=SCHEDULE_IN_PROGRESS,
                to_status=final_status,
                now=now,
                run_id=run_id,
                error=error,
            )
            await session.commit()
            row = await schedules_repo.get_schedule(
                session, tenant_id=record.tenant_id, schedule_id=record.schedule_id
            )
        await record_event(
            self._sessionmaker,
            tenant_id=record.tenant_id,
            actor_id=SYSTEM_EXECUTOR,
            event_type="lifecycle.schedule.executed",
            outcome="success" if final_status == SCHEDULE_COMPLETED else "failure",
            resource_type=RESOURCE_SCHEDULE,
            resource_id=record.schedule_id,
            metadata={"run_id": run_id, "status": final_status, "error": error},
            occurred_at=now,
        )
        return _to_record(row)

    async def _transition(
        self,
        session_id: str,
        schedule_id: str,
        *,
        from_status: str,
        to_status: str,
        event_type: str,
        actor_id: str | None,
        **values: Any,
    ) -> ScheduleRecord:
        tenant = await self._registry.resolve_tenant(session_id)
        now = self._clock()
        async with self._sessionmaker() as session:
            row = await schedules_repo.get_schedule(session, tenant_id=tenant.tenant_id, schedule_id=schedule_id)
            if row is None:
                raise ScheduleNotFound(f"schedule {schedule_id} not found")
            won = await schedules_repo.transition(
                session,
                schedule_id=schedule_id,
                from_status=from_status,
                to_status=to_status,
                now=now,
                **values,
            )
            if not won:
                raise ScheduleStateError(f"schedule {schedule_id} is {row.status}, expected {from_status}")
            await session.commit()
            await session.refresh(row)
        await record_event(
            self._sessionmaker,
            tenant_id=tenant.tenant_id,
            actor_id=actor_id,
            event_type=event_type,
            outcome="success",
            resource_type=RESOURCE_SCHEDULE,
            resource_id=schedule_id,
            occurred_at=now,
        )
        return _to_record(row)


def _to_record(row: ScheduledRun) -> ScheduleRecord:
    return ScheduleRecord(
        schedule_id=row.id,
        tenant_id=row.tenant_id,
        subject_id=row.subject_id,
        subject_display_name=row.subject_display_name,
        run_at=as_utc(row.run_at),
        timezone=row.timezone,
        actions=[ActionSpec.from_dict(item) for item in row.actions_json or []],
        status=row.status,
        created_by=row.created_by,
        template=row.template,
        run_id=row.run_id,
        error=row.error,
        executed_at=as_utc(row.executed_at),
        created_at=as_utc(row.created_at),
    )
