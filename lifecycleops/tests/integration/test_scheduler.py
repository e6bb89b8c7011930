from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from lifecycleops.core.errors import InvalidActionPlan, ScheduleNotFound, ScheduleStateError
from lifecycleops.domain.lifecycle import ActionSpec
from lifecycleops.domain.models import PortalSession
from lifecycleops.services.scheduler import SYSTEM_EXECUTOR, resolve_run_at
from lifecycleops.tests.utils.directory import graph_error
from lifecycleops.tests.utils.tenants import configure_test_tenant, fetch_audit_events
from scripts import run_due_schedules


DISABLE_ONLY = [ActionSpec(action_name="disable-account", ordinal=1)]


def test_local_wall_time_converts_with_daylight_saving() -> None:
    summer = resolve_run_at(local_date=date(2026, 10, 20), local_time=time(17, 0), timezone_name="America/New_York")
    winter = resolve_run_at(local_date=date(2026, 11, 20), local_time=time(17, 0), timezone_name="America/New_York")
    assert summer == datetime(2026, 10, 20, 21, 0, tzinfo=timezone.utc)
    assert winter == datetime(2026, 11, 20, 22, 0, tzinfo=timezone.utc)


def test_naive_run_at_is_read_in_the_given_zone() -> None:
    when = resolve_run_at(run_at=datetime(2026, 10, 20, 9, 0), timezone_name="Europe/Berlin")
    assert when == datetime(2026, 10, 20, 7, 0, tzinfo=timezone.utc)


def test_invalid_schedule_times_are_rejected() -> None:
    with pytest.raises(ValueError):
        resolve_run_at(local_date=date(2026, 10, 20), local_time=time(9, 0), timezone_name="Mars/Olympus")
    with pytest.raises(ValueError):
        resolve_run_at(local_date=date(2026, 10, 20), timezone_name="UTC")


@pytest.mark.asyncio
async def test_create_from_template(services, clock) -> None:
    session_id, tenant_id = await configure_test_tenant(services)
    record = await services.schedules.create(
        session_id,
        subject_id="u1",
        subject_display_name="User One",
        created_by="it-admin",
        run_at=clock.now + timedelta(hours=1),
        template="standard",
    )
    assert record.status == "scheduled"
    assert record.tenant_id == tenant_id
    assert record.template == "standard"
    assert record.actions[0].action_name == "disable-account"
    assert record.run_at == clock.now + timedelta(hours=1)

    listed = await services.schedules.list_schedules(session_id)
    assert [item.schedule_id for item in listed] == [record.schedule_id]
    events = await fetch_audit_events(services, tenant_id=tenant_id, event_type="lifecycle.schedule.created")
    assert [event.resource_id for event in events] == [record.schedule_id]


@pytest.mark.asyncio
async def test_create_requires_exactly_one_plan_source(services, clock) -> None:
    session_id, _ = await configure_test_tenant(services)
    common = dict(subject_id="u1", subject_display_name="User One", created_by="it-admin", run_at=clock.now)
    with pytest.raises(InvalidActionPlan):
        await services.schedules.create(session_id, **common)
    with pytest.raises(InvalidActionPlan):
        await services.schedules.create(session_id, actions=DISABLE_ONLY, template="standard", **common)
    with pytest.raises(InvalidActionPlan):
        await services.schedules.create(session_id, template="no-such-template", **common)
    with pytest.raises(InvalidActionPlan):
        await services.schedules.create(
            session_id, actions=[ActionSpec(action_name="format-laptop", ordinal=1)], **common
        )
    assert await services.schedules.list_schedules(session_id) == []


@pytest.mark.asyncio
async def test_due_schedule_runs_as_system_actor(services, fake_directory, clock) -> None:
    session_id, tenant_id = await configure_test_tenant(services)
    fake_directory.on("PATCH", "users/u1", httpx.Response(204))
    record = await services.schedules.create(
        session_id,
        subject_id="u1",
        subject_display_name="User One",
        created_by="it-admin",
        run_at=clock.now + timedelta(hours=1),
        actions=DISABLE_ONLY,
    )

    assert await services.schedules.run_due() == []
    clock.advance(hours=1)
    (executed,) = await services.schedules.run_due()

    assert executed.schedule_id == record.schedule_id
    assert executed.status == "completed"
    assert executed.executed_at == clock.now
    run = await services.log_store.get_run(session_id, executed.run_id)
    assert run.executed_by == SYSTEM_EXECUTOR
    assert run.execution_type == "scheduled"
    assert run.schedule_id == record.schedule_id
    assert run.overall_status == "success"

    # The system session does not outlive the run.
    async with services.sessionmaker() as session:
        system_sessions = (
            await session.execute(select(PortalSession).where(PortalSession.kind == "system"))
        ).scalars().all()
    assert len(system_sessions) == 1
    assert system_sessions[0].revoked_at is not None

    events = await fetch_audit_events(services, tenant_id=tenant_id, event_type="lifecycle.schedule.executed")
    assert events[0].outcome == "success"
    # Completed schedules are not picked up again.
    assert await services.schedules.run_due() == []


@pytest.mark.asyncio
async def test_failed_schedule_can_be_retried(services, fake_directory, clock) -> None:
    session_id, _ = await configure_test_tenant(services)
    fake_directory.on("PATCH", "users/u1", graph_error(403, "Authorization_RequestDenied", "denied"))
    record = await services.schedules.create(
        session_id,
        subject_id="u1",
        subject_display_name="User One",
        created_by="it-admin",
        run_at=clock.now,
        actions=DISABLE_ONLY,
    )
    (failed,) = await services.schedules.run_due()
    assert failed.status == "failed"
    assert failed.error == "run finished with status failed"
    assert failed.run_id is not None

    with pytest.raises(ScheduleStateError):
        await services.schedules.cancel(session_id, record.schedule_id)

    fake_directory.on("PATCH", "users/u1", httpx.Response(204))
    clock.advance(minutes=10)
    retried = await services.schedules.retry(session_id, record.schedule_id, actor_id="it-admin")
    assert retried.status == "scheduled"
    assert retried.error is None
    assert retried.run_at == clock.now

    (completed,) = await services.schedules.run_due()
    assert completed.status == "completed"
    assert completed.run_id != failed.run_id


@pytest.mark.asyncio
async def test_cancelled_schedule_never_runs(services, fake_directory, clock) -> None:
    session_id, _ = await configure_test_tenant(services)
    record = await services.schedules.create(
        session_id,
        subject_id="u1",
        subject_display_name="User One",
        created_by="it-admin",
        run_at=clock.now,
        actions=DISABLE_ONLY,
    )
    cancelled = await services.schedules.cancel(session_id, record.schedule_id, actor_id="it-admin")
    assert cancelled.status == "cancelled"
    with pytest.raises(ScheduleStateError):
        await services.schedules.cancel(session_id, record.schedule_id)
    with pytest.raises(ScheduleStateError):
        await services.schedules.retry(session_id, record.schedule_id)

    assert await services.schedules.run_due() == []
    assert fake_directory.graph_calls() == []


@pytest.mark.asyncio
async def test_disabled_tenant_schedule_fails(services, fake_directory, clock) -> None:
    session_id, _ = await configure_test_tenant(services)
    await services.schedules.create(
        session_id,
        subject_id="u1",
        subject_display_name="User One",
        created_by="it-admin",
        run_at=clock.now,
        actions=DISABLE_ONLY,
    )
    await services.registry.disable_tenant(session_id)
    (record,) = await services.schedules.run_due()
    assert record.status == "failed"
    assert record.run_id is None
    assert record.error == "Tenant is disabled"


@pytest.mark.asyncio
async def test_schedules_are_isolated_between_tenants(services, clock) -> None:
    session_a, _ = await configure_test_tenant(services, application_id="app-a")
    session_b, _ = await configure_test_tenant(services, application_id="app-b")
    record = await services.schedules.create(
        session_a,
        subject_id="u1",
        subject_display_name="User One",
        created_by="it-admin",
        run_at=clock.now + timedelta(days=1),
        actions=DISABLE_ONLY,
    )
    with pytest.raises(ScheduleNotFound):
        await services.schedules.get(session_b, record.schedule_id)
    with pytest.raises(ScheduleNotFound):
        await services.schedules.cancel(session_b, record.schedule_id)
    assert await services.schedules.list_schedules(session_b) == []


@pytest.mark.asyncio
async def test_scan_script_processes_due_schedules(services, fake_directory, clock, capsys) -> None:
    session_id, _ = await configure_test_tenant(services)
    fake_directory.on("PATCH", "users/u1", httpx.Response(204))
    fake_directory.on("PATCH", "users/u2", httpx.Response(204))
    for subject_id in ("u1", "u2"):
        await services.schedules.create(
            session_id,
            subject_id=subject_id,
            subject_display_name=subject_id.upper(),
            created_by="it-admin",
            run_at=clock.now,
            actions=DISABLE_ONLY,
        )

    processed = await run_due_schedules.scan_once(services, limit=5)
    assert processed == 2
    output = capsys.readouterr().out
    assert output.count("status=completed") == 2
    assert {item.status for item in await services.schedules.list_schedules(session_id)} == {"completed"}
