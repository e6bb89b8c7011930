from __future__ import annotations

from datetime import timedelta, timezone

import httpx
import pytest

from lifecycleops.core.errors import DatabaseError, RunNotFound
from lifecycleops.domain.lifecycle import ActionSpec, ExecutionRun, RunFilters
from lifecycleops.tests.utils.directory import graph_error
from lifecycleops.tests.utils.tenants import configure_test_tenant


async def _disable(services, session_id: str, subject_id: str):
    return await services.orchestrator.run(
        session_id,
        subject_id,
        subject_id.title(),
        [ActionSpec(action_name="disable-account", ordinal=1)],
        "it-admin",
    )


@pytest.mark.asyncio
async def test_runs_are_isolated_between_tenants(services, fake_directory) -> None:
    session_a, _ = await configure_test_tenant(services, application_id="app-a")
    session_b, _ = await configure_test_tenant(services, application_id="app-b")
    fake_directory.on("PATCH", "users/u1", httpx.Response(204))
    run = await _disable(services, session_a, "u1")

    # A foreign run id looks exactly like an unknown one.
    with pytest.raises(RunNotFound):
        await services.log_store.get_run(session_b, run.run_id)
    with pytest.raises(RunNotFound):
        await services.log_store.get_run(session_b, "no-such-run")
    assert await services.log_store.list_runs(session_b) == []
    assert [summary.run_id for summary in await services.log_store.list_runs(session_a)] == [run.run_id]


@pytest.mark.asyncio
async def test_list_filters_and_ordering(services, fake_directory, clock) -> None:
    session_id, _ = await configure_test_tenant(services)
    fake_directory.on("PATCH", "users/ok1", httpx.Response(204))
    fake_directory.on("PATCH", "users/ok2", httpx.Response(204))
    fake_directory.on("PATCH", "users/bad", graph_error(403, "Authorization_RequestDenied", "denied"))

    start = clock.now
    first = await _disable(services, session_id, "ok1")
    clock.advance(minutes=5)
    failed = await _disable(services, session_id, "bad")
    clock.advance(minutes=5)
    latest = await _disable(services, session_id, "ok2")

    newest_first = await services.log_store.list_runs(session_id)
    assert [summary.run_id for summary in newest_first] == [latest.run_id, failed.run_id, first.run_id]

    by_status = await services.log_store.list_runs(session_id, RunFilters(status="failed"))
    assert [summary.run_id for summary in by_status] == [failed.run_id]

    by_subject = await services.log_store.list_runs(session_id, RunFilters(subject_id="ok1"))
    assert [summary.run_id for summary in by_subject] == [first.run_id]

    window = await services.log_store.list_runs(
        session_id,
        RunFilters(started_from=start + timedelta(minutes=1), started_to=start + timedelta(minutes=6)),
    )
    assert [summary.run_id for summary in window] == [failed.run_id]

    # Bounds with a non-UTC offset select the same instants.
    plus_two = timezone(timedelta(hours=2))
    shifted = await services.log_store.list_runs(
        session_id,
        RunFilters(
            started_from=(start + timedelta(minutes=1)).astimezone(plus_two),
            started_to=(start + timedelta(minutes=6)).astimezone(plus_two),
        ),
    )
    assert [summary.run_id for summary in shifted] == [failed.run_id]

    page = await services.log_store.list_runs(session_id, RunFilters(limit=1, offset=1))
    assert [summary.run_id for summary in page] == [failed.run_id]


@pytest.mark.asyncio
async def test_summary_counts_match_outcomes(services, fake_directory) -> None:
    session_id, _ = await configure_test_tenant(services)
    fake_directory.on("PATCH", "users/u1", httpx.Response(204))
    fake_directory.on("GET", "users/u1/memberOf", httpx.Response(200, json={"value": []}))
    await services.orchestrator.run(
        session_id,
        "u1",
        "User One",
        [
            ActionSpec(action_name="disable-account", ordinal=1),
            ActionSpec(action_name="remove-from-groups", ordinal=2),
        ],
        "it-admin",
    )
    (summary,) = await services.log_store.list_runs(session_id)
    assert summary.total_actions == 2
    assert summary.successful_actions == 1
    assert summary.skipped_actions == 1
    assert summary.end_time is not None
    assert summary.execution_type == "immediate"


@pytest.mark.asyncio
async def test_duplicate_append_is_rejected(services, clock) -> None:
    _, tenant_id = await configure_test_tenant(services)
    run = ExecutionRun(
        run_id="run-1",
        tenant_id=tenant_id,
        subject_id="u1",
        subject_display_name="User One",
        executed_by="it-admin",
        start_time=clock.now,
    )
    await services.log_store.append(run)
    with pytest.raises(DatabaseError):
        await services.log_store.append(run)
