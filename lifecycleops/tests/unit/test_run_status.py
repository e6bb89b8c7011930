from __future__ import annotations

from datetime import datetime, timezone

from lifecycleops.domain.lifecycle import (
    ACTION_FAILED,
    ACTION_PARTIAL,
    ACTION_SKIPPED,
    ACTION_SUCCESS,
    ActionOutcome,
    ExecutionRun,
    count_outcomes,
    derive_overall_status,
)


NOW = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)


def _outcomes(*statuses: str) -> list[ActionOutcome]:
    return [
        ActionOutcome(action_name=f"a{i}", status=status, message="", timestamp=NOW, ordinal=i)
        for i, status in enumerate(statuses, start=1)
    ]


def test_all_success_is_success() -> None:
    assert derive_overall_status(_outcomes(ACTION_SUCCESS, ACTION_SUCCESS)) == "success"


def test_all_failed_is_failed() -> None:
    assert derive_overall_status(_outcomes(ACTION_FAILED, ACTION_FAILED)) == "failed"


def test_any_mix_is_partial() -> None:
    assert derive_overall_status(_outcomes(ACTION_FAILED, ACTION_SUCCESS)) == "partial"
    assert derive_overall_status(_outcomes(ACTION_SUCCESS, ACTION_SKIPPED)) == "partial"
    assert derive_overall_status(_outcomes(ACTION_PARTIAL)) == "partial"
    assert derive_overall_status(_outcomes(ACTION_SKIPPED, ACTION_SKIPPED)) == "partial"


def test_counts_cover_every_status() -> None:
    counts = count_outcomes(_outcomes(ACTION_SUCCESS, ACTION_FAILED, ACTION_SKIPPED, ACTION_SUCCESS))
    assert counts == {"total": 4, "success": 2, "failed": 1, "skipped": 1, "partial": 0}


def test_unsealed_run_reports_running() -> None:
    run = ExecutionRun(
        run_id="r1",
        tenant_id="t1",
        subject_id="u1",
        subject_display_name="User One",
        executed_by="op",
        start_time=NOW,
        actions=_outcomes(ACTION_SUCCESS),
    )
    assert run.status == "running"
    run.end_time = NOW
    assert run.sealed
    assert run.status == "success"


def test_outcome_serialization_keeps_timestamp_zone() -> None:
    outcome = _outcomes(ACTION_FAILED)[0]
    restored = ActionOutcome.from_dict(outcome.to_dict())
    assert restored == outcome
