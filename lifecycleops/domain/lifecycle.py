from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable


ACTION_SUCCESS = "success"
ACTION_FAILED = "failed"
ACTION_SKIPPED = "skipped"
ACTION_PARTIAL = "partial"
ACTION_STATUSES = frozenset({ACTION_SUCCESS, ACTION_FAILED, ACTION_SKIPPED, ACTION_PARTIAL})

RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_PARTIAL = "partial"
RUN_FAILED = "failed"
RUN_STATUSES = frozenset({RUN_RUNNING, RUN_SUCCESS, RUN_PARTIAL, RUN_FAILED})

EXECUTION_IMMEDIATE = "immediate"
EXECUTION_SCHEDULED = "scheduled"


@dataclass(frozen=True)
class TenantRecord:
    tenant_id: str
    application_id: str
    directory_id: str
    # Ciphertext only; decrypting is the credential store's job.
    encrypted_secret: str = field(repr=False)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    disabled_at: datetime | None = None


@dataclass(frozen=True)
class BearerToken:
    value: str = field(repr=False)
    expires_at: datetime
    # True when served from the broker cache rather than a fresh exchange.
    from_cache: bool = False


@dataclass(frozen=True)
class ActionSpec:
    action_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    ordinal: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"action_name": self.action_name, "parameters": dict(self.parameters), "ordinal": self.ordinal}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ActionSpec":
        return cls(
            action_name=str(payload["action_name"]),
            parameters=dict(payload.get("parameters") or {}),
            ordinal=int(payload.get("ordinal", 0)),
        )


@dataclass(frozen=True)
class ActionOutcome:
    action_name: str
    status: str
    message: str
    timestamp: datetime
    detail: dict[str, Any] | None = None
    ordinal: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_name": self.action_name,
            "status": self.status,
            "message": self.message,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
            "ordinal": self.ordinal,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ActionOutcome":
        return cls(
            action_name=payload["action_name"],
            status=payload["status"],
            message=payload.get("message") or "",
            detail=payload.get("detail"),
            timestamp=datetime.fromisoformat(payload["timestamp"]),
            ordinal=payload.get("ordinal"),
        )


def derive_overall_status(outcomes: Iterable[ActionOutcome]) -> str:
    """Collapse per-action outcomes into the run status.

    ``success`` only when every action succeeded, ``failed`` only when every
    action failed, ``partial`` for any other mix (including skipped actions left
    behind by a cancellation).
    """
    statuses = [outcome.status for outcome in outcomes]
    if statuses and all(status == ACTION_SUCCESS for status in statuses):
        return RUN_SUCCESS
    if statuses and all(status == ACTION_FAILED for status in statuses):
        return RUN_FAILED
    return RUN_PARTIAL


def count_outcomes(outcomes: Iterable[ActionOutcome]) -> dict[str, int]:
    counts = {"total": 0, ACTION_SUCCESS: 0, ACTION_FAILED: 0, ACTION_SKIPPED: 0, ACTION_PARTIAL: 0}
    for outcome in outcomes:
        counts["total"] += 1
        counts[outcome.status] = counts.get(outcome.status, 0) + 1
    return counts


@dataclass
class ExecutionRun:
    run_id: str
    tenant_id: str
    subject_id: str
    subject_display_name: str
    executed_by: str
    start_time: datetime
    end_time: datetime | None = None
    actions: list[ActionOutcome] = field(default_factory=list)
    execution_type: str = EXECUTION_IMMEDIATE
    schedule_id: str | None = None
    error: str | None = None

    @property
    def sealed(self) -> bool:
        return self.end_time is not None

    @property
    def overall_status(self) -> str:
        return derive_overall_status(self.actions)

    @property
    def status(self) -> str:
        # Unsealed runs report progress, sealed runs their derived outcome.
        return self.overall_status if self.sealed else RUN_RUNNING


@dataclass(frozen=True)
class ExecutionRunSummary:
    run_id: str
    subject_id: str
    subject_display_name: str
    executed_by: str
    execution_type: str
    status: str
    start_time: datetime
    end_time: datetime | None
    total_actions: int
    successful_actions: int
    failed_actions: int
    skipped_actions: int
    partial_actions: int
    schedule_id: str | None = None


@dataclass(frozen=True)
class RunFilters:
    status: str | None = None
    subject_id: str | None = None
    execution_type: str | None = None
    started_from: datetime | None = None
    started_to: datetime | None = None
    limit: int = 50
    offset: int = 0


SCHEDULE_SCHEDULED = "scheduled"
SCHEDULE_IN_PROGRESS = "in-progress"
SCHEDULE_COMPLETED = "completed"
SCHEDULE_FAILED = "failed"
SCHEDULE_CANCELLED = "cancelled"
SCHEDULE_STATUSES = frozenset(
    {SCHEDULE_SCHEDULED, SCHEDULE_IN_PROGRESS, SCHEDULE_COMPLETED, SCHEDULE_FAILED, SCHEDULE_CANCELLED}
)


@dataclass(frozen=True)
class ScheduleRecord:
    schedule_id: str
    tenant_id: str
    subject_id: str
    subject_display_name: str
    run_at: datetime
    timezone: str
    actions: list[ActionSpec]
    status: str
    created_by: str
    template: str | None = None
    run_id: str | None = None
    error: str | None = None
    executed_at: datetime | None = None
    created_at: datetime | None = None
