from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Any, ClassVar
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, ValidationError

from lifecycleops.core.clock import Clock, utc_now
from lifecycleops.core.errors import DirectoryApiError, OperationCancelled
from lifecycleops.domain.lifecycle import (
    ACTION_FAILED,
    ACTION_PARTIAL,
    ACTION_SKIPPED,
    ACTION_SUCCESS,
    ActionOutcome,
)
from lifecycleops.services.directory import DirectoryClient
from lifecycleops.services.resilience import CancellationToken


logger = logging.getLogger(__name__)


class NoParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class ActionContext:
    session_id: str
    subject_id: str
    directory: DirectoryClient
    cancel: CancellationToken | None = None

    @property
    def user_path(self) -> str:
        # Subject ids may be object ids or UPNs; keep "@" readable in the path.
        return f"users/{quote(self.subject_id, safe='@')}"


@dataclass(frozen=True)
class ActionResult:
    status: str
    message: str
    detail: dict[str, Any] | None = None


class ActionExecutor(ABC):
    """One named lifecycle action behind a uniform, never-raising interface.

    Subclasses implement :meth:`perform`; :meth:`execute` validates parameters
    and converts every failure into a ``failed`` outcome so a run can always
    continue with its next action.
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""
    parameters_model: ClassVar[type[BaseModel]] = NoParameters

    @abstractmethod
    async def perform(self, context: ActionContext, params: Any) -> ActionResult:
        ...

    def validate_parameters(self, parameters: dict[str, Any] | None) -> BaseModel:
        return self.parameters_model.model_validate(parameters or {})

    async def execute(
        self,
        context: ActionContext,
        parameters: dict[str, Any] | None = None,
        *,
        ordinal: int | None = None,
        clock: Clock = utc_now,
    ) -> ActionOutcome:
        try:
            params = self.validate_parameters(parameters)
        except ValidationError as exc:
            return self._outcome(
                ACTION_FAILED,
                "Invalid action parameters",
                {"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
                ordinal=ordinal,
                clock=clock,
            )

        try:
            result = await self.perform(context, params)
        except OperationCancelled as exc:
            logger.info("action_cancelled action=%s subject_id=%s", self.name, context.subject_id)
            return self._outcome(
                ACTION_FAILED,
                f"Cancelled while waiting to retry: {exc}",
                {"cancelled": True},
                ordinal=ordinal,
                clock=clock,
            )
        except DirectoryApiError as exc:
            logger.warning(
                "action_failed action=%s subject_id=%s status=%s error_code=%s attempts=%s",
                self.name,
                context.subject_id,
                exc.status_code,
                exc.error_code,
                exc.attempts,
            )
            return self._outcome(ACTION_FAILED, str(exc), api_error_detail(exc), ordinal=ordinal, clock=clock)
        except Exception as exc:  # noqa: BLE001 - any action failure becomes an outcome
            logger.exception("action_crashed action=%s subject_id=%s", self.name, context.subject_id)
            return self._outcome(
                ACTION_FAILED,
                str(exc) or exc.__class__.__name__,
                {"error_type": exc.__class__.__name__},
                ordinal=ordinal,
                clock=clock,
            )
        return self._outcome(result.status, result.message, result.detail, ordinal=ordinal, clock=clock)

    def _outcome(
        self,
        status: str,
        message: str,
        detail: dict[str, Any] | None,
        *,
        ordinal: int | None,
        clock: Clock,
    ) -> ActionOutcome:
        return ActionOutcome(
            action_name=self.name,
            status=status,
            message=message,
            timestamp=clock(),
            detail=detail,
            ordinal=ordinal,
        )


def api_error_detail(exc: DirectoryApiError) -> dict[str, Any]:
    detail: dict[str, Any] = {"status_code": exc.status_code, "attempts": exc.attempts}
    if exc.error_code:
        detail["error_code"] = exc.error_code
    return detail


def fan_out_result(
    *,
    noun: str,
    done: list[dict[str, Any]],
    failed: list[dict[str, Any]],
) -> ActionResult:
    # Aggregate per-item results for actions that touch many directory objects.
    detail = {"completed": done, "failed": failed}
    if not done and not failed:
        return ActionResult(ACTION_SKIPPED, f"No {noun} found", detail)
    if not failed:
        return ActionResult(ACTION_SUCCESS, f"Processed {len(done)} {noun}", detail)
    if not done:
        return ActionResult(ACTION_FAILED, f"All {len(failed)} {noun} failed", detail)
    return ActionResult(
        ACTION_PARTIAL,
        f"Processed {len(done)} of {len(done) + len(failed)} {noun}",
        detail,
    )
