from __future__ import annotations

from typing import Iterable

from lifecycleops.services.actions.base import ActionContext, ActionExecutor, ActionResult
from lifecycleops.services.actions.builtin import BUILTIN_ACTIONS


class ActionCatalog:
    """Name -> executor lookup used to validate and run action plans."""

    def __init__(self, executors: Iterable[ActionExecutor] = ()) -> None:
        self._executors: dict[str, ActionExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: ActionExecutor) -> None:
        if executor.name in self._executors:
            raise ValueError(f"Duplicate action name: {executor.name}")
        self._executors[executor.name] = executor

    def get(self, name: str) -> ActionExecutor | None:
        return self._executors.get(name)

    def names(self) -> list[str]:
        return sorted(self._executors)

    def describe(self) -> list[dict[str, object]]:
        return [
            {
                "name": executor.name,
                "description": executor.description,
                "parameters": executor.parameters_model.model_json_schema(),
            }
            for _, executor in sorted(self._executors.items())
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._executors


def default_catalog() -> ActionCatalog:
    return ActionCatalog(action_cls() for action_cls in BUILTIN_ACTIONS)


__all__ = [
    "ActionCatalog",
    "ActionContext",
    "ActionExecutor",
    "ActionResult",
    "default_catalog",
]
