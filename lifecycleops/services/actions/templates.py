from __future__ import annotations

from typing import Any

from lifecycleops.domain.lifecycle import ActionSpec


DEFAULT_AUTO_REPLY = (
    "Thank you for your message. I am no longer with the organization. "
    "Please contact my manager for assistance."
)

# Ordered (action_name, parameters) pairs; ordinals follow list position.
TEMPLATES: dict[str, dict[str, Any]] = {
    "standard": {
        "description": "Regular employee departure.",
        "actions": [
            ("disable-account", {}),
            ("reset-password", {}),
            ("revoke-sessions", {}),
            ("revoke-license", {}),
            ("remove-from-groups", {}),
            ("retire-devices", {}),
        ],
    },
    "executive": {
        "description": "Leadership departure: keeps group membership, sets an auto-reply.",
        "actions": [
            ("disable-account", {}),
            ("reset-password", {}),
            ("revoke-sessions", {}),
            ("set-auto-reply", {"message": DEFAULT_AUTO_REPLY}),
            ("revoke-license", {}),
            ("retire-devices", {}),
        ],
    },
    "contractor": {
        "description": "Contract end: full device wipe.",
        "actions": [
            ("disable-account", {}),
            ("reset-password", {}),
            ("revoke-sessions", {}),
            ("revoke-license", {}),
            ("remove-from-groups", {}),
            ("retire-devices", {"wipe": True}),
        ],
    },
    "security": {
        "description": "Immediate lockout: block sign-in and kill sessions first.",
        "actions": [
            ("disable-account", {}),
            ("revoke-sessions", {}),
            ("reset-password", {}),
            ("remove-from-groups", {}),
            ("retire-devices", {"wipe": True}),
            ("revoke-license", {}),
        ],
    },
}


def list_templates() -> list[dict[str, Any]]:
    return [
        {
            "name": name,
            "description": template["description"],
            "actions": [action_name for action_name, _ in template["actions"]],
        }
        for name, template in TEMPLATES.items()
    ]


def expand_template(
    name: str,
    *,
    overrides: dict[str, dict[str, Any]] | None = None,
) -> list[ActionSpec]:
    template = TEMPLATES.get(name)
    if template is None:
        raise KeyError(name)
    overrides = overrides or {}
    specs: list[ActionSpec] = []
    for ordinal, (action_name, parameters) in enumerate(template["actions"], start=1):
        merged = {**parameters, **overrides.get(action_name, {})}
        specs.append(ActionSpec(action_name=action_name, parameters=merged, ordinal=ordinal))
    return specs
