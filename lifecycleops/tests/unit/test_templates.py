from __future__ import annotations

import pytest

from lifecycleops.services.actions import default_catalog
from lifecycleops.services.actions.templates import DEFAULT_AUTO_REPLY, TEMPLATES, expand_template, list_templates


def test_every_template_names_known_actions() -> None:
    # Templates must only reference actions the catalog can run.
    catalog = default_catalog()
    for name in TEMPLATES:
        for spec in expand_template(name):
            assert spec.action_name in catalog


def test_expansion_numbers_actions_from_one() -> None:
    specs = expand_template("security")
    assert [spec.ordinal for spec in specs] == list(range(1, len(specs) + 1))
    assert [spec.action_name for spec in specs[:2]] == ["disable-account", "revoke-sessions"]


def test_overrides_merge_into_template_parameters() -> None:
    specs = expand_template("executive", overrides={"set-auto-reply": {"external_audience": "none"}})
    auto_reply = next(spec for spec in specs if spec.action_name == "set-auto-reply")
    assert auto_reply.parameters == {"message": DEFAULT_AUTO_REPLY, "external_audience": "none"}


def test_expansion_does_not_mutate_template() -> None:
    expand_template("contractor", overrides={"retire-devices": {"wipe": False}})
    retire = next(params for action, params in TEMPLATES["contractor"]["actions"] if action == "retire-devices")
    assert retire == {"wipe": True}


def test_unknown_template_raises() -> None:
    with pytest.raises(KeyError):
        expand_template("nope")


def test_listing_describes_action_order() -> None:
    listed = {entry["name"]: entry for entry in list_templates()}
    assert set(listed) == {"standard", "executive", "contractor", "security"}
    assert listed["standard"]["actions"][0] == "disable-account"
