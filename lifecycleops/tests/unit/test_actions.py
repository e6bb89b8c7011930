from __future__ import annotations

from datetime import datetime, timezone
import json

import httpx
import pytest

from lifecycleops.domain.lifecycle import BearerToken
from lifecycleops.services.actions import ActionCatalog, ActionContext, default_catalog
from lifecycleops.services.actions.builtin import DisableAccount, generate_password
from lifecycleops.services.directory import DirectoryClient
from lifecycleops.services.resilience import RetryPolicy
from lifecycleops.tests.utils.directory import GRAPH_BASE, FakeClock, FakeDirectory, RecordingSleeper, graph_error


class StubBroker:
    async def get_token(self, session_id: str, *, force_refresh: bool = False) -> BearerToken:
        return BearerToken(value="token-1", expires_at=datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
async def context(directory):
    async with directory.client() as http_client:
        client = DirectoryClient(
            StubBroker(),
            base_url=GRAPH_BASE,
            http_client=http_client,
            policy=RetryPolicy(timeout_ms=1000, max_attempts=2, backoff_base_s=1.0, backoff_cap_s=10.0),
            sleeper=RecordingSleeper(),
        )
        yield ActionContext(session_id="s", subject_id="u1", directory=client)


def _run(name: str, context: ActionContext, parameters: dict | None = None):
    return default_catalog().get(name).execute(context, parameters, ordinal=1, clock=FakeClock())


def test_default_catalog_lists_builtin_actions() -> None:
    catalog = default_catalog()
    assert catalog.names() == [
        "disable-account",
        "remove-from-groups",
        "reset-password",
        "retire-devices",
        "revoke-license",
        "revoke-sessions",
        "set-auto-reply",
    ]
    described = {entry["name"]: entry for entry in catalog.describe()}
    assert "message" in described["set-auto-reply"]["parameters"]["properties"]


def test_catalog_rejects_duplicate_names() -> None:
    with pytest.raises(ValueError):
        ActionCatalog([DisableAccount(), DisableAccount()])


@pytest.mark.asyncio
async def test_disable_account_patches_user(context, directory) -> None:
    directory.on("PATCH", "users/u1", httpx.Response(204))
    outcome = await _run("disable-account", context)
    assert outcome.status == "success"
    assert outcome.message == "Account disabled"
    assert outcome.ordinal == 1
    assert outcome.timestamp == FakeClock().now
    assert json.loads(directory.bodies[0]) == {"accountEnabled": False}


@pytest.mark.asyncio
async def test_forbidden_becomes_failed_outcome(context, directory) -> None:
    directory.on("PATCH", "users/u1", graph_error(403, "Authorization_RequestDenied", "Insufficient privileges"))
    outcome = await _run("disable-account", context)
    assert outcome.status == "failed"
    assert outcome.message == "Insufficient privileges"
    assert outcome.detail == {"status_code": 403, "attempts": 1, "error_code": "Authorization_RequestDenied"}


@pytest.mark.asyncio
async def test_reset_password_never_reports_the_password(context, directory) -> None:
    directory.on("PATCH", "users/u1", httpx.Response(204))
    outcome = await _run("reset-password", context, {"length": 20})
    sent = json.loads(directory.bodies[0])["passwordProfile"]
    assert len(sent["password"]) == 20
    assert sent["forceChangePasswordNextSignIn"] is True
    assert outcome.status == "success"
    assert sent["password"] not in json.dumps(outcome.to_dict())


@pytest.mark.asyncio
async def test_invalid_parameters_fail_without_calling_directory(context, directory) -> None:
    outcome = await _run("reset-password", context, {"length": 4})
    assert outcome.status == "failed"
    assert outcome.message == "Invalid action parameters"
    assert directory.calls == []


@pytest.mark.asyncio
async def test_revoke_license_removes_matching_skus(context, directory) -> None:
    directory.on(
        "GET",
        "users/u1",
        httpx.Response(200, json={"id": "u1", "assignedLicenses": [{"skuId": "sku-a"}, {"skuId": "sku-b"}]}),
    )
    directory.on("POST", "users/u1/assignLicense", httpx.Response(200, json={"id": "u1"}))
    outcome = await _run("revoke-license", context, {"sku_ids": ["sku-b"]})
    assert outcome.status == "success"
    assert outcome.detail == {"removed_sku_ids": ["sku-b"]}
    assert json.loads(directory.bodies[-1]) == {"addLicenses": [], "removeLicenses": ["sku-b"]}


@pytest.mark.asyncio
async def test_revoke_license_skips_when_nothing_assigned(context, directory) -> None:
    directory.on("GET", "users/u1", httpx.Response(200, json={"id": "u1", "assignedLicenses": []}))
    outcome = await _run("revoke-license", context)
    assert outcome.status == "skipped"
    assert directory.graph_calls("POST") == []


@pytest.mark.asyncio
async def test_remove_from_groups_reports_partial(context, directory) -> None:
    directory.on(
        "GET",
        "users/u1/memberOf",
        httpx.Response(
            200,
            json={
                "value": [
                    {"@odata.type": "#microsoft.graph.group", "id": "g1", "displayName": "Sales"},
                    {"@odata.type": "#microsoft.graph.directoryRole", "id": "r1"},
                    {"@odata.type": "#microsoft.graph.group", "id": "g2", "displayName": "Dynamic"},
                    {"@odata.type": "#microsoft.graph.group", "id": "g3", "displayName": "Kept"},
                ]
            },
        ),
    )
    directory.on("DELETE", "groups/g1/members/u1/$ref", httpx.Response(204))
    directory.on(
        "DELETE",
        "groups/g2/members/u1/$ref",
        graph_error(400, "Request_BadRequest", "Cannot update a dynamic group"),
    )
    outcome = await _run("remove-from-groups", context, {"exclude_group_ids": ["g3"]})
    assert outcome.status == "partial"
    assert [item["group_id"] for item in outcome.detail["completed"]] == ["g1"]
    assert [item["group_id"] for item in outcome.detail["failed"]] == ["g2"]
    assert ("DELETE", "groups/g3/members/u1/$ref") not in directory.calls


@pytest.mark.asyncio
async def test_retire_devices_skips_without_devices(context, directory) -> None:
    directory.on("GET", "users/u1/managedDevices", httpx.Response(200, json={"value": []}))
    outcome = await _run("retire-devices", context)
    assert outcome.status == "skipped"


@pytest.mark.asyncio
async def test_wipe_devices_uses_wipe_endpoint(context, directory) -> None:
    directory.on(
        "GET",
        "users/u1/managedDevices",
        httpx.Response(200, json={"value": [{"id": "d1", "deviceName": "laptop"}]}),
    )
    directory.on("POST", "deviceManagement/managedDevices/d1/wipe", httpx.Response(204))
    outcome = await _run("retire-devices", context, {"wipe": True})
    assert outcome.status == "success"
    assert outcome.detail["completed"][0]["operation"] == "wipe"


@pytest.mark.asyncio
async def test_auto_reply_requires_message(context, directory) -> None:
    outcome = await _run("set-auto-reply", context, {})
    assert outcome.status == "failed"
    directory.on("PATCH", "users/u1/mailboxSettings", httpx.Response(200, json={}))
    outcome = await _run("set-auto-reply", context, {"message": "Gone fishing"})
    assert outcome.status == "success"
    setting = json.loads(directory.bodies[-1])["automaticRepliesSetting"]
    assert setting["externalReplyMessage"] == "Gone fishing"


def test_generated_passwords_cover_character_classes() -> None:
    password = generate_password(16)
    assert len(password) == 16
    assert any(c.isupper() for c in password)
    assert any(c.islower() for c in password)
    assert any(c.isdigit() for c in password)
    assert any(not c.isalnum() for c in password)
