from __future__ import annotations

import secrets
import string
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from lifecycleops.core.errors import DirectoryApiError
from lifecycleops.domain.lifecycle import ACTION_SKIPPED, ACTION_SUCCESS
from lifecycleops.services.actions.base import (
    ActionContext,
    ActionExecutor,
    ActionResult,
    NoParameters,
    api_error_detail,
    fan_out_result,
)


GROUP_ODATA_TYPE = "#microsoft.graph.group"
_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*-_=+"


class DisableAccount(ActionExecutor):
    name = "disable-account"
    description = "Block sign-in for the account."

    async def perform(self, context: ActionContext, params: NoParameters) -> ActionResult:
        await context.directory.request(
            context.session_id,
            "PATCH",
            context.user_path,
            json={"accountEnabled": False},
            cancel=context.cancel,
        )
        return ActionResult(ACTION_SUCCESS, "Account disabled")


class ResetPasswordParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    force_change_next_sign_in: bool = True
    length: int = Field(default=24, ge=16, le=128)


def generate_password(length: int) -> str:
    # Guarantee every character class the directory's complexity policy checks.
    while True:
        candidate = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if (
            any(c.islower() for c in candidate)
            and any(c.isupper() for c in candidate)
            and any(c.isdigit() for c in candidate)
            and any(not c.isalnum() for c in candidate)
        ):
            return candidate


class ResetPassword(ActionExecutor):
    name = "reset-password"
    description = "Replace the password with a random value nobody is told."
    parameters_model = ResetPasswordParameters

    async def perform(self, context: ActionContext, params: ResetPasswordParameters) -> ActionResult:
        await context.directory.request(
            context.session_id,
            "PATCH",
            context.user_path,
            json={
                "passwordProfile": {
                    "password": generate_password(params.length),
                    "forceChangePasswordNextSignIn": params.force_change_next_sign_in,
                }
            },
            cancel=context.cancel,
        )
        # The generated password is discarded; it never reaches logs or outcomes.
        return ActionResult(
            ACTION_SUCCESS,
            "Password reset",
            {"force_change_next_sign_in": params.force_change_next_sign_in},
        )


class RevokeSessions(ActionExecutor):
    name = "revoke-sessions"
    description = "Invalidate refresh tokens and browser sessions."

    async def perform(self, context: ActionContext, params: NoParameters) -> ActionResult:
        await context.directory.request(
            context.session_id,
            "POST",
            f"{context.user_path}/revokeSignInSessions",
            cancel=context.cancel,
        )
        return ActionResult(ACTION_SUCCESS, "Sign-in sessions revoked")


class RevokeLicenseParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Empty means every assigned license.
    sku_ids: list[str] = Field(default_factory=list)


class RevokeLicense(ActionExecutor):
    name = "revoke-license"
    description = "Remove assigned licenses."
    parameters_model = RevokeLicenseParameters

    async def perform(self, context: ActionContext, params: RevokeLicenseParameters) -> ActionResult:
        user = await context.directory.get_json(
            context.session_id,
            context.user_path,
            params={"$select": "id,assignedLicenses"},
            cancel=context.cancel,
        ) or {}
        assigned = [item.get("skuId") for item in user.get("assignedLicenses") or [] if item.get("skuId")]
        targets = [sku for sku in assigned if not params.sku_ids or sku in params.sku_ids]
        if not targets:
            return ActionResult(ACTION_SKIPPED, "No matching licenses assigned", {"removed_sku_ids": []})
        await context.directory.request(
            context.session_id,
            "POST",
            f"{context.user_path}/assignLicense",
            json={"addLicenses": [], "removeLicenses": targets},
            cancel=context.cancel,
        )
        return ActionResult(ACTION_SUCCESS, f"Removed {len(targets)} license(s)", {"removed_sku_ids": targets})


class RemoveFromGroupsParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exclude_group_ids: list[str] = Field(default_factory=list)


class RemoveFromGroups(ActionExecutor):
    name = "remove-from-groups"
    description = "Remove direct membership from every group."
    parameters_model = RemoveFromGroupsParameters

    async def perform(self, context: ActionContext, params: RemoveFromGroupsParameters) -> ActionResult:
        groups: list[dict[str, Any]] = []
        async for entry in context.directory.paginate(
            context.session_id,
            f"{context.user_path}/memberOf",
            params={"$select": "id,displayName"},
            cancel=context.cancel,
        ):
            # memberOf also lists directory roles and administrative units.
            if entry.get("@odata.type") != GROUP_ODATA_TYPE:
                continue
            if entry.get("id") in params.exclude_group_ids:
                continue
            groups.append(entry)

        member_ref = quote(context.subject_id, safe="@")
        done: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for group in groups:
            summary = {"group_id": group["id"], "display_name": group.get("displayName")}
            try:
                await context.directory.request(
                    context.session_id,
                    "DELETE",
                    f"groups/{group['id']}/members/{member_ref}/$ref",
                    cancel=context.cancel,
                )
            except DirectoryApiError as exc:
                # Dynamic and on-premises synced groups reject direct removal.
                failed.append({**summary, "message": str(exc), **api_error_detail(exc)})
                continue
            done.append(summary)
        return fan_out_result(noun="groups", done=done, failed=failed)


class SetAutoReplyParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(min_length=1)
    external_message: str | None = None
    external_audience: str = Field(default="all", pattern="^(none|contactsOnly|all)$")


class SetAutoReply(ActionExecutor):
    name = "set-auto-reply"
    description = "Enable an automatic reply on the mailbox."
    parameters_model = SetAutoReplyParameters

    async def perform(self, context: ActionContext, params: SetAutoReplyParameters) -> ActionResult:
        await context.directory.request(
            context.session_id,
            "PATCH",
            f"{context.user_path}/mailboxSettings",
            json={
                "automaticRepliesSetting": {
                    "status": "alwaysEnabled",
                    "internalReplyMessage": params.message,
                    "externalReplyMessage": params.external_message or params.message,
                    "externalAudience": params.external_audience,
                }
            },
            cancel=context.cancel,
        )
        return ActionResult(ACTION_SUCCESS, "Automatic reply enabled")


class RetireDevicesParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Full wipe instead of removing only company data.
    wipe: bool = False
    keep_enrollment_data: bool = False


class RetireDevices(ActionExecutor):
    name = "retire-devices"
    description = "Retire or wipe managed devices."
    parameters_model = RetireDevicesParameters

    async def perform(self, context: ActionContext, params: RetireDevicesParameters) -> ActionResult:
        devices = [
            device
            async for device in context.directory.paginate(
                context.session_id,
                f"{context.user_path}/managedDevices",
                params={"$select": "id,deviceName,operatingSystem"},
                cancel=context.cancel,
            )
        ]
        verb = "wipe" if params.wipe else "retire"
        body = {"keepEnrollmentData": params.keep_enrollment_data, "keepUserData": False} if params.wipe else None

        done: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for device in devices:
            summary = {"device_id": device["id"], "device_name": device.get("deviceName"), "operation": verb}
            try:
                await context.directory.request(
                    context.session_id,
                    "POST",
                    f"deviceManagement/managedDevices/{device['id']}/{verb}",
                    json=body,
                    cancel=context.cancel,
                )
            except DirectoryApiError as exc:
                failed.append({**summary, "message": str(exc), **api_error_detail(exc)})
                continue
            done.append(summary)
        return fan_out_result(noun="devices", done=done, failed=failed)


BUILTIN_ACTIONS: tuple[type[ActionExecutor], ...] = (
    DisableAccount,
    ResetPassword,
    RevokeSessions,
    RevokeLicense,
    RemoveFromGroups,
    SetAutoReply,
    RetireDevices,
)
