from __future__ import annotations

from typing import Any

from lifecycleops.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    return {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }


def _response(description: str, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unknown, revoked or expired session", "SESSION_EXPIRED", "Session expired"),
    403: _response("Tenant disabled", "TENANT_DISABLED", "Tenant is disabled"),
    404: _response("Not found within the caller's tenant", "RUN_NOT_FOUND", "run 1f3c not found"),
    422: _response("Invalid request or action plan", "INVALID_ACTION_PLAN", "unknown actions: wipe-everything"),
    502: _response(
        "Identity platform or directory API failure",
        "TOKEN_ACQUISITION_FAILED",
        "AADSTS7000215: Invalid client secret provided.",
    ),
}
