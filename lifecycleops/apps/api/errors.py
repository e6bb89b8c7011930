from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lifecycleops.apps.api.response import error_envelope
from lifecycleops.core.errors import (
    CryptoError,
    DatabaseError,
    DirectoryApiError,
    InvalidActionPlan,
    LifecycleError,
    OperationCancelled,
    RunNotFound,
    RunSealedError,
    ScheduleNotFound,
    ScheduleStateError,
    SessionExpired,
    SessionNotFound,
    TenantDisabled,
    TokenAcquisitionError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific classes first; lookup walks this list in order.
_LIFECYCLE_ERRORS: list[tuple[type[LifecycleError], int, str]] = [
    (SessionNotFound, 401, "SESSION_NOT_FOUND"),
    (SessionExpired, 401, "SESSION_EXPIRED"),
    (TenantDisabled, 403, "TENANT_DISABLED"),
    (TokenAcquisitionError, 502, "TOKEN_ACQUISITION_FAILED"),
    (DirectoryApiError, 502, "DIRECTORY_API_ERROR"),
    (InvalidActionPlan, 422, "INVALID_ACTION_PLAN"),
    (RunNotFound, 404, "RUN_NOT_FOUND"),
    (ScheduleNotFound, 404, "SCHEDULE_NOT_FOUND"),
    (RunSealedError, 409, "RUN_SEALED"),
    (ScheduleStateError, 409, "SCHEDULE_STATE_CONFLICT"),
    (OperationCancelled, 409, "OPERATION_CANCELLED"),
    (CryptoError, 500, "CREDENTIAL_STORE_ERROR"),
    (DatabaseError, 500, "DATABASE_ERROR"),
]


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def classify_lifecycle_error(exc: LifecycleError) -> tuple[int, str]:
    for error_cls, status_code, code in _LIFECYCLE_ERRORS:
        if isinstance(exc, error_cls):
            return status_code, code
    return 500, "INTERNAL_ERROR"


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_envelope(request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_envelope(request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_envelope(
        request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def lifecycle_exception_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    status_code, code = classify_lifecycle_error(exc)
    details: dict[str, Any] | None = None
    if isinstance(exc, (TokenAcquisitionError, DirectoryApiError)) and exc.status_code is not None:
        details = {"upstream_status": exc.status_code}
    if status_code >= 500:
        logger.error("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
        # Internal failures never echo their message; it may name key material or SQL.
        message = "Internal server error" if status_code == 500 else str(exc)
    else:
        message = str(exc) or code
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    payload = error_envelope(request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request_crashed path=%s", request.url.path, exc_info=exc)
    payload = error_envelope(request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
