from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from lifecycleops.apps.api.deps import Operator, get_operator, get_services
from lifecycleops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lifecycleops.apps.api.response import SuccessEnvelope, request_id_for, envelope
from lifecycleops.services.container import LifecycleServices


router = APIRouter(prefix="/sessions", tags=["sessions"], responses=DEFAULT_ERROR_RESPONSES)


class CreateSessionRequest(BaseModel):
    application_id: str = Field(min_length=1)
    directory_id: str = Field(min_length=1)
    secret: str = Field(min_length=1, repr=False)


class SessionCreatedResponse(BaseModel):
    session_id: str
    tenant_id: str


class TenantResponse(BaseModel):
    tenant_id: str
    application_id: str
    directory_id: str
    configured_at: str | None
    updated_at: str | None


class RotateSecretRequest(BaseModel):
    secret: str = Field(min_length=1, repr=False)


class AcknowledgedResponse(BaseModel):
    ok: bool = True


@router.post("", status_code=201, response_model=SuccessEnvelope[SessionCreatedResponse])
async def create_session(
    payload: CreateSessionRequest,
    request: Request,
    services: LifecycleServices = Depends(get_services),
) -> dict:
    # The secret is sealed immediately; only the opaque session id leaves this handler.
    try:
        session_id = await services.registry.create_session(
            payload.application_id,
            payload.directory_id,
            payload.secret,
            request_id=request_id_for(request),
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"code": "VALIDATION_ERROR", "message": str(exc)}) from exc
    tenant = await services.registry.resolve_tenant(session_id)
    return envelope(
        request,
        data=SessionCreatedResponse(session_id=session_id, tenant_id=tenant.tenant_id),
    )


@router.get("/current", response_model=SuccessEnvelope[TenantResponse])
async def get_current_tenant(
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    tenant = await services.registry.resolve_tenant(operator.session_id)
    return envelope(
        request,
        data=TenantResponse(
            tenant_id=tenant.tenant_id,
            application_id=tenant.application_id,
            directory_id=tenant.directory_id,
            configured_at=tenant.created_at.isoformat() if tenant.created_at else None,
            updated_at=tenant.updated_at.isoformat() if tenant.updated_at else None,
        ),
    )


@router.post("/current/secret", response_model=SuccessEnvelope[AcknowledgedResponse])
async def rotate_secret(
    payload: RotateSecretRequest,
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    await services.registry.rotate_secret(
        operator.session_id,
        payload.secret,
        request_id=operator.request_id,
    )
    return envelope(request, AcknowledgedResponse())


@router.post("/current/disable-tenant", response_model=SuccessEnvelope[AcknowledgedResponse])
async def disable_tenant(
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    await services.registry.disable_tenant(operator.session_id, request_id=operator.request_id)
    return envelope(request, AcknowledgedResponse())


@router.delete("/current", response_model=SuccessEnvelope[AcknowledgedResponse])
async def revoke_session(
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    await services.registry.revoke_session(operator.session_id)
    return envelope(request, AcknowledgedResponse())
