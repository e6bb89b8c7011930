from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from lifecycleops.apps.api.response import request_id_for
from lifecycleops.services.container import LifecycleServices


class Operator(BaseModel):
    # Authenticated caller: the opaque session and the tenant it resolves to.
    session_id: str
    tenant_id: str
    request_id: str


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer session")
    return parts[1]


def get_services(request: Request) -> LifecycleServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("services are built during application startup")
    return services


async def get_operator(
    request: Request,
    authorization: str | None = Header(default=None),
    services: LifecycleServices = Depends(get_services),
) -> Operator:
    session_id = _parse_bearer_token(authorization)
    if session_id is None:
        raise _auth_error("Missing bearer session")
    # SessionNotFound/SessionExpired/TenantDisabled map to 401/403 in the error handlers.
    tenant = await services.registry.resolve_tenant(session_id)
    return Operator(session_id=session_id, tenant_id=tenant.tenant_id, request_id=request_id_for(request))
