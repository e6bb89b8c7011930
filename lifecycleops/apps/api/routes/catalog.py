from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from lifecycleops.apps.api.deps import Operator, get_operator, get_services
from lifecycleops.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lifecycleops.apps.api.response import SuccessEnvelope, envelope
from lifecycleops.services.actions.templates import list_templates
from lifecycleops.services.container import LifecycleServices


router = APIRouter(tags=["catalog"], responses=DEFAULT_ERROR_RESPONSES)


class ActionDescription(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]


class TemplateDescription(BaseModel):
    name: str
    description: str
    actions: list[str]


@router.get("/actions", response_model=SuccessEnvelope[list[ActionDescription]])
async def list_actions(
    request: Request,
    operator: Operator = Depends(get_operator),
    services: LifecycleServices = Depends(get_services),
) -> dict:
    return envelope(request, services.catalog.describe())


@router.get("/templates", response_model=SuccessEnvelope[list[TemplateDescription]])
async def get_templates(
    request: Request,
    operator: Operator = Depends(get_operator),
) -> dict:
    return envelope(request, list_templates())
