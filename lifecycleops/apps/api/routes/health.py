from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from lifecycleops.apps.api.response import SuccessEnvelope, envelope

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    return envelope(request, HealthResponse(status="ok"))
