"""Envelopes for every ``/v1`` body.

Success bodies are ``{"data", "meta"}`` and error bodies ``{"error", "meta"}``.
``meta.request_id`` is the id echoed in the ``X-Request-Id`` header, so an
operator can match a UI report to the server log line and the audit row.
List endpoints return a :class:`Page` and signal a following page with
``next_offset``.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Sequence, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel

from lifecycleops.core.config import get_settings


API_VERSION = "v1"

T = TypeVar("T")
RowT = TypeVar("RowT")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorBody
    meta: ResponseMeta


class Page(BaseModel, Generic[T]):
    items: list[T]
    next_offset: int | None = None


def request_id_for(request: Request) -> str:
    # The middleware assigns one per request; handlers invoked without it mint their own.
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
    return request_id


def _meta(request: Request) -> dict[str, Any]:
    return ResponseMeta(request_id=request_id_for(request)).model_dump()


def envelope(request: Request, data: Any) -> dict[str, Any]:
    return {"data": data, "meta": _meta(request)}


def error_envelope(
    request: Request,
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorBody(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}


def page_size(limit: int | None) -> int:
    settings = get_settings()
    return min(limit or settings.list_default_limit, settings.list_max_limit)


def to_page(
    rows: Sequence[RowT],
    *,
    offset: int,
    size: int,
    convert: Callable[[RowT], T],
) -> Page[T]:
    # Callers fetch size + 1 rows; the extra row only proves another page exists.
    next_offset = offset + size if len(rows) > size else None
    return Page(items=[convert(row) for row in rows[:size]], next_offset=next_offset)
