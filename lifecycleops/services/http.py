from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx


@asynccontextmanager
async def borrow_client(client: httpx.AsyncClient | None, *, timeout_s: float) -> AsyncIterator[httpx.AsyncClient]:
    # Reuse an injected client (owned by the caller) or open a short-lived one.
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout_s) as owned:
        yield owned


def response_body(response: httpx.Response, *, max_text: int = 2000) -> Any:
    # Prefer structured JSON bodies for error detail; fall back to truncated text.
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text[:max_text]
