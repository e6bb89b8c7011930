from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from lifecycleops.apps.api.errors import (
    http_exception_handler,
    lifecycle_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from lifecycleops.apps.api.response import API_VERSION
from lifecycleops.apps.api.routes.audit import router as audit_router
from lifecycleops.apps.api.routes.catalog import router as catalog_router
from lifecycleops.apps.api.routes.health import router as health_router
from lifecycleops.apps.api.routes.runs import router as runs_router
from lifecycleops.apps.api.routes.schedules import router as schedules_router
from lifecycleops.apps.api.routes.sessions import router as sessions_router
from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import LifecycleError
from lifecycleops.core.logging import configure_logging
from lifecycleops.services.container import LifecycleServices, build_services


logger = logging.getLogger(__name__)


def create_app(services: LifecycleServices | None = None) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            # A missing or malformed credential key fails startup here, not on the first request.
            app.state.services = build_services()
        logger.info("app_started")
        yield
        # Let background runs seal their records before the process exits.
        await app.state.services.dispatcher.drain()

    app = FastAPI(title=get_settings().app_name, lifespan=lifespan)
    app.state.services = services

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "http_request method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(LifecycleError)
    async def _lifecycle_exception_handler(request: Request, exc: LifecycleError):
        return await lifecycle_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(sessions_router, prefix=f"/{API_VERSION}")
    app.include_router(runs_router, prefix=f"/{API_VERSION}")
    app.include_router(schedules_router, prefix=f"/{API_VERSION}")
    app.include_router(catalog_router, prefix=f"/{API_VERSION}")
    # Tenant-scoped audit trail for operators reviewing past activity.
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
