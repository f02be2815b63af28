from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request

from modsentry.apps.api.routes.audit import router as audit_router
from modsentry.apps.api.routes.credentials_admin import router as credentials_admin_router
from modsentry.apps.api.routes.health import router as health_router
from modsentry.apps.api.routes.moderation import router as moderation_router
from modsentry.core.logging import configure_logging
from modsentry.services.registry import ServiceRegistry, build_services


logger = logging.getLogger(__name__)


def create_app(services: ServiceRegistry | None = None) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.services.aclose()
        logger.info("services_closed")

    app = FastAPI(title="ModSentry API", lifespan=lifespan)
    app.state.services = services or build_services()

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        response.headers["X-Request-Id"] = request_id
        logger.info(
            "request method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        return response

    app.include_router(health_router)
    app.include_router(moderation_router)
    app.include_router(audit_router)
    app.include_router(credentials_admin_router)
    return app


app = create_app()
