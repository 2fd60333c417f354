from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from lineage.apps.api.errors import (
    http_exception_handler,
    lineage_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from lineage.apps.api.response import API_VERSION
from lineage.apps.api.routes.access import router as access_router
from lineage.apps.api.routes.health import router as health_router
from lineage.apps.api.routes.members import router as members_router
from lineage.apps.api.routes.usage import router as usage_router
from lineage.core.errors import LineageError
from lineage.core.logging import configure_logging
from lineage.persistence.db import SessionFactory, build_engine, build_session_factory
from lineage.services.gateway import AccessGateway


logger = logging.getLogger(__name__)

_SHUTDOWN_DRAIN_TIMEOUT_S = 5.0


def create_app(session_factory: SessionFactory | None = None) -> FastAPI:
    """Build the API.

    Tests inject ``session_factory``; otherwise an engine is built from
    ``DATABASE_URL`` on startup and disposed on shutdown.
    """
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = None
        if getattr(app.state, "gateway", None) is None:
            engine = build_engine()
            app.state.gateway = AccessGateway(session_factory=build_session_factory(engine))
        try:
            yield
        finally:
            # Let detached self-heal and audit writes land before the pool goes away.
            await app.state.gateway.shutdown(timeout=_SHUTDOWN_DRAIN_TIMEOUT_S)
            if engine is not None:
                await engine.dispose()
            logger.info("api_shutdown_complete")

    app = FastAPI(title="Lineage API", lifespan=lifespan)
    if session_factory is not None:
        # Injected factories are usable without a lifespan run (ASGI test transports skip it).
        app.state.gateway = AccessGateway(session_factory=session_factory)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(LineageError, lineage_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(access_router, prefix=f"/{API_VERSION}")
    app.include_router(members_router, prefix=f"/{API_VERSION}")
    app.include_router(usage_router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
