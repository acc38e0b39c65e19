"""
realm_bridge.api.app

FastAPI app factory for the identity bridge.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Build and dispose the bridge composition root in the app lifespan.
- Map typed bridge failures onto HTTP status codes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from realm_bridge import __version__
from realm_bridge.api.routers.calling import router as calling_router
from realm_bridge.api.routers.dev_auth import router as dev_auth_router
from realm_bridge.api.routers.exchange import router as exchange_router
from realm_bridge.api.routers.health import router as health_router
from realm_bridge.api.routers.operations import router as operations_router
from realm_bridge.api.routers.threads import router as threads_router
from realm_bridge.bridge import build_bridge
from realm_bridge.errors import (
    BackendUnavailable,
    BridgeError,
    DelegationDenied,
    MalformedCredential,
    ThreadNotFound,
    UnknownRealm,
)
from realm_bridge.observability.logging import configure_logging, get_logger
from realm_bridge.observability.middleware import RequestContextMiddleware
from realm_bridge.settings import Settings

log = get_logger(__name__)

_STATUS: tuple[tuple[type[BridgeError], int], ...] = (
    (MalformedCredential, HTTP_401_UNAUTHORIZED),
    (UnknownRealm, HTTP_401_UNAUTHORIZED),
    (DelegationDenied, HTTP_403_FORBIDDEN),
    (ThreadNotFound, HTTP_404_NOT_FOUND),
    (BackendUnavailable, HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: BridgeError) -> int:
    for kind, status in _STATUS:
        if isinstance(exc, kind):
            return status
    # Any other typed failure came from a remote we depend on.
    return HTTP_502_BAD_GATEWAY


def create_app(*, settings: Settings) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        app.state.bridge = await build_bridge(settings)
        try:
            yield
        finally:
            await app.state.bridge.aclose()
            log.info("shutdown")

    app = FastAPI(
        title="Realm Bridge",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(exchange_router)
    app.include_router(threads_router)
    app.include_router(calling_router)
    app.include_router(operations_router)

    @app.exception_handler(BridgeError)
    async def _bridge_error(request: Request, exc: BridgeError) -> JSONResponse:
        status = status_for(exc)
        log.warning("request_failed", error_code=exc.code, status=status, error=exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if status == HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=status,
            content={"error": exc.code, "detail": exc.message, "retryable": exc.retryable},
            headers=headers,
        )

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; business logic lives in the bridge's services.
