"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storekit_mirror import __version__
from storekit_mirror.logging_config import configure_logging_from_env, get_logger
from storekit_mirror.middleware import ContextMiddleware, RequestLoggingMiddleware
from storekit_mirror.models import ErrorDetail

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Starts the entitlement mirror on startup, serving once bootstrap is done,
    and stops its feed listener on shutdown.
    """
    from storekit_mirror.services.entitlement_mirror import get_entitlement_mirror

    logger.info("mirror_service_starting", version=__version__)
    mirror = get_entitlement_mirror()
    await mirror.start()

    try:
        await mirror.wait_until_ready()
        logger.info("mirror_service_started", status="ready")
        yield
    finally:
        logger.info("mirror_service_shutting_down")
        await mirror.close()
        logger.info("mirror_service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    configure_logging_from_env()

    app = FastAPI(
        title="StoreKit Mirror",
        description="Observable mirror of in-app purchase entitlements",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from storekit_mirror.api.control import router as control_router
    from storekit_mirror.api.mirror import router as mirror_router

    app.include_router(mirror_router)
    app.include_router(control_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Detailed health check."""
        from storekit_mirror.services.entitlement_mirror import get_entitlement_mirror

        mirror = get_entitlement_mirror()
        return {
            "status": "healthy" if mirror.is_running else "stopped",
            "catalog": mirror.catalog_request_state.value,
            "purchases": mirror.purchases_request_state.value,
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorDetail(
                error="internal_server_error",
                message="An unexpected error occurred",
            ).model_dump(),
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app
