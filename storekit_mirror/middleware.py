"""FastAPI middleware for request logging and log correlation."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from storekit_mirror.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with a correlation ID.

    The ID is taken from the incoming X-Request-ID header when present,
    otherwise generated, and is echoed back on the response.
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id)

        details = {}
        if self.include_request_details:
            details["client_host"] = request.client.host if request.client else "unknown"
        logger.info("request_started", method=request.method, path=request.url.path, **details)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        else:
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds the product ID from ``/products/{product_id}`` paths to the logging context."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        parts = request.url.path.split("/")
        if "products" in parts:
            index = parts.index("products")
            if len(parts) > index + 1 and parts[index + 1]:
                bind_context(product_id=parts[index + 1])

        return await call_next(request)
