"""
FastAPI middleware for correlation ID propagation and request timing.
"""
import time
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import get_logger, correlation_context

logger = get_logger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests and responses."""

    def __init__(self, app, slow_request_threshold_ms: float = 1000.0):
        """
        Initialize correlation middleware.

        Args:
            app: FastAPI application
            slow_request_threshold_ms: Threshold for logging slow requests
        """
        super().__init__(app)
        self.slow_request_threshold_ms = slow_request_threshold_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and add correlation ID."""
        with correlation_context(request.headers.get("X-Correlation-ID")) as correlation_id:
            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
            )

            start_time = time.time()

            try:
                response = await call_next(request)
            except Exception as e:
                processing_time_ms = round((time.time() - start_time) * 1000, 2)
                logger.error(
                    "Request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    processing_time_ms=processing_time_ms,
                    exc_info=True
                )
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": True,
                        "error_code": "INTERNAL_SERVER_ERROR",
                        "message": "Internal server error",
                        "correlation_id": correlation_id,
                    },
                    headers={"X-Correlation-ID": correlation_id},
                )

            processing_time_ms = round((time.time() - start_time) * 1000, 2)

            log = logger.warning if processing_time_ms > self.slow_request_threshold_ms else logger.info
            log(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                processing_time_ms=processing_time_ms,
            )

            response.headers["X-Correlation-ID"] = correlation_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            return response
