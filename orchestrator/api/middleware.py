"""
FastAPI middleware for logging, error handling, and CORS.
"""
import time
import uuid
from typing import Callable, List

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from orchestrator.core.exceptions import (
    BudgetExceeded,
    NotFoundError,
    OrchestratorError,
    ProbeError,
    ProviderUnavailableError,
    RateLimitExceeded,
    ValidationError,
)
from orchestrator.core.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Request Logging Middleware
# ============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all incoming requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request and log details.

        Args:
            request: Incoming request
            call_next: Next middleware/endpoint

        Returns:
            Response from endpoint
        """
        # Honour a caller-supplied request id
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=duration_ms,
                exc_info=True
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Request completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)
        return response


# ============================================================================
# Error Handling Middleware
# ============================================================================

class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware to handle uncaught exceptions."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as e:
            request_id = getattr(request.state, "request_id", None)

            logger.error(
                f"Unhandled exception: {str(e)}",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                error_type=type(e).__name__,
                exc_info=True
            )

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "internal_error",
                        "message": "An internal error occurred",
                        "details": {
                            "request_id": request_id,
                            "type": type(e).__name__,
                        }
                    }
                },
                headers={
                    "X-Request-ID": request_id or "unknown"
                }
            )


# ============================================================================
# Domain Error Handlers
# ============================================================================

ERROR_STATUS = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ProviderUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RateLimitExceeded, status.HTTP_429_TOO_MANY_REQUESTS),
    (BudgetExceeded, status.HTTP_402_PAYMENT_REQUIRED),
    (ProbeError, status.HTTP_502_BAD_GATEWAY),
]


def _error_details(exc: OrchestratorError):
    if isinstance(exc, ValidationError):
        return exc.errors
    if isinstance(exc, ProviderUnavailableError) and exc.errors:
        return exc.errors
    return None


async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
    """Render a domain error as the standard error envelope."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    headers = {"Retry-After": "60"} if isinstance(exc, RateLimitExceeded) else None
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": _error_details(exc),
            },
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


# ============================================================================
# CORS Configuration
# ============================================================================

def setup_cors(app: FastAPI, origins: List[str]) -> None:
    """
    Setup CORS middleware.

    Args:
        app: FastAPI application instance
        origins: Allowed origins
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )

    logger.info("CORS configured", allowed_origins=origins)


# ============================================================================
# Middleware Setup
# ============================================================================

def setup_middleware(app: FastAPI, cors_origins: List[str]) -> None:
    """
    Setup all middleware and error handlers for the application.

    Args:
        app: FastAPI application instance
        cors_origins: Allowed CORS origins
    """
    app.add_exception_handler(OrchestratorError, orchestrator_error_handler)

    # Outer middleware executes first on request, last on response
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    setup_cors(app, cors_origins)

    logger.info("Middleware setup completed")
