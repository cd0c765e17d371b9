"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain, request validation and unexpected) and return consistent JSON
responses with proper HTTP status codes and traceability.

Design:
- AppError subclasses → status from ``status_code_for`` (400, 401, 403, 409, 429, 503)
- RequestValidationError → 400 ``validation_failed`` with per-field messages
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging
import math
import time

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from authgate.core.auth import clear_session_cookie
from authgate.core.errors import (
    AppError,
    AuthenticationAppError,
    BackendUnavailableError,
    ConflictAppError,
    ForbiddenAppError,
    RateLimitExceededError,
    SessionRequiredError,
)
from authgate.core.logging import get_request_id

logger = logging.getLogger(__name__)


def status_code_for(exc: AppError) -> int:
    """Map a domain error to its HTTP status code."""
    if isinstance(exc, RateLimitExceededError):
        return 429
    if isinstance(exc, AuthenticationAppError):
        return 401
    if isinstance(exc, ForbiddenAppError):
        return 403
    if isinstance(exc, ConflictAppError):
        return 409
    if isinstance(exc, BackendUnavailableError):
        return 503
    return 400


def _error_body(code: str, message: str, details: dict | None = None) -> dict:
    error_content = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    # Include details only if present (optional structured context)
    if details:
        error_content["details"] = details
    return {"error": error_content}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Besides the body, some errors shape the response:
    - RateLimitExceededError adds Retry-After and X-RateLimit-* headers.
    - SessionRequiredError with ``clear_cookie`` expires the session cookie.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status_code_for(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    response = JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, dict(exc.details) if exc.details else None),
    )

    if isinstance(exc, RateLimitExceededError):
        retry_after_ms = max(exc.retry_after_ms, 0)
        response.headers["Retry-After"] = str(math.ceil(retry_after_ms / 1000))
        response.headers["X-RateLimit-Limit"] = str(exc.limit)
        response.headers["X-RateLimit-Remaining"] = "0"
        response.headers["X-RateLimit-Reset"] = str(int(time.time() * 1000) + retry_after_ms)

    if isinstance(exc, SessionRequiredError) and exc.clear_cookie:
        clear_session_cookie(response)

    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Reshape FastAPI body/query validation errors into the error envelope."""
    fields: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "header")]
        key = ".".join(loc) or "_"
        fields.setdefault(key, []).append(error.get("msg", "Invalid value"))

    logger.info(
        "request_validation_failed",
        extra={
            "fields": sorted(fields),
            "request_path": request.url.path,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=400,
        content=_error_body(
            "validation_failed",
            "The request is invalid.",
            {"fields": fields},
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Catches any exception not handled by specific handlers.
    Logs detailed information for debugging while returning generic message.
    Prevents information leakage (no stack traces to client).

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Must be called during app initialization, before route registration.
    Order matters: specific handlers registered before general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(general_exception_handler)
