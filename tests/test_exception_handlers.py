"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from authgate.core.errors import (
    AppError,
    AuthenticationAppError,
    BackendUnavailableError,
    ConflictAppError,
    ForbiddenAppError,
    InvalidCredentialsError,
    InvalidTokenError,
    RateLimitExceededError,
    SessionRequiredError,
    TokenExpiredError,
    ValidationAppError,
)
from authgate.core.exception_handlers import setup_exception_handlers, status_code_for


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers)


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (ValidationAppError(code="x", message="x"), 400),
            (InvalidTokenError(code="x", message="x"), 400),
            (TokenExpiredError(code="x", message="x"), 400),
            (AuthenticationAppError(code="x", message="x"), 401),
            (InvalidCredentialsError(code="x", message="x"), 401),
            (SessionRequiredError(code="x", message="x"), 401),
            (ForbiddenAppError(code="x", message="x"), 403),
            (ConflictAppError(code="x", message="x"), 409),
            (RateLimitExceededError(code="x", message="x"), 429),
            (BackendUnavailableError(code="x", message="x"), 503),
            (AppError(code="x", message="x"), 400),
        ],
    )
    def test_status_for_error_type(self, error: AppError, status: int) -> None:
        assert status_code_for(error) == status


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_validation_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify ValidationAppError returns HTTP 400."""
        @app_with_handlers.get("/test-validation")
        async def test_endpoint():
            raise ValidationAppError(
                code="test_validation",
                message="Test validation error"
            )

        response = client.get("/test-validation")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "test_validation"
        assert data["error"]["message"] == "Test validation error"
        assert "request_id" in data["error"]

    def test_error_includes_details(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify details are included when provided."""
        @app_with_handlers.get("/test-details")
        async def test_endpoint():
            raise TokenExpiredError(
                code="token_expired",
                message="This link has expired",
                details={"purpose": "password_reset"},
            )

        response = client.get("/test-details")

        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"purpose": "password_reset"}

    def test_rate_limit_error_sets_retry_headers(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify 429 responses carry Retry-After and X-RateLimit-* headers."""
        @app_with_handlers.get("/test-429")
        async def test_endpoint():
            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message="Too many requests",
                details={"scope": "login", "retry_after_seconds": 2},
                limit=10,
                retry_after_ms=1500,
            )

        response = client.get("/test-429")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "2"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["X-RateLimit-Reset"]) > 1500

    def test_session_required_can_clear_cookie(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify a stale session cookie is deleted on 401."""
        @app_with_handlers.get("/test-stale")
        async def stale():
            raise SessionRequiredError(code="unauthorized", message="Auth", clear_cookie=True)

        @app_with_handlers.get("/test-anonymous")
        async def anonymous():
            raise SessionRequiredError(code="unauthorized", message="Auth")

        stale_response = client.get("/test-stale")
        anonymous_response = client.get("/test-anonymous")

        assert stale_response.status_code == 401
        assert stale_response.headers["set-cookie"].startswith("__session=")
        assert "set-cookie" not in anonymous_response.headers

    def test_backend_unavailable_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-503")
        async def test_endpoint():
            raise BackendUnavailableError(code="session_store_unavailable", message="Try later")

        response = client.get("/test-503")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "session_store_unavailable"

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        @app_with_handlers.get("/test-format")
        async def test_endpoint():
            raise ValidationAppError(code="test", message="test")

        response = client.get("/test-format")
        data = response.json()

        # Required fields always present
        assert "error" in data
        assert "code" in data["error"]
        assert "message" in data["error"]
        assert "request_id" in data["error"]
        assert "details" not in data["error"]


class TestRequestValidationHandler:
    def test_body_errors_are_grouped_by_field(self, client: TestClient, app_with_handlers: FastAPI):
        class Payload(BaseModel):
            email: str
            age: int

        @app_with_handlers.post("/test-body")
        async def test_endpoint(payload: Payload):
            return payload

        response = client.post("/test-body", json={"age": "not-a-number"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_failed"
        assert set(error["details"]["fields"]) == {"email", "age"}


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        """Verify fallback exception handler is registered."""
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_logic(self):
        """Verify general_exception_handler returns correct structure."""
        from authgate.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: database connection failed")
        response = asyncio.run(general_exception_handler(request, exc))

        # Verify response structure
        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        # Original error message should NOT be in response
        assert "database connection" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        from authgate.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        # No traceback indicators
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        """Verify setup_exception_handlers properly registers handlers."""
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        # Should not raise or fail
        setup_exception_handlers(app)
        setup_exception_handlers(app)  # Second call should override safely

        assert AppError in app.exception_handlers
