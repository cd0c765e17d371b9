"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    fields: dict[str, list[str]]
    limit: int
    scope: str
    retry_after_ms: int
    retry_after_seconds: int
    purpose: str
    operation: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidTokenError(ValidationAppError):
    """Raised when a single-use token is malformed, unknown or does not match."""


class TokenExpiredError(ValidationAppError):
    """Raised when a single-use token exists but is past its expiry."""


class AuthenticationAppError(AppError):
    """Raised when authentication fails."""


class InvalidCredentialsError(AuthenticationAppError):
    """Raised on login failure, whether the account exists or not."""


@dataclass
class SessionRequiredError(AuthenticationAppError):
    """Raised when a route requires a valid session and none is present.

    Attributes:
        clear_cookie: Whether the response must delete the session cookie.
    """

    clear_cookie: bool = False


class ForbiddenAppError(AppError):
    """Raised when a signed-in caller lacks the role or plan a route needs."""


class ConflictAppError(AppError):
    """Raised when a unique resource already exists."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised when a client exhausts the budget of a rate-limit scope.

    Attributes:
        limit: Maximum requests in the scope's window.
        retry_after_ms: Suggested wait before retrying.
    """

    limit: int = 0
    retry_after_ms: int = 0


class BackendUnavailableError(AppError):
    """Raised when a durable store, cache or counter cannot serve a call."""
