"""Rate limiter interfaces.

The API depends on ``RateLimitBackend`` (not on a concrete implementation) so
each scope can be bound to the backend whose consistency guarantees it needs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ScopeConfig:
    """Named category of rate-limited operation.

    Attributes:
        name: Scope name (e.g. "login", "public-api"); also the key namespace.
        window_ms: Window duration in milliseconds.
        max_requests: Maximum admitted requests per window.
        strong_consistency: Whether the scope needs a single authoritative counter.
    """

    name: str
    window_ms: int
    max_requests: int
    strong_consistency: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name must be a non-empty string")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")

    def storage_key(self, client_key: str) -> str:
        """Namespaced key for a client within this scope."""
        return f"rl:{self.name}:{client_key}"


@dataclass(frozen=True)
class RateLimitResult:
    """Decision for one request.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Remaining quota in the current window (0 when blocked,
            None when the decision was a fail-open admit).
        retry_after_ms: Suggested wait when blocked.
        backend: Name of the backend that produced the decision.
    """

    allowed: bool
    limit: int
    remaining: int | None = None
    retry_after_ms: int | None = None
    backend: str = ""

    @classmethod
    def fail_open(cls, scope: ScopeConfig, backend: str) -> "RateLimitResult":
        """Admit without quota information because the backend is unavailable."""
        return cls(allowed=True, limit=scope.max_requests, backend=backend)


class RateLimitBackend(ABC):
    """Interface for rate limit backends."""

    name: str = "abstract"

    @abstractmethod
    def check(self, scope: ScopeConfig, client_key: str) -> RateLimitResult:
        """Count one request for ``client_key`` under ``scope`` and decide.

        Args:
            scope: Scope configuration (window and max).
            client_key: Client identity (e.g. IP address).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release background resources, if any."""
