"""Rate limiting dependency for FastAPI routes.

This module wires the per-scope rate limiter into the HTTP layer.

Design goals:
- Minimal coupling: routes declare ``Depends(rate_limit("login"))`` only.
- Backend choice is a startup decision made in ``build_rate_limiter``.
- Response shaping (429 status, Retry-After and X-RateLimit-* headers)
  lives here and in the exception handlers, not in the backends.

Client identity is the socket peer address. Behind a trusted proxy
(``RATE_LIMIT_TRUST_PROXY_HEADERS``) it is ``CF-Connecting-IP``, then the
first ``X-Forwarded-For`` hop, then the peer address.
"""

from __future__ import annotations

import logging
import math
from typing import Callable

from fastapi import Request, Response

from authgate.adapters.kv.factory import create_key_value_store
from authgate.adapters.rate_limit.limiter import RateLimiter, build_rate_limiter
from authgate.core.config import settings
from authgate.core.errors import RateLimitExceededError
from authgate.core.logging import hash_identifier

logger = logging.getLogger(__name__)


_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter, building it on first use.

    The instance is cached in-module so counters survive across requests.

    Returns:
        RateLimiter: Configured limiter registry.
    """

    global _limiter

    if _limiter is None:
        store = create_key_value_store(settings.rate_limit)
        _limiter = build_rate_limiter(settings.rate_limit, store)
        logger.info(
            "rate_limit.configured",
            extra={
                "store": settings.rate_limit.store,
                "strong_backend_enabled": settings.rate_limit.strong_backend_enabled,
            },
        )

    return _limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Replace the process-wide limiter (closing the previous one)."""

    global _limiter

    if _limiter is not None and _limiter is not limiter:
        _limiter.close()
    _limiter = limiter


def client_key_from_request(request: Request) -> str:
    """Derive the rate limit client key from the peer address.

    Proxy headers are client-controlled unless a proxy in front rewrites
    them, so they are only read when ``trust_proxy_headers`` is enabled.

    Args:
        request: FastAPI request.

    Returns:
        str: Client IP or "unknown".
    """

    if settings.rate_limit.trust_proxy_headers:
        cf_ip = request.headers.get("CF-Connecting-IP", "").strip()
        if cf_ip:
            return cf_ip

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

    return request.client.host if request.client else "unknown"


def rate_limit(scope_name: str) -> Callable[[Request, Response], None]:
    """Build a FastAPI dependency enforcing the named scope.

    Args:
        scope_name: Registered scope (see ``DEFAULT_SCOPES``).

    Returns:
        Dependency that consumes one unit of the caller's budget and raises
        ``RateLimitExceededError`` when the budget is exhausted.
    """

    def enforce_rate_limit(request: Request, response: Response) -> None:
        if not settings.rate_limit.enabled:
            return

        limiter = get_rate_limiter()
        client_key = client_key_from_request(request)
        result = limiter.check(scope_name, client_key)

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "scope": scope_name,
                    "key_hash": hash_identifier(client_key),
                    "remaining": result.remaining,
                    "backend": result.backend,
                },
            )
            if settings.rate_limit.include_headers and result.remaining is not None:
                response.headers["X-RateLimit-Limit"] = str(result.limit)
                response.headers["X-RateLimit-Remaining"] = str(result.remaining)
            return

        retry_after_ms = result.retry_after_ms or limiter.scope(scope_name).window_ms
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "scope": scope_name,
                "key_hash": hash_identifier(client_key),
                "limit": result.limit,
                "retry_after_ms": retry_after_ms,
                "backend": result.backend,
            },
        )
        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message="Too many requests. Please slow down.",
            details={
                "scope": scope_name,
                "retry_after_seconds": math.ceil(retry_after_ms / 1000),
            },
            limit=result.limit,
            retry_after_ms=retry_after_ms,
        )

    return enforce_rate_limit
