"""Per-scope rate limiter registry.

Backends are bound to scopes once, at startup: brute-force sensitive scopes
(login, password reset, registration) go through the serialized counter so a
client spreading requests across workers cannot exceed the global limit;
bulk public scopes use the sliding-window cache.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable, Mapping

from authgate.adapters.kv.base import KeyValueStore
from authgate.adapters.rate_limit.base import RateLimitBackend, RateLimitResult, ScopeConfig
from authgate.adapters.rate_limit.fallback import FallbackBackend
from authgate.adapters.rate_limit.serialized_counter import SerializedFixedWindowCounter
from authgate.adapters.rate_limit.sliding_window import SlidingWindowCache
from authgate.core.config import RateLimitSettings

LOGIN = "login"
PASSWORD_RESET = "password-reset"
REGISTRATION = "registration"
PUBLIC_API = "public-api"
UPLOAD = "upload"

DEFAULT_SCOPES: tuple[ScopeConfig, ...] = (
    ScopeConfig(LOGIN, window_ms=15 * 60 * 1000, max_requests=10, strong_consistency=True),
    ScopeConfig(PASSWORD_RESET, window_ms=60 * 60 * 1000, max_requests=5, strong_consistency=True),
    ScopeConfig(REGISTRATION, window_ms=60 * 60 * 1000, max_requests=10, strong_consistency=True),
    ScopeConfig(PUBLIC_API, window_ms=60 * 1000, max_requests=60),
    ScopeConfig(UPLOAD, window_ms=60 * 1000, max_requests=20),
)


class RateLimiter:
    """Single decision point: ``check(scope_name, client_key)``."""

    def __init__(
        self,
        scopes: Iterable[ScopeConfig],
        backends: Mapping[str, RateLimitBackend],
    ) -> None:
        self._scopes = {scope.name: scope for scope in scopes}
        missing = set(self._scopes) - set(backends)
        if missing:
            raise ValueError(f"no backend bound for scopes: {sorted(missing)}")
        self._backends = dict(backends)

    def scope(self, name: str) -> ScopeConfig:
        """Return the configuration of a scope.

        Raises:
            KeyError: If the scope is not registered.
        """
        return self._scopes[name]

    def backend_for(self, name: str) -> RateLimitBackend:
        return self._backends[name]

    def check(self, scope_name: str, client_key: str) -> RateLimitResult:
        """Count one request of ``client_key`` in ``scope_name`` and decide."""
        scope = self._scopes[scope_name]
        return self._backends[scope_name].check(scope, client_key)

    def close(self) -> None:
        for backend in {id(b): b for b in self._backends.values()}.values():
            backend.close()


def build_rate_limiter(
    cfg: RateLimitSettings,
    store: KeyValueStore,
    *,
    scopes: Iterable[ScopeConfig] = DEFAULT_SCOPES,
    clock: Callable[[], float] = time.time,
) -> RateLimiter:
    """Bind every scope to its backend according to its consistency flag.

    Args:
        cfg: Rate limit settings.
        store: Store used by the sliding-window backend.
        scopes: Scope configurations to register.
        clock: Time source shared by both backends.

    Returns:
        RateLimiter: Registry with one backend per scope.
    """
    scopes = tuple(scopes)
    sliding = SlidingWindowCache(
        store,
        clock=clock,
        min_retry_after_ms=cfg.min_retry_after_ms,
        ttl_grace_seconds=cfg.ttl_grace_seconds,
    )

    strong: RateLimitBackend = sliding
    if cfg.strong_backend_enabled and any(s.strong_consistency for s in scopes):
        counter = SerializedFixedWindowCounter(
            workers=cfg.workers,
            clock=clock,
            reply_timeout_s=cfg.reply_timeout_seconds,
        )
        strong = FallbackBackend(counter, sliding)

    backends = {s.name: strong if s.strong_consistency else sliding for s in scopes}
    return RateLimiter(scopes, backends)
