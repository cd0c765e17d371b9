"""Sliding-window rate limiter over a shared TTL cache.

Eventually consistent: each request performs a read-modify-write of the
client's timestamp log, so concurrent requests on different nodes may both
be admitted. This is accepted for low-stakes scopes (public reads, uploads).
Any store failure admits the request (fail open).
"""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Callable

from authgate.adapters.kv.base import KeyValueStore
from authgate.adapters.rate_limit.base import RateLimitBackend, RateLimitResult, ScopeConfig
from authgate.core.logging import hash_identifier

logger = logging.getLogger(__name__)


class SlidingWindowCache(RateLimitBackend):
    """Rate limiter keeping a log of request timestamps per key."""

    name = "sliding_window"

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], float] = time.time,
        min_retry_after_ms: int = 1000,
        ttl_grace_seconds: int = 30,
    ) -> None:
        """Initialize the sliding-window limiter.

        Args:
            store: Key-value store holding the JSON timestamp logs.
            clock: Time source returning UNIX time in seconds.
            min_retry_after_ms: Floor applied to computed retry-after values.
            ttl_grace_seconds: Extra TTL beyond the window to tolerate clock skew.
        """
        if min_retry_after_ms < 1:
            raise ValueError("min_retry_after_ms must be >= 1")
        if ttl_grace_seconds < 0:
            raise ValueError("ttl_grace_seconds must be >= 0")

        self._store = store
        self._clock = clock
        self._min_retry_after_ms = min_retry_after_ms
        self._ttl_grace_seconds = ttl_grace_seconds

    def check(self, scope: ScopeConfig, client_key: str) -> RateLimitResult:
        if not client_key:
            raise ValueError("client_key must be a non-empty string")

        key = scope.storage_key(client_key)
        now_ms = int(self._clock() * 1000)

        try:
            raw = self._store.get(key)
        except Exception as exc:
            return self._fail_open(scope, client_key, "read", exc)

        window_floor = now_ms - scope.window_ms
        timestamps = [ts for ts in _decode(raw) if ts > window_floor]

        if len(timestamps) >= scope.max_requests:
            oldest = min(timestamps)
            retry_after_ms = oldest + scope.window_ms - now_ms
            retry_after_ms = min(max(retry_after_ms, self._min_retry_after_ms), scope.window_ms)
            return RateLimitResult(
                allowed=False,
                limit=scope.max_requests,
                remaining=0,
                retry_after_ms=retry_after_ms,
                backend=self.name,
            )

        timestamps.append(now_ms)
        try:
            self._store.put(key, json.dumps(timestamps), ttl_seconds=self._ttl_seconds(scope))
        except Exception as exc:
            return self._fail_open(scope, client_key, "write", exc)

        return RateLimitResult(
            allowed=True,
            limit=scope.max_requests,
            remaining=scope.max_requests - len(timestamps),
            backend=self.name,
        )

    def _ttl_seconds(self, scope: ScopeConfig) -> int:
        return math.ceil(scope.window_ms / 1000) + self._ttl_grace_seconds

    def _fail_open(
        self,
        scope: ScopeConfig,
        client_key: str,
        operation: str,
        exc: Exception,
    ) -> RateLimitResult:
        logger.warning(
            "rate_limit.store_failed_open",
            extra={
                "scope": scope.name,
                "key_hash": hash_identifier(client_key),
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
        return RateLimitResult.fail_open(scope, self.name)


def _decode(raw: str | None) -> list[int]:
    """Parse a stored timestamp log; corrupt payloads count as empty."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    return sorted(int(ts) for ts in data if isinstance(ts, (int, float)))
