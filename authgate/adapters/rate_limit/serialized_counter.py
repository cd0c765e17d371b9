"""Strongly-consistent fixed-window counter with one owner per key.

Each key is mapped by a stable digest to exactly one worker thread. Callers
never touch counter state: they post a message to the owning worker's queue
and wait for the reply on a ``Future``. Requests for the same key are thus
serialized; requests for keys owned by different workers proceed in
parallel.

Notes:
- Per-process: counters are authoritative only for the process that owns
  them. Run the API behind a single limiter process (or shard by key at the
  load balancer) for a global limit.
- A reply timeout, a stopped counter or a worker error raise
  ``BackendUnavailableError`` so the caller can fall back.
"""

from __future__ import annotations

import hashlib
import logging
import queue
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable

from authgate.adapters.rate_limit.base import RateLimitBackend, RateLimitResult, ScopeConfig
from authgate.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class _WindowState:
    window_start_ms: int
    count: int
    window_ms: int


@dataclass(frozen=True)
class _CheckMessage:
    key: str
    window_ms: int
    max_requests: int


_STOP = object()


class _CounterOwner(threading.Thread):
    """Worker thread owning the window state of a subset of keys."""

    def __init__(self, index: int, clock: Callable[[], float], prune_every: int) -> None:
        super().__init__(name=f"rate-limit-owner-{index}", daemon=True)
        self.inbox: queue.Queue = queue.Queue()
        self._clock = clock
        self._prune_every = prune_every
        self._state_by_key: dict[str, _WindowState] = {}
        self._handled = 0

    def run(self) -> None:
        while True:
            item = self.inbox.get()
            if item is _STOP:
                return
            message, reply = item
            if not reply.set_running_or_notify_cancel():
                continue
            try:
                reply.set_result(self._handle(message))
            except Exception as exc:  # reply carries the failure to the caller
                reply.set_exception(exc)

    def _handle(self, message: _CheckMessage) -> dict[str, int | bool]:
        now_ms = int(self._clock() * 1000)
        self._handled += 1
        if self._handled % self._prune_every == 0:
            self._prune(now_ms)

        state = self._state_by_key.get(message.key)
        if state is None or now_ms - state.window_start_ms >= message.window_ms:
            self._state_by_key[message.key] = _WindowState(
                window_start_ms=now_ms, count=1, window_ms=message.window_ms
            )
            return {"allowed": True, "remaining": message.max_requests - 1}

        if state.count >= message.max_requests:
            return {
                "allowed": False,
                "remaining": 0,
                "retry_after_ms": message.window_ms - (now_ms - state.window_start_ms),
            }

        state.count += 1
        return {"allowed": True, "remaining": message.max_requests - state.count}

    def _prune(self, now_ms: int) -> None:
        stale = [
            key
            for key, state in self._state_by_key.items()
            if now_ms - state.window_start_ms >= state.window_ms
        ]
        for key in stale:
            del self._state_by_key[key]
        if stale:
            logger.debug("rate_limit.counter_pruned", extra={"owner": self.name, "pruned": len(stale)})


class SerializedFixedWindowCounter(RateLimitBackend):
    """Fixed-window limiter routing each key to a single serialized owner."""

    name = "serialized_counter"

    def __init__(
        self,
        *,
        workers: int = 4,
        clock: Callable[[], float] = time.time,
        reply_timeout_s: float = 1.0,
        prune_every: int = 256,
    ) -> None:
        """Start the owner threads.

        Args:
            workers: Number of owner threads keys are sharded across.
            clock: Time source returning UNIX time in seconds.
            reply_timeout_s: Maximum time a caller waits for its reply.
            prune_every: Messages between sweeps of elapsed windows per owner.

        Raises:
            ValueError: If any argument is out of range.
        """
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if reply_timeout_s <= 0:
            raise ValueError("reply_timeout_s must be > 0")
        if prune_every < 1:
            raise ValueError("prune_every must be >= 1")

        self._reply_timeout_s = reply_timeout_s
        self._closed = False
        self._owners = [_CounterOwner(i, clock, prune_every) for i in range(workers)]
        for owner in self._owners:
            owner.start()

    def _owner_for(self, key: str) -> _CounterOwner:
        digest = hashlib.sha256(key.encode()).digest()
        return self._owners[int.from_bytes(digest[:8], "big") % len(self._owners)]

    def check(self, scope: ScopeConfig, client_key: str) -> RateLimitResult:
        if not client_key:
            raise ValueError("client_key must be a non-empty string")
        if self._closed:
            raise BackendUnavailableError(
                code="rate_limit_counter_closed",
                message="Serialized rate limit counter is not running",
                details={"scope": scope.name},
            )

        key = scope.storage_key(client_key)
        reply: Future = Future()
        self._owner_for(key).inbox.put(
            (_CheckMessage(key=key, window_ms=scope.window_ms, max_requests=scope.max_requests), reply)
        )

        try:
            outcome = reply.result(timeout=self._reply_timeout_s)
        except FutureTimeoutError as exc:
            reply.cancel()
            raise BackendUnavailableError(
                code="rate_limit_counter_timeout",
                message="Serialized rate limit counter did not reply in time",
                details={"scope": scope.name},
            ) from exc
        except Exception as exc:
            raise BackendUnavailableError(
                code="rate_limit_counter_failed",
                message="Serialized rate limit counter failed",
                details={"scope": scope.name, "context": {"error_type": type(exc).__name__}},
            ) from exc

        return RateLimitResult(
            allowed=bool(outcome["allowed"]),
            limit=scope.max_requests,
            remaining=int(outcome["remaining"]),
            retry_after_ms=outcome.get("retry_after_ms"),
            backend=self.name,
        )

    def close(self) -> None:
        """Stop the owner threads; later checks raise BackendUnavailableError."""
        if self._closed:
            return
        self._closed = True
        for owner in self._owners:
            owner.inbox.put(_STOP)
        for owner in self._owners:
            owner.join(timeout=self._reply_timeout_s)
