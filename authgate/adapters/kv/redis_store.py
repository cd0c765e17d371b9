"""Redis-backed key-value store shared by every API node."""

from __future__ import annotations

import redis
from redis.exceptions import RedisError

from authgate.adapters.kv.base import KeyValueStore
from authgate.core.errors import BackendUnavailableError


class RedisKeyValueStore(KeyValueStore):
    """Key-value store on top of a ``redis.Redis`` client.

    Any ``RedisError`` (connection refused, timeout, protocol error) is
    surfaced as ``BackendUnavailableError``.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 0.5) -> "RedisKeyValueStore":
        """Build a store from a Redis URL with short socket timeouts."""
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )
        return cls(client)

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
        except RedisError as exc:
            raise _unavailable("get", exc) from exc
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    def put(self, key: str, value: str, *, ttl_seconds: int) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise _unavailable("put", exc) from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except RedisError as exc:
            raise _unavailable("delete", exc) from exc


def _unavailable(operation: str, exc: Exception) -> BackendUnavailableError:
    return BackendUnavailableError(
        code="kv_store_unavailable",
        message="Key-value store is unavailable",
        details={"operation": operation, "context": {"error_type": type(exc).__name__}},
    )
