"""Key-value store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """String key-value store with per-entry TTL.

    Implementations raise ``BackendUnavailableError`` when the underlying
    storage cannot serve a call; callers decide whether that is fatal.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent or expired."""
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, value: str, *, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        raise NotImplementedError
