"""Factory for the configured key-value store."""

from authgate.adapters.kv.base import KeyValueStore
from authgate.adapters.kv.in_memory import InMemoryKeyValueStore
from authgate.adapters.kv.redis_store import RedisKeyValueStore
from authgate.core.config import RateLimitSettings
from authgate.core.errors import ValidationAppError


def create_key_value_store(cfg: RateLimitSettings) -> KeyValueStore:
    """Instantiate the store named by ``RATE_LIMIT_STORE``.

    Args:
        cfg: Rate limit settings.

    Returns:
        KeyValueStore: In-memory or Redis store.

    Raises:
        ValidationAppError: If the store name is unknown.
    """
    store = cfg.store.lower()

    if store == "memory":
        return InMemoryKeyValueStore()

    if store == "redis":
        return RedisKeyValueStore.from_url(
            cfg.redis_url,
            socket_timeout=cfg.redis_socket_timeout_seconds,
        )

    raise ValidationAppError(
        code="rate_limit_unknown_store",
        message=f"Unknown rate limit store: '{store}'. Supported stores: memory, redis",
    )
