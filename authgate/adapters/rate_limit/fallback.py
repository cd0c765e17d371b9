"""Backend composition: primary backend with a fallback when it is unavailable."""

from __future__ import annotations

import logging

from authgate.adapters.rate_limit.base import RateLimitBackend, RateLimitResult, ScopeConfig
from authgate.core.errors import BackendUnavailableError
from authgate.core.logging import hash_identifier

logger = logging.getLogger(__name__)


class FallbackBackend(RateLimitBackend):
    """Use ``primary``; degrade to ``fallback`` when it raises BackendUnavailableError.

    If the fallback itself fails unexpectedly the request is admitted.
    """

    def __init__(self, primary: RateLimitBackend, fallback: RateLimitBackend) -> None:
        self._primary = primary
        self._fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    def check(self, scope: ScopeConfig, client_key: str) -> RateLimitResult:
        try:
            return self._primary.check(scope, client_key)
        except BackendUnavailableError as exc:
            logger.warning(
                "rate_limit.primary_unavailable",
                extra={
                    "scope": scope.name,
                    "key_hash": hash_identifier(client_key),
                    "primary": self._primary.name,
                    "fallback": self._fallback.name,
                    "error_code": exc.code,
                },
            )

        try:
            return self._fallback.check(scope, client_key)
        except Exception as exc:
            logger.error(
                "rate_limit.fallback_failed_open",
                extra={
                    "scope": scope.name,
                    "key_hash": hash_identifier(client_key),
                    "error_type": type(exc).__name__,
                },
            )
            return RateLimitResult.fail_open(scope, self.name)

    def close(self) -> None:
        self._primary.close()
        self._fallback.close()
