"""Token primitives and the single-use token protocol.

Single-use tokens (email verification, password reset) are handed out as
``<owner-id>.<raw-secret>``: the owner id allows an indexed lookup, the secret
is the proof of possession. Only ``sha256(secret)`` is stored, in a slot
dedicated to the token's purpose, together with its expiry.

Slot lifecycle::

    absent -> issued(expires_at) -> consumed   -> absent
                                 -> expired    -> absent (cleared on the next attempt)
                                 -> reissued   -> issued(new expiry)
"""

from __future__ import annotations

import enum
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Mapping

from authgate.core.errors import InvalidTokenError, TokenExpiredError
from authgate.core.logging import hash_identifier
from authgate.db.time import utcnow
from authgate.models.user import User
from authgate.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)

TOKEN_DELIMITER = "."


def generate_secret(n_bytes: int = 32) -> str:
    """Cryptographically random hex secret."""
    return secrets.token_hex(n_bytes)


def hash_token(raw: str) -> str:
    """One-way SHA-256 hex digest of a raw token secret."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without short-circuiting on the first difference.

    Lengths are compared first (digests have a fixed, public length); then
    every byte pair is XOR-accumulated so the loop cost is independent of
    where the strings differ.
    """
    left = a.encode("utf-8")
    right = b.encode("utf-8")
    if len(left) != len(right):
        return False
    diff = 0
    for x, y in zip(left, right):
        diff |= x ^ y
    return diff == 0


def compose_token(owner_id: str, secret: str) -> str:
    return f"{owner_id}{TOKEN_DELIMITER}{secret}"


def split_token(token: str) -> tuple[str, str] | None:
    """Split a composed token on its first delimiter.

    Returns:
        ``(owner_id, secret)`` or None when either half is missing.
    """
    owner_id, sep, secret = token.partition(TOKEN_DELIMITER)
    if not sep or not owner_id or not secret:
        return None
    return owner_id, secret


class TokenPurpose(str, enum.Enum):
    """Purpose of a single-use token; each purpose owns its own column pair."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"

    @property
    def hash_attr(self) -> str:
        return _SLOTS[self][0]

    @property
    def expires_attr(self) -> str:
        return _SLOTS[self][1]


_SLOTS: dict[TokenPurpose, tuple[str, str]] = {
    TokenPurpose.EMAIL_VERIFICATION: ("email_verify_token_hash", "email_verify_expires_at"),
    TokenPurpose.PASSWORD_RESET: ("reset_token_hash", "reset_token_expires_at"),
}

_EXPIRED_MESSAGES: dict[TokenPurpose, str] = {
    TokenPurpose.EMAIL_VERIFICATION: (
        "This verification link has expired. Sign in to request a new one."
    ),
    TokenPurpose.PASSWORD_RESET: (
        "This password reset link has expired. Request a new one."
    ),
}

DEFAULT_TOKEN_TTLS: dict[TokenPurpose, timedelta] = {
    TokenPurpose.EMAIL_VERIFICATION: timedelta(hours=24),
    TokenPurpose.PASSWORD_RESET: timedelta(hours=1),
}


class SingleUseTokenService:
    """Issue and consume single-use tokens stored on the user record.

    The service mutates the ORM instance and flushes; committing is left to
    the caller so token consumption lands in the same transaction as the
    state change it authorises.
    """

    def __init__(
        self,
        users: UserRepository,
        *,
        ttls: Mapping[TokenPurpose, timedelta] | None = None,
        secret_bytes: int = 32,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users = users
        self._ttls = dict(DEFAULT_TOKEN_TTLS)
        if ttls:
            self._ttls.update(ttls)
        self._secret_bytes = secret_bytes
        self._clock = clock

    def issue(self, user: User, purpose: TokenPurpose) -> str:
        """Store a fresh token hash in the purpose's slot.

        Any outstanding token for the same purpose is overwritten and can no
        longer be verified.

        Returns:
            The composed ``<owner-id>.<raw-secret>`` token.
        """
        secret = generate_secret(self._secret_bytes)
        expires_at = self._clock() + self._ttls[purpose]
        setattr(user, purpose.hash_attr, hash_token(secret))
        setattr(user, purpose.expires_attr, expires_at)
        self._users.session.flush()

        logger.info(
            "token.issued",
            extra={
                "purpose": purpose.value,
                "user_hash": hash_identifier(user.id),
                "expires_at": expires_at.isoformat(),
            },
        )
        return compose_token(user.id, secret)

    def verify(self, token: str, purpose: TokenPurpose) -> User:
        """Consume a token for ``purpose``.

        Args:
            token: Composed token as received from the client.
            purpose: Which slot the token must match.

        Returns:
            The owning user; the slot is cleared.

        Raises:
            InvalidTokenError: Malformed token, unknown owner, empty slot or
                mismatching secret.
            TokenExpiredError: The slot holds a token past its expiry (the
                slot is cleared).
        """
        parts = split_token(token or "")
        if parts is None:
            raise self._invalid(purpose, "malformed")
        owner_id, secret = parts

        user = self._users.get_by_id(owner_id)
        if user is None:
            raise self._invalid(purpose, "unknown_owner")

        stored_hash = getattr(user, purpose.hash_attr)
        expires_at = getattr(user, purpose.expires_attr)
        if not stored_hash or expires_at is None:
            raise self._invalid(purpose, "no_active_token", user)

        if expires_at <= self._clock():
            self._clear(user, purpose)
            logger.info(
                "token.expired",
                extra={"purpose": purpose.value, "user_hash": hash_identifier(user.id)},
            )
            raise TokenExpiredError(
                code="token_expired",
                message=_EXPIRED_MESSAGES[purpose],
                details={"purpose": purpose.value},
            )

        if not constant_time_equals(hash_token(secret), stored_hash):
            raise self._invalid(purpose, "mismatch", user)

        self._clear(user, purpose)
        logger.info(
            "token.consumed",
            extra={"purpose": purpose.value, "user_hash": hash_identifier(user.id)},
        )
        return user

    def _clear(self, user: User, purpose: TokenPurpose) -> None:
        setattr(user, purpose.hash_attr, None)
        setattr(user, purpose.expires_attr, None)
        self._users.session.flush()

    def _invalid(self, purpose: TokenPurpose, reason: str, user: User | None = None) -> InvalidTokenError:
        logger.warning(
            "token.rejected",
            extra={
                "purpose": purpose.value,
                "reason": reason,
                "user_hash": hash_identifier(user.id) if user else None,
            },
        )
        return InvalidTokenError(
            code="invalid_token",
            message="This link is invalid or has already been used.",
            details={"purpose": purpose.value},
        )
