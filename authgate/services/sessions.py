"""Server-side session management.

Sessions are opaque: the client holds a random secret in an HttpOnly cookie
and the database holds only its SHA-256 digest. Every successful validation
pushes the expiry forward (rolling sessions) and re-reads identity, tenant
role and plan from the database, so role or billing changes apply on the
next request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authgate.core.errors import BackendUnavailableError
from authgate.core.logging import hash_identifier
from authgate.db.time import utcnow
from authgate.models.session import UserSession
from authgate.repositories.session_repo import SessionRepository
from authgate.repositories.tenant_repo import TenantRepository
from authgate.repositories.user_repo import UserRepository
from authgate.services.tokens import generate_secret, hash_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Caller identity resolved from the database for one request."""

    user_id: str
    email: str
    email_verified: bool
    session_id: str
    tenant_id: str | None = None
    role: str | None = None
    plan: str | None = None


@dataclass(frozen=True)
class SessionValidation:
    """Outcome of ``validate_and_refresh``.

    Attributes:
        identity: Resolved identity, or None when unauthenticated.
        clear_cookie: Whether the boundary should delete a stale cookie.
    """

    identity: Identity | None
    clear_cookie: bool = False


class SessionManager:
    """Create, validate, refresh and destroy sessions."""

    def __init__(
        self,
        db: Session,
        *,
        ttl: timedelta = timedelta(days=14),
        secret_bytes: int = 32,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if secret_bytes < 32:
            raise ValueError("secret_bytes must be >= 32")
        self._db = db
        self._sessions = SessionRepository(db)
        self._users = UserRepository(db)
        self._tenants = TenantRepository(db)
        self._ttl = ttl
        self._secret_bytes = secret_bytes
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def create_session(self, user_id: str) -> str:
        """Persist a new session for ``user_id``.

        Expired sessions of the same user are purged first on a best-effort
        basis. The insert itself is not best-effort.

        Returns:
            The raw session secret, to be placed in the session cookie only.

        Raises:
            BackendUnavailableError: If the session cannot be stored.
        """
        now = self._clock()
        self._purge_expired(user_id, now)

        raw_secret = generate_secret(self._secret_bytes)
        try:
            record = self._sessions.create(
                user_id=user_id,
                token_hash=hash_token(raw_secret),
                expires_at=now + self._ttl,
            )
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.error(
                "session.create_failed",
                extra={"user_hash": hash_identifier(user_id), "error_type": type(exc).__name__},
            )
            raise BackendUnavailableError(
                code="session_store_unavailable",
                message="Could not create a session. Please try again later.",
                details={"operation": "create_session"},
            ) from exc

        logger.info(
            "session.created",
            extra={"user_hash": hash_identifier(user_id), "session_id": record.id},
        )
        return raw_secret

    def validate_and_refresh(
        self,
        raw_secret: str | None,
        *,
        tenant_slug: str | None = None,
    ) -> SessionValidation:
        """Resolve the caller of a request from its session secret.

        Args:
            raw_secret: Cookie value, if any.
            tenant_slug: Tenant the request targets (``X-Tenant-Slug``).

        Returns:
            SessionValidation with an identity, or with ``clear_cookie`` set
            when the cookie refers to a missing or expired session.
        """
        if not raw_secret:
            return SessionValidation(identity=None)

        record = self._sessions.get_by_token_hash(hash_token(raw_secret))
        if record is None:
            logger.info("session.unknown")
            return SessionValidation(identity=None, clear_cookie=True)

        now = self._clock()
        if record.expires_at <= now:
            logger.info("session.expired", extra={"session_id": record.id})
            self._discard(record)
            return SessionValidation(identity=None, clear_cookie=True)

        user = self._users.get_by_id(record.user_id)
        if user is None:
            self._discard(record)
            return SessionValidation(identity=None, clear_cookie=True)

        record.expires_at = now + self._ttl
        self._db.commit()

        tenant_id = role = plan = None
        slug = (tenant_slug or "").strip().lower()
        if slug:
            tenant = self._tenants.get_active_by_slug(slug)
            membership = self._tenants.get_membership(tenant.id, user.id) if tenant else None
            if tenant is not None and membership is not None:
                tenant_id, role, plan = tenant.id, membership.role, tenant.plan

        return SessionValidation(
            identity=Identity(
                user_id=user.id,
                email=user.email,
                email_verified=user.email_verified,
                session_id=record.id,
                tenant_id=tenant_id,
                role=role,
                plan=plan,
            )
        )

    def destroy_session(self, raw_secret: str | None) -> bool:
        """Delete the session matching ``raw_secret``.

        Returns:
            True when a session was deleted.
        """
        if not raw_secret:
            return False
        deleted = self._sessions.delete_by_token_hash(hash_token(raw_secret))
        self._db.commit()
        if deleted:
            logger.info("session.destroyed")
        return bool(deleted)

    def destroy_all_sessions(self, user_id: str) -> int:
        """Delete every session of ``user_id`` (password reset).

        The caller commits, so this lands in the same transaction as the
        password change.
        """
        deleted = self._sessions.delete_all_for_user(user_id)
        logger.info(
            "session.revoked_all",
            extra={"user_hash": hash_identifier(user_id), "count": deleted},
        )
        return deleted

    def _discard(self, record: UserSession) -> None:
        """Delete a dead session; failures leave it for a later purge."""
        session_id = record.id
        try:
            self._sessions.delete(record)
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.warning(
                "session.discard_failed",
                extra={"session_id": session_id, "error_type": type(exc).__name__},
            )

    def _purge_expired(self, user_id: str, now: datetime) -> None:
        try:
            with self._db.begin_nested():
                purged = self._sessions.delete_expired_for_user(user_id, now)
        except SQLAlchemyError as exc:
            logger.warning(
                "session.purge_failed",
                extra={"user_hash": hash_identifier(user_id), "error_type": type(exc).__name__},
            )
            return
        if purged:
            logger.debug("session.purged", extra={"user_hash": hash_identifier(user_id), "count": purged})
