"""Account workflows built on the session and credential primitives.

This service is the glue between HTTP routes and the core: registration,
login, email verification, password recovery and the ``/auth/me`` view.

Security properties enforced here:
- Login always runs the key derivation, against a dummy hash when the
  account does not exist, and fails with one generic error.
- Password recovery answers identically whether the email exists or not.
- A password reset revokes every session of the user.
- Email sending is best-effort; credential and session writes are not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from authgate.adapters.email.base import EmailMessage, EmailSender
from authgate.core.errors import (
    BackendUnavailableError,
    ConflictAppError,
    InvalidCredentialsError,
    SessionRequiredError,
    TokenExpiredError,
)
from authgate.core.logging import hash_identifier
from authgate.models.user import User
from authgate.repositories.tenant_repo import TenantRepository
from authgate.repositories.user_repo import UserRepository
from authgate.services.passwords import PasswordHasher
from authgate.services.sessions import SessionManager
from authgate.services.tokens import SingleUseTokenService, TokenPurpose

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."


@dataclass(frozen=True)
class TenantSummary:
    """Tenant a user belongs to, with the user's role in it."""

    id: str
    slug: str
    name: str
    plan: str
    role: str


class AccountService:
    """Registration, login and token-driven account flows."""

    def __init__(
        self,
        db: Session,
        *,
        hasher: PasswordHasher,
        sessions: SessionManager,
        tokens: SingleUseTokenService,
        email_sender: EmailSender,
        public_url: str,
    ) -> None:
        self._db = db
        self._users = UserRepository(db)
        self._tenants = TenantRepository(db)
        self._hasher = hasher
        self._sessions = sessions
        self._tokens = tokens
        self._email = email_sender
        self._public_url = public_url.rstrip("/")

    def register(self, *, email: str, password: str, name: str) -> tuple[User, str]:
        """Create an account, send its verification link and open a session.

        Returns:
            ``(user, raw_session_secret)``.

        Raises:
            ConflictAppError: If the email is already registered.
            BackendUnavailableError: If the account or session cannot be stored.
        """
        if self._users.get_by_email(email) is not None:
            raise self._email_taken()

        password_hash = self._hasher.hash(password)
        try:
            user = self._users.create(email=email, password_hash=password_hash, name=name.strip())
            verify_token = self._tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)
            self._db.commit()
        except IntegrityError as exc:
            self._db.rollback()
            raise self._email_taken() from exc
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise self._store_unavailable("register") from exc

        logger.info("auth.registered", extra={"user_hash": hash_identifier(user.id)})
        self._send(
            EmailMessage(
                to=user.email,
                template="verify_email",
                subject="Activate your account",
                link=self._link("/auth/verify-email", verify_token),
            )
        )

        raw_session = self._sessions.create_session(user.id)
        return user, raw_session

    def login(self, *, email: str, password: str) -> tuple[User, str, TenantSummary | None]:
        """Check credentials and open a session.

        Returns:
            ``(user, raw_session_secret, first_active_tenant_or_None)``.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password (same error).
        """
        user = self._users.get_by_email(email)

        if user is None:
            # Burn the same derivation cost so response time does not reveal the account.
            self._hasher.verify(password, self._hasher.dummy_hash)
            valid = False
        else:
            valid = self._hasher.verify(password, user.password_hash)

        if user is None or not valid:
            logger.warning(
                "auth.login_failed",
                extra={"email_hash": hash_identifier(email.strip().lower())},
            )
            raise InvalidCredentialsError(
                code="invalid_credentials",
                message=INVALID_CREDENTIALS_MESSAGE,
            )

        if self._hasher.needs_rehash(user.password_hash):
            user.password_hash = self._hasher.hash(password)
            logger.info("auth.password_rehashed", extra={"user_hash": hash_identifier(user.id)})

        raw_session = self._sessions.create_session(user.id)
        tenants = self._tenant_summaries(user.id)
        logger.info("auth.login_succeeded", extra={"user_hash": hash_identifier(user.id)})
        return user, raw_session, tenants[0] if tenants else None

    def verify_email(self, token: str) -> str:
        """Consume an email verification token.

        Returns:
            Human-readable outcome message.

        Raises:
            InvalidTokenError: Token malformed, unknown or already used.
            TokenExpiredError: Token past its 24h lifetime.
        """
        owner = self._owner_of(token)
        if owner is not None and owner.email_verified:
            return "Email address is already verified."

        user = self._consume(token, TokenPurpose.EMAIL_VERIFICATION)
        user.email_verified = True
        self._commit("verify_email")
        logger.info("auth.email_verified", extra={"user_hash": hash_identifier(user.id)})
        return "Email address verified. You can now sign in."

    def resend_verification(self, user_id: str) -> str:
        """Issue a new verification token, invalidating the previous one."""
        user = self._users.get_by_id(user_id)
        if user is None:
            raise SessionRequiredError(
                code="unauthorized",
                message="Authentication required.",
                clear_cookie=True,
            )
        if user.email_verified:
            return "Email address is already verified."

        verify_token = self._tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)
        self._commit("resend_verification")
        self._send(
            EmailMessage(
                to=user.email,
                template="verify_email",
                subject="Activate your account",
                link=self._link("/auth/verify-email", verify_token),
            )
        )
        return "A new verification link has been sent to your email address."

    def request_password_reset(self, email: str) -> str:
        """Email a reset link if the account exists; the answer never tells."""
        user = self._users.get_by_email(email)
        if user is not None:
            reset_token = self._tokens.issue(user, TokenPurpose.PASSWORD_RESET)
            self._commit("request_password_reset")
            self._send(
                EmailMessage(
                    to=user.email,
                    template="password_reset",
                    subject="Reset your password",
                    link=self._link("/auth/reset", reset_token),
                )
            )
        else:
            logger.info(
                "auth.reset_unknown_email",
                extra={"email_hash": hash_identifier(email.strip().lower())},
            )
        return "If that email is registered, a reset link is on its way."

    def reset_password(self, *, token: str, new_password: str) -> str:
        """Consume a reset token, set the new password and revoke all sessions."""
        user = self._consume(token, TokenPurpose.PASSWORD_RESET)
        user.password_hash = self._hasher.hash(new_password)
        self._sessions.destroy_all_sessions(user.id)
        self._commit("reset_password")
        logger.info("auth.password_reset", extra={"user_hash": hash_identifier(user.id)})
        return "Your password has been changed. You can now sign in."

    def describe(self, user_id: str) -> tuple[User, list[TenantSummary]]:
        """Return the user and the active tenants they belong to."""
        user = self._users.get_by_id(user_id)
        if user is None:
            raise SessionRequiredError(
                code="unauthorized",
                message="Authentication required.",
                clear_cookie=True,
            )
        return user, self._tenant_summaries(user_id)

    def _consume(self, token: str, purpose: TokenPurpose) -> User:
        try:
            return self._tokens.verify(token, purpose)
        except TokenExpiredError:
            # Persist the cleared slot before reporting the expiry.
            self._commit(f"expire_{purpose.value}")
            raise

    def _owner_of(self, token: str) -> User | None:
        owner_id, sep, _ = (token or "").partition(".")
        if not sep or not owner_id:
            return None
        return self._users.get_by_id(owner_id)

    def _tenant_summaries(self, user_id: str) -> list[TenantSummary]:
        return [
            TenantSummary(
                id=tenant.id,
                slug=tenant.slug,
                name=tenant.name,
                plan=tenant.plan,
                role=membership.role,
            )
            for tenant, membership in self._tenants.list_active_for_user(user_id)
        ]

    def _link(self, path: str, token: str) -> str:
        return f"{self._public_url}{path}?token={quote(token, safe='')}"

    def _send(self, message: EmailMessage) -> None:
        try:
            self._email.send(message)
        except Exception as exc:  # delivery is best-effort
            logger.error(
                "email.send_failed",
                extra={
                    "template": message.template,
                    "recipient_hash": hash_identifier(message.to),
                    "error_type": type(exc).__name__,
                },
            )

    def _commit(self, operation: str) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise self._store_unavailable(operation) from exc

    @staticmethod
    def _store_unavailable(operation: str) -> BackendUnavailableError:
        logger.error("auth.store_unavailable", extra={"operation": operation})
        return BackendUnavailableError(
            code="credential_store_unavailable",
            message="The service is temporarily unavailable. Please try again later.",
            details={"operation": operation},
        )

    @staticmethod
    def _email_taken() -> ConflictAppError:
        return ConflictAppError(
            code="email_taken",
            message="This email address is already registered.",
        )
