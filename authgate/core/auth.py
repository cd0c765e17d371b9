"""Session cookie authentication.

This module wires sessions into FastAPI: it builds the services per request,
reads and writes the session cookie, and exposes ``require_auth`` and
``optional_auth`` dependencies together with the
``require_role`` and ``require_plan`` guards built on top of them.

Cookie attributes: HttpOnly, SameSite=Lax, Path=/, Max-Age equal to the
session lifetime, and Secure everywhere except local deployments.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Annotated, Callable

from fastapi import Depends, Header, Request, Response
from sqlalchemy.orm import Session

from authgate.adapters.email.base import EmailSender
from authgate.adapters.email.outbox import OutboxEmailSender
from authgate.core.config import settings
from authgate.core.errors import ForbiddenAppError, SessionRequiredError
from authgate.core.logging import hash_identifier
from authgate.db.session import get_db
from authgate.repositories.user_repo import UserRepository
from authgate.services.accounts import AccountService
from authgate.services.passwords import PasswordHasher
from authgate.services.sessions import Identity, SessionManager
from authgate.services.tokens import SingleUseTokenService, TokenPurpose

logger = logging.getLogger(__name__)

_hasher: PasswordHasher | None = None
_email_sender: EmailSender | None = None


def get_password_hasher() -> PasswordHasher:
    """Return the process-wide password hasher built from settings."""

    global _hasher

    if _hasher is None:
        _hasher = PasswordHasher(
            iterations=settings.auth.pbkdf2_iterations,
            salt_bytes=settings.auth.salt_bytes,
            min_iterations=settings.auth.pbkdf2_min_iterations,
            allow_legacy_seed_hashes=settings.legacy_seed_hashes_allowed,
        )
    return _hasher


def get_email_sender() -> EmailSender:
    """Return the process-wide email sender."""

    global _email_sender

    if _email_sender is None:
        _email_sender = OutboxEmailSender()
    return _email_sender


def session_ttl() -> timedelta:
    return timedelta(days=settings.auth.session_ttl_days)


def get_session_manager(db: Annotated[Session, Depends(get_db)]) -> SessionManager:
    return SessionManager(
        db,
        ttl=session_ttl(),
        secret_bytes=settings.auth.session_secret_bytes,
    )


def get_account_service(
    db: Annotated[Session, Depends(get_db)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    hasher: Annotated[PasswordHasher, Depends(get_password_hasher)],
    email_sender: Annotated[EmailSender, Depends(get_email_sender)],
) -> AccountService:
    tokens = SingleUseTokenService(
        UserRepository(db),
        ttls={
            TokenPurpose.EMAIL_VERIFICATION: timedelta(hours=settings.auth.verify_token_ttl_hours),
            TokenPurpose.PASSWORD_RESET: timedelta(minutes=settings.auth.reset_token_ttl_minutes),
        },
    )
    return AccountService(
        db,
        hasher=hasher,
        sessions=sessions,
        tokens=tokens,
        email_sender=email_sender,
        public_url=settings.app.public_url,
    )


def read_session_cookie(request: Request) -> str | None:
    return request.cookies.get(settings.auth.session_cookie_name) or None


def set_session_cookie(response: Response, raw_secret: str) -> None:
    """Attach the session cookie to ``response``."""
    response.set_cookie(
        key=settings.auth.session_cookie_name,
        value=raw_secret,
        max_age=int(session_ttl().total_seconds()),
        path="/",
        httponly=True,
        secure=not settings.app.is_local,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    """Expire the session cookie on the client."""
    response.delete_cookie(
        key=settings.auth.session_cookie_name,
        path="/",
        httponly=True,
        secure=not settings.app.is_local,
        samesite="lax",
    )


def optional_auth(
    request: Request,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    x_tenant_slug: Annotated[str | None, Header(alias="X-Tenant-Slug")] = None,
) -> Identity | None:
    """Resolve the caller if a valid session cookie is present.

    A valid session is refreshed and its cookie re-issued with a full
    lifetime; a stale cookie is cleared.
    """
    raw_secret = read_session_cookie(request)
    validation = sessions.validate_and_refresh(raw_secret, tenant_slug=x_tenant_slug)

    if validation.identity is None:
        if validation.clear_cookie:
            clear_session_cookie(response)
        return None

    set_session_cookie(response, raw_secret)
    return validation.identity


def require_auth(
    request: Request,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    x_tenant_slug: Annotated[str | None, Header(alias="X-Tenant-Slug")] = None,
) -> Identity:
    """FastAPI dependency for routes that need a signed-in caller.

    Usage:
        @router.get("/me")
        def me(identity: Annotated[Identity, Depends(require_auth)]): ...

    Raises:
        SessionRequiredError: 401; ``clear_cookie`` is set when the request
            carried a cookie that no longer maps to a live session.
    """
    raw_secret = read_session_cookie(request)
    validation = sessions.validate_and_refresh(raw_secret, tenant_slug=x_tenant_slug)

    if validation.identity is None:
        logger.info(
            "auth.session_required",
            extra={"cookie_present": raw_secret is not None, "clear_cookie": validation.clear_cookie},
        )
        raise SessionRequiredError(
            code="unauthorized",
            message="Authentication required.",
            clear_cookie=validation.clear_cookie,
        )

    set_session_cookie(response, raw_secret)
    return validation.identity


ROLE_LEVELS = {"staff": 1, "admin": 2, "owner": 3}

PLAN_FEATURES = {
    "free": {"custom_domain": False, "team": False, "analytics": False},
    "pro": {"custom_domain": False, "team": False, "analytics": True},
    "business": {"custom_domain": True, "team": True, "analytics": True},
}


def require_role(*roles: str) -> Callable[[Identity], Identity]:
    """Build a dependency admitting members holding at least one of ``roles``.

    Roles are ranked staff < admin < owner, so ``require_role("admin")``
    also admits owners. The role comes from the tenant named by
    ``X-Tenant-Slug`` and is re-read on every request.

    Raises:
        ValueError: If a role is not one of ``ROLE_LEVELS``.
    """
    if not roles:
        raise ValueError("require_role needs at least one role")
    unknown = [role for role in roles if role not in ROLE_LEVELS]
    if unknown:
        raise ValueError(f"Unknown roles: {unknown}")
    min_level = min(ROLE_LEVELS[role] for role in roles)

    def enforce_role(identity: Annotated[Identity, Depends(require_auth)]) -> Identity:
        if identity.role is None:
            raise ForbiddenAppError(
                code="tenant_membership_required",
                message="This action requires membership of the selected tenant.",
            )
        if ROLE_LEVELS.get(identity.role, 0) < min_level:
            logger.info(
                "auth.role_denied",
                extra={"user_hash": hash_identifier(identity.user_id), "role": identity.role},
            )
            raise ForbiddenAppError(
                code="insufficient_role",
                message="Insufficient permissions.",
                details={"required": sorted(roles, key=ROLE_LEVELS.get)},
            )
        return identity

    return enforce_role


def require_plan(feature: str) -> Callable[[Identity], Identity]:
    """Build a dependency admitting tenants whose plan includes ``feature``.

    Callers outside a tenant are treated as the free plan.

    Raises:
        ValueError: If ``feature`` is not a known plan feature.
    """
    if feature not in PLAN_FEATURES["free"]:
        raise ValueError(f"Unknown plan feature: {feature}")

    def enforce_plan(identity: Annotated[Identity, Depends(require_auth)]) -> Identity:
        plan = identity.plan or "free"
        features = PLAN_FEATURES.get(plan)
        if features is None:
            raise ForbiddenAppError(code="invalid_plan", message="Invalid plan.", details={"plan": plan})
        if not features[feature]:
            raise ForbiddenAppError(
                code="plan_upgrade_required",
                message=f"The {plan} plan does not include {feature.replace('_', ' ')}.",
                details={"feature": feature, "plan": plan, "upgrade": True},
            )
        return identity

    return enforce_plan
