from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from authgate.adapters.rate_limit.limiter import LOGIN, PASSWORD_RESET, PUBLIC_API, REGISTRATION
from authgate.core.auth import (
    clear_session_cookie,
    get_account_service,
    get_session_manager,
    read_session_cookie,
    require_auth,
    set_session_cookie,
)
from authgate.core.rate_limit import rate_limit
from authgate.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TenantOut,
    UserOut,
)
from authgate.services.accounts import AccountService
from authgate.services.sessions import Identity, SessionManager

router = APIRouter(prefix="/auth", tags=["Auth"])

Accounts = Annotated[AccountService, Depends(get_account_service)]


def _user_out(user) -> UserOut:
    return UserOut(id=user.id, email=user.email, name=user.name, email_verified=user.email_verified)


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(REGISTRATION))],
)
def register(payload: RegisterRequest, response: Response, accounts: Accounts) -> RegisterResponse:
    """Create an account and sign it in.

    A verification link is emailed; the account can be used right away
    while ``email_verified`` stays false.
    """
    user, raw_session = accounts.register(
        email=payload.email,
        password=payload.password,
        name=payload.name,
    )
    set_session_cookie(response, raw_session)
    return RegisterResponse(
        user=_user_out(user),
        message="Account created. Check your inbox to verify your email address.",
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(rate_limit(LOGIN))],
)
def login(payload: LoginRequest, response: Response, accounts: Accounts) -> LoginResponse:
    """Password login. The session secret is returned only as a cookie."""
    user, raw_session, tenant = accounts.login(email=payload.email, password=payload.password)
    set_session_cookie(response, raw_session)
    return LoginResponse(
        user=_user_out(user),
        tenant=TenantOut(**asdict(tenant)) if tenant else None,
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> MessageResponse:
    """Destroy the current session, if any, and clear the cookie."""
    sessions.destroy_session(read_session_cookie(request))
    clear_session_cookie(response)
    return MessageResponse(message="Signed out.")


@router.get(
    "/me",
    response_model=MeResponse,
    dependencies=[Depends(rate_limit(PUBLIC_API))],
)
def me(identity: Annotated[Identity, Depends(require_auth)], accounts: Accounts) -> MeResponse:
    """Current user, their tenants and the tenant context of this request."""
    user, tenants = accounts.describe(identity.user_id)
    return MeResponse(
        user=_user_out(user),
        tenants=[TenantOut(**asdict(tenant)) for tenant in tenants],
        current_tenant_id=identity.tenant_id,
        role=identity.role,
        plan=identity.plan,
    )


@router.get(
    "/verify-email",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(PUBLIC_API))],
)
def verify_email(
    accounts: Accounts,
    token: Annotated[str, Query(min_length=1, description="Composed token from the verification link.")],
) -> MessageResponse:
    return MessageResponse(message=accounts.verify_email(token))


@router.post("/resend-verification", response_model=MessageResponse)
def resend_verification(
    identity: Annotated[Identity, Depends(require_auth)],
    accounts: Accounts,
) -> MessageResponse:
    return MessageResponse(message=accounts.resend_verification(identity.user_id))


@router.post(
    "/forgot",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(PASSWORD_RESET))],
)
def forgot_password(payload: ForgotPasswordRequest, accounts: Accounts) -> MessageResponse:
    """Request a reset link. The response is the same for unknown emails."""
    return MessageResponse(message=accounts.request_password_reset(payload.email))


@router.post(
    "/reset",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(PASSWORD_RESET))],
)
def reset_password(payload: ResetPasswordRequest, response: Response, accounts: Accounts) -> MessageResponse:
    """Set a new password from a reset token; every session is revoked."""
    message = accounts.reset_password(token=payload.token, new_password=payload.password)
    clear_session_cookie(response)
    return MessageResponse(message=message)
