"""
Authentication Endpoints
------------------------
Login, refresh, invited registration, password flows, logout everywhere and
the current principal.

The refresh token only ever travels in an HttpOnly cookie; the access token
is returned in the body and sent back as ``Authorization: Bearer: <token>``.
"""

from datetime import datetime
from email.utils import format_datetime

from fastapi import APIRouter, Depends, Request, Response, status
from loguru import logger

from app.auth.auth_service import AuthService, LoginResult
from app.auth.dependencies import get_current_user
from app.auth.models import (
    AuthTokenResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SanitizedUser,
    UpdatePasswordRequest,
)
from app.auth.providers import get_auth_service
from app.auth.refresh_sessions import IssuedTokens
from app.core.config_manager import settings
from app.core.exceptions import UnauthorizedError
from app.models.identity_models import Principal

# ============================================================================
# ROUTER INITIALIZATION
# ============================================================================

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# ============================================================================
# COOKIE HELPERS
# ============================================================================

# set_cookie(partitioned=True) needs Python 3.14 http.cookies, so the header is built here
COOKIE_ATTRIBUTES = "Path=/; HttpOnly; Secure; SameSite=None; Partitioned"


def set_refresh_cookie(response: Response, token: str, expires_at: datetime) -> None:
    expires = format_datetime(expires_at, usegmt=True)
    response.headers.append(
        "Set-Cookie",
        f"{settings.refresh_token_cookie_key}={token}; Expires={expires}; {COOKIE_ATTRIBUTES}",
    )


def clear_refresh_cookie(response: Response) -> None:
    response.headers.append(
        "Set-Cookie",
        f"{settings.refresh_token_cookie_key}=; Max-Age=0; {COOKIE_ATTRIBUTES}",
    )


def _token_response(tokens: IssuedTokens, **extra) -> AuthTokenResponse:
    return AuthTokenResponse(
        access_token=tokens.access_token,
        token_type="bearer",
        expires_in=settings.access_token_expiration_secs,
        **extra,
    )


def _login_response(response: Response, result: LoginResult) -> AuthTokenResponse:
    set_refresh_cookie(
        response, result.tokens.refresh_token, result.tokens.refresh_expires_at
    )
    return _token_response(
        result.tokens,
        user=result.user,
        role=result.role,
        organization_slug=result.organization_slug,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================


@router.post(
    "/login",
    response_model=AuthTokenResponse,
    summary="Authenticate with email and password",
)
async def login(
    body: LoginRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate and start a refresh session.

    Returns the access token, the sanitized user and the role and slug of the
    default organization. The refresh token is set as a cookie.
    """
    result = await auth_service.login_user(body.email, body.password)
    return _login_response(response, result)


@router.get(
    "/refresh",
    response_model=AuthTokenResponse,
    summary="Rotate the refresh token",
)
async def refresh(
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Exchange the refresh cookie for a new access token and refresh cookie.

    Replaying an already rotated token revokes every session of the user.
    """
    raw_token = request.cookies.get(settings.refresh_token_cookie_key)
    if not raw_token:
        raise UnauthorizedError()

    tokens = await auth_service.refresh(raw_token)
    set_refresh_cookie(response, tokens.refresh_token, tokens.refresh_expires_at)
    return _token_response(tokens)


@router.post(
    "/register",
    response_model=AuthTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register from an invitation link",
)
async def register(
    body: RegisterRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    result = await auth_service.register_user(body)
    return _login_response(response, result)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.forgot_password(body.email)
    return MessageResponse(message="Password reset email sent.")


@router.patch("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.reset_password(body.token, body.password)
    clear_refresh_cookie(response)
    return MessageResponse(message="Password has been reset.")


# ============================================================================
# AUTHENTICATED ENDPOINTS
# ============================================================================


@router.patch("/update-password", response_model=AuthTokenResponse)
async def update_password(
    body: UpdatePasswordRequest,
    response: Response,
    principal: Principal = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Change the password, revoke every other session and start a new one."""
    tokens = await auth_service.update_password(
        principal, body.current_password, body.new_password
    )
    set_refresh_cookie(response, tokens.refresh_token, tokens.refresh_expires_at)
    return _token_response(tokens)


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    principal: Principal = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    revoked = await auth_service.logout_everywhere(principal)
    clear_refresh_cookie(response)
    logger.info(f"User {principal.id} logged out of {revoked} session(s)")
    return MessageResponse(message="Logged out of all sessions.")


@router.get("/me", response_model=SanitizedUser)
async def me(
    principal: Principal = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    return auth_service.sanitize_user(principal)
