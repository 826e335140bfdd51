"""
Authentication Router

Endpoints:
- POST /auth/login - Login with an explicit role (defaults to parent)
- POST /auth/{parent,teacher,admin}/login - Role-specific login
- POST /auth/register - Parent self-registration
- POST /auth/refresh - Exchange a refresh token
- GET /auth/me - Current account
- POST /auth/change-password - Change own password
- POST /auth/logout - Revoke the current session
- POST /auth/forgot-password - E-mail a password reset link
- POST /auth/reset-password - Set a new password with a reset token
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ServiceError, to_http_exception
from kinderhub.core.rate_limit import rate_limit
from kinderhub.modules.auth import service
from kinderhub.modules.auth.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    RoleLoginRequest,
    TokenResponse,
    UserResponse,
)
from kinderhub.modules.users import repository as users_repository
from kinderhub.modules.users.repository import Account

logger = logging.getLogger(__name__)

router = APIRouter()

LOGIN_RATE_LIMIT = 10
LOGIN_RATE_WINDOW_SECONDS = 60
RESET_RATE_LIMIT = 5
RESET_RATE_WINDOW_SECONDS = 60 * 15

RESET_REQUESTED_MESSAGE = (
    "If an account with this email exists, a password reset link has been sent."
)
RESET_DONE_MESSAGE = "Password reset successfully. Please log in with your new password."


def _user_response(account: Account) -> UserResponse:
    return UserResponse(
        id=str(account.id),
        email=account.email,
        first_name=account.first_name,
        last_name=account.last_name,
        role=account.role.value,
        is_active=account.is_active,
        created_at=account.created_at,
    )


async def _login(db: AsyncSession, email: str, password: str, role: str) -> LoginResponse:
    try:
        account = await service.authenticate(db, email, password, role)
    except ServiceError as e:
        raise to_http_exception(e) from e

    tokens = service.issue_tokens(account)
    return LoginResponse(
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        user=_user_response(account),
    )


@router.post("/login", response_model=LoginResponse)
@rate_limit(limit=LOGIN_RATE_LIMIT, window_seconds=LOGIN_RATE_WINDOW_SECONDS)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """
    Authenticate and return JWT tokens.

    Raises:
        HTTPException 401: Invalid credentials
        HTTPException 403: Account inactive
        HTTPException 429: Too many attempts
    """
    return await _login(db, credentials.email, credentials.password, credentials.role)


@router.post("/parent/login", response_model=LoginResponse)
@rate_limit(limit=LOGIN_RATE_LIMIT, window_seconds=LOGIN_RATE_WINDOW_SECONDS)
async def parent_login(
    request: Request,
    credentials: RoleLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    return await _login(db, credentials.email, credentials.password, "parent")


@router.post("/teacher/login", response_model=LoginResponse)
@rate_limit(limit=LOGIN_RATE_LIMIT, window_seconds=LOGIN_RATE_WINDOW_SECONDS)
async def teacher_login(
    request: Request,
    credentials: RoleLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    return await _login(db, credentials.email, credentials.password, "teacher")


@router.post("/admin/login", response_model=LoginResponse)
@rate_limit(limit=LOGIN_RATE_LIMIT, window_seconds=LOGIN_RATE_WINDOW_SECONDS)
async def admin_login(
    request: Request,
    credentials: RoleLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    return await _login(db, credentials.email, credentials.password, "admin")


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """Register a parent account and log it in."""
    try:
        user = await service.register_parent(
            db,
            email=data.email,
            password=data.password,
            first_name=data.first_name,
            last_name=data.last_name,
            phone=data.phone,
            address=data.address,
        )
    except ServiceError as e:
        raise to_http_exception(e) from e

    tokens = service.issue_tokens(user)
    return LoginResponse(
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        user=_user_response(user),
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    try:
        tokens = await service.refresh_access_token(db, data.refresh_token)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return TokenResponse(**tokens)


async def _load_account(db: AsyncSession, user: CurrentUser) -> Account:
    account = await users_repository.get_account(db, user.role, user.id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "ACCOUNT_NOT_FOUND", "message": "Account not found."},
        )
    return account


@router.get("/me", response_model=UserResponse)
async def me(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    return _user_response(await _load_account(db, user))


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    data: ChangePasswordRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    account = await _load_account(db, user)
    try:
        await service.change_password(db, account, data.current_password, data.new_password)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    data: LogoutRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
) -> None:
    """Sign out: the presented access token (and refresh token, if sent) stop working."""
    await service.logout(user, data.refresh_token if data else None)


@router.post("/forgot-password", response_model=MessageResponse)
@rate_limit(limit=RESET_RATE_LIMIT, window_seconds=RESET_RATE_WINDOW_SECONDS)
async def forgot_password(
    request: Request,
    data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Always answers the same way so registered addresses cannot be discovered."""
    await service.request_password_reset(db, data.email, data.role)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
@rate_limit(limit=LOGIN_RATE_LIMIT, window_seconds=LOGIN_RATE_WINDOW_SECONDS)
async def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        await service.reset_password(db, data.token, data.new_password)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return MessageResponse(message=RESET_DONE_MESSAGE)
