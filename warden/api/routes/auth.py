"""
Warden - Authentication Routes

- Registration and login
- Refresh-token rotation (cookie first, JSON body as fallback)
- Logout (clears the refresh cookie; no server-side revocation)
- Password change, forgot/reset password
- Email verification and resend

Refresh tokens travel in the body and in an HttpOnly, SameSite=strict
cookie. Secret tokens for reset and verification are path segments.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Request, Response, status
from pydantic import BaseModel, EmailStr, Field, StringConstraints, model_validator

from warden.api.dependencies import AuthServiceDep, CurrentAccount, SettingsDep
from warden.config import Settings
from warden.models.account import Account, AccountInDB, AccountProfile, Token, to_public_account
from warden.security.auth_service import InvalidTokenError
from warden.security.password import PASSWORD_MAX_BYTES, validate_password_strength

router = APIRouter()

NamePart = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]

GENERIC_RESET_MESSAGE = "If an account exists for this email, a password reset link has been sent"
GENERIC_VERIFICATION_MESSAGE = (
    "If an unverified account exists for this email, a verification link has been sent"
)


# =============================================================================
# Cookie Configuration
# =============================================================================

def _cookie_settings(settings: Settings) -> dict:
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict",
        "path": "/",
    }


def set_refresh_cookie(response: Response, refresh_token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh_token,
        max_age=settings.refresh_cookie_max_age_hours * 60 * 60,
        **_cookie_settings(settings),
    )


def clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(key=settings.refresh_cookie_name, **_cookie_settings(settings))


# =============================================================================
# Request / Response Models
# =============================================================================

class RegisterRequest(BaseModel):
    """Account registration request."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=PASSWORD_MAX_BYTES)
    first_name: NamePart | None = None
    last_name: NamePart | None = None
    phone: str | None = Field(default=None, max_length=32, pattern=r"^\+?[0-9 ()\-]{6,32}$")

    @model_validator(mode="after")
    def check_password_strength(self) -> RegisterRequest:
        validate_password_strength(self.password, email=self.email)
        return self

    def profile(self) -> AccountProfile:
        return AccountProfile(
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
        )


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str | None = Field(default=None, max_length=8192)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8, max_length=PASSWORD_MAX_BYTES)

    @model_validator(mode="after")
    def check_new_password(self) -> ChangePasswordRequest:
        if self.new_password == self.current_password:
            raise ValueError("New password must be different from the current password")
        validate_password_strength(self.new_password)
        return self


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=8, max_length=PASSWORD_MAX_BYTES)

    @model_validator(mode="after")
    def check_password_strength(self) -> ResetPasswordRequest:
        validate_password_strength(self.password)
        return self


class AuthResponse(BaseModel):
    status: str = "success"
    token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    account: Account


class AccountResponse(BaseModel):
    status: str = "success"
    account: Account


class MessageResponse(BaseModel):
    status: str = "success"
    message: str


def _auth_response(
    response: Response,
    account: AccountInDB,
    token: Token,
    settings: Settings,
) -> AuthResponse:
    set_refresh_cookie(response, token.refresh_token, settings)
    return AuthResponse(
        token=token.access_token,
        refresh_token=token.refresh_token,
        token_type=token.token_type,
        expires_in=token.expires_in,
        account=to_public_account(account),
    )


# =============================================================================
# Registration / Login
# =============================================================================

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    response: Response,
    auth_service: AuthServiceDep,
    settings: SettingsDep,
) -> AuthResponse:
    """Create an account, send the verification email and sign in."""
    account, token = await auth_service.register(
        email=payload.email,
        password=payload.password,
        profile=payload.profile(),
    )
    return _auth_response(response, account, token, settings)


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    response: Response,
    auth_service: AuthServiceDep,
    settings: SettingsDep,
) -> AuthResponse:
    account, token = await auth_service.login(payload.email, payload.password)
    return _auth_response(response, account, token, settings)


@router.post("/refresh-token", response_model=AuthResponse)
async def refresh_token(
    request: Request,
    response: Response,
    auth_service: AuthServiceDep,
    settings: SettingsDep,
    payload: RefreshRequest | None = Body(default=None),
) -> AuthResponse:
    """Rotate the token pair. The previous refresh token stops working."""
    presented = request.cookies.get(settings.refresh_cookie_name)
    if not presented and payload is not None:
        presented = payload.refresh_token
    if not presented:
        raise InvalidTokenError("Refresh token required")

    account, token = await auth_service.refresh(presented)
    return _auth_response(response, account, token, settings)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    auth: CurrentAccount,
    response: Response,
    auth_service: AuthServiceDep,
    settings: SettingsDep,
) -> MessageResponse:
    """
    Clear the refresh cookie.

    Outstanding access tokens remain valid until they expire.
    """
    await auth_service.logout(auth.account_id)
    clear_refresh_cookie(response, settings)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=AccountResponse)
async def me(auth: CurrentAccount, auth_service: AuthServiceDep) -> AccountResponse:
    account = await auth_service.get_account(auth.account_id)
    return AccountResponse(account=to_public_account(account))


# =============================================================================
# Password Management
# =============================================================================

@router.patch("/change-password", response_model=AuthResponse)
async def change_password(
    payload: ChangePasswordRequest,
    auth: CurrentAccount,
    response: Response,
    auth_service: AuthServiceDep,
    settings: SettingsDep,
) -> AuthResponse:
    """Replace the password. All earlier tokens stop working; a fresh pair is returned."""
    account, token = await auth_service.change_password(
        auth.account_id,
        payload.current_password,
        payload.new_password,
    )
    return _auth_response(response, account, token, settings)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(payload: EmailRequest, auth_service: AuthServiceDep) -> MessageResponse:
    await auth_service.forgot_password(payload.email)
    return MessageResponse(message=GENERIC_RESET_MESSAGE)


@router.patch("/reset-password/{token}", response_model=AuthResponse)
async def reset_password(
    token: str,
    payload: ResetPasswordRequest,
    response: Response,
    auth_service: AuthServiceDep,
    settings: SettingsDep,
) -> AuthResponse:
    """Consume a reset token, set the new password and sign in."""
    account, tokens = await auth_service.reset_password(token, payload.password)
    return _auth_response(response, account, tokens, settings)


# =============================================================================
# Email Verification
# =============================================================================

@router.get("/verify-email/{token}", response_model=AccountResponse)
async def verify_email(token: str, auth_service: AuthServiceDep) -> AccountResponse:
    account = await auth_service.verify_email(token)
    return AccountResponse(account=to_public_account(account))


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(payload: EmailRequest, auth_service: AuthServiceDep) -> MessageResponse:
    await auth_service.resend_verification(payload.email)
    return MessageResponse(message=GENERIC_VERIFICATION_MESSAGE)
