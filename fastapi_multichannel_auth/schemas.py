"""Pydantic schemas for request/response models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field  # type: ignore[import-untyped]


class SignupRequest(BaseModel):
    """Request schema for account creation."""

    email: str | None = Field(default=None, description="Email address")
    phone: str | None = Field(default=None, description="Phone number in E.164 format")
    username: str = Field(..., description="Unique username")
    password: str = Field(..., description="Account password")
    confirm_password: str = Field(..., description="Must equal password")


class OTPVerify(BaseModel):
    """Request schema for signup verification."""

    identifier: str = Field(..., description="Email address or phone number")
    code: str = Field(
        ..., min_length=4, max_length=10, description="OTP code to verify"
    )


class SigninRequest(BaseModel):
    identifier: str = Field(..., description="Email, phone number, or username")
    password: str = Field(..., description="Account password")


class SigninVerify(BaseModel):
    """Request schema for completing a two-factor signin."""

    pending_token: str = Field(..., description="Handle returned by signin")
    code: str = Field(
        ..., min_length=4, max_length=10, description="OTP code to verify"
    )


class ResendOTPRequest(BaseModel):
    otp_type: str = Field(..., description="signup, signin, 2fa, or password_reset")
    email: str | None = Field(default=None, description="Email address")
    phone: str | None = Field(default=None, description="Phone number")


class GoogleAuthRequest(BaseModel):
    id_token: str = Field(..., min_length=1, description="Google ID token")


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., description="Refresh token from a previous login")


class PasswordResetRequest(BaseModel):
    email: EmailStr = Field(..., description="Email address of the account")


class PasswordResetVerify(BaseModel):
    email: EmailStr = Field(..., description="Email address of the account")
    code: str = Field(
        ..., min_length=4, max_length=10, description="OTP code to verify"
    )


class PasswordResetConfirm(BaseModel):
    """Request schema for setting a new password with a reset token."""

    reset_token: str = Field(..., description="Token returned by reset verification")
    new_password: str = Field(..., description="New account password")


class UserRead(BaseModel):
    """Public view of a user; never carries credentials."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str | None
    phone: str | None
    username: str
    provider: str
    is_verified: bool
    is_profile_complete: bool
    created_at: datetime


class AuthResponse(BaseModel):
    """Response schema for token generation."""

    user: UserRead
    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    token_type: str = Field(default="Bearer", description="Token type")


class SignupResponse(BaseModel):
    user: UserRead
    message: str
    requires_verification: bool
    otp_sent: bool
    requires_resend: bool


class SigninResponse(BaseModel):
    """
    Response schema for signin.

    `auth` is set when login completed; otherwise `otp_type` tells the
    client which verification step comes next.
    """

    requires_otp: bool
    message: str
    pending_token: str | None = None
    otp_type: str | None = None
    auth: AuthResponse | None = None


class ResetTokenResponse(BaseModel):
    reset_token: str = Field(..., description="Single-use password reset token")


class MessageResponse(BaseModel):
    """Generic message response schema."""

    message: str = Field(..., description="Response message")
