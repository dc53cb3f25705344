"""API router for multichannel authentication endpoints."""

from collections.abc import Callable

from fastapi import APIRouter, Depends, Request, status  # type: ignore[import-untyped]

from fastapi_multichannel_auth.db.protocols import UserRecord
from fastapi_multichannel_auth.dependencies import (
    get_bearer_token,
    get_current_user_dependency,
)
from fastapi_multichannel_auth.schemas import (
    AuthResponse,
    GoogleAuthRequest,
    MessageResponse,
    OTPVerify,
    PasswordResetConfirm,
    PasswordResetRequest,
    PasswordResetVerify,
    RefreshRequest,
    ResendOTPRequest,
    ResetTokenResponse,
    SigninRequest,
    SigninResponse,
    SigninVerify,
    SignupRequest,
    SignupResponse,
    UserRead,
)
from fastapi_multichannel_auth.service import AuthResult, AuthService


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        user=UserRead.model_validate(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        token_type=result.token_type,
    )


def _client_details(request: Request) -> dict[str, str | None]:
    return {
        "device_info": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
    }


def get_auth_router(get_auth_service: Callable[..., AuthService]) -> APIRouter:
    """
    Create an APIRouter with the authentication endpoints.

    Errors are raised as `AuthError` subclasses; install
    `register_exception_handlers` on the application to render them.

    Args:
        get_auth_service: Dependency that returns an AuthService instance

    Returns:
        Configured APIRouter instance

    Example:
        ```python
        from fastapi import FastAPI

        app = FastAPI()
        register_exception_handlers(app)

        auth_router = get_auth_router(get_auth_service)
        app.include_router(auth_router, prefix="/auth", tags=["auth"])
        ```
    """
    router = APIRouter()
    current_user = get_current_user_dependency(get_auth_service)

    @router.post(
        "/signup",
        response_model=SignupResponse,
        status_code=status.HTTP_201_CREATED,
        summary="Create account",
        description="Register with email and/or phone and send a verification code",
    )
    async def signup(
        body: SignupRequest,
        service: AuthService = Depends(get_auth_service),
    ) -> SignupResponse:
        result = await service.signup(
            email=body.email,
            phone=body.phone,
            username=body.username,
            password=body.password,
            confirm_password=body.confirm_password,
        )
        return SignupResponse(
            user=UserRead.model_validate(result.user),
            message=result.message,
            requires_verification=result.requires_verification,
            otp_sent=result.otp_sent,
            requires_resend=result.requires_resend,
        )

    @router.post(
        "/signup/verify",
        response_model=AuthResponse,
        summary="Verify account",
        description="Confirm the signup code and receive tokens",
    )
    async def verify_signup(
        body: OTPVerify,
        service: AuthService = Depends(get_auth_service),
    ) -> AuthResponse:
        return _auth_response(await service.verify_signup_otp(body.identifier, body.code))

    @router.post(
        "/signin",
        response_model=SigninResponse,
        summary="Sign in",
        description="Sign in with email, phone, or username and a password",
    )
    async def signin(
        body: SigninRequest,
        request: Request,
        service: AuthService = Depends(get_auth_service),
    ) -> SigninResponse:
        result = await service.signin(
            body.identifier, body.password, **_client_details(request)
        )
        return SigninResponse(
            requires_otp=result.requires_otp,
            message=result.message,
            pending_token=result.pending_token,
            otp_type=result.otp_type,
            auth=_auth_response(result.auth) if result.auth else None,
        )

    @router.post(
        "/signin/verify",
        response_model=AuthResponse,
        summary="Complete two-factor signin",
    )
    async def verify_signin(
        body: SigninVerify,
        request: Request,
        service: AuthService = Depends(get_auth_service),
    ) -> AuthResponse:
        result = await service.verify_signin_otp(
            body.pending_token, body.code, **_client_details(request)
        )
        return _auth_response(result)

    @router.post(
        "/otp/resend",
        response_model=MessageResponse,
        summary="Resend OTP code",
    )
    async def resend_otp(
        body: ResendOTPRequest,
        service: AuthService = Depends(get_auth_service),
    ) -> MessageResponse:
        await service.resend_otp(body.otp_type, email=body.email, phone=body.phone)
        return MessageResponse(message="Verification code sent")

    @router.post(
        "/google",
        response_model=AuthResponse,
        summary="Sign in with Google",
    )
    async def google_auth(
        body: GoogleAuthRequest,
        request: Request,
        service: AuthService = Depends(get_auth_service),
    ) -> AuthResponse:
        result = await service.google_auth(body.id_token, **_client_details(request))
        return _auth_response(result)

    @router.post(
        "/refresh",
        response_model=AuthResponse,
        summary="Refresh tokens",
        description="Exchange a refresh token for a new token pair; the old pair stops working",
    )
    async def refresh_token(
        body: RefreshRequest,
        service: AuthService = Depends(get_auth_service),
    ) -> AuthResponse:
        return _auth_response(await service.refresh_token(body.refresh_token))

    @router.post(
        "/logout",
        response_model=MessageResponse,
        summary="Logout user",
        description="Revoke the session behind the bearer token",
    )
    async def logout(
        token: str = Depends(get_bearer_token),
        service: AuthService = Depends(get_auth_service),
    ) -> MessageResponse:
        await service.logout(token)
        return MessageResponse(message="Successfully logged out")

    @router.post(
        "/logout-all",
        response_model=MessageResponse,
        summary="Logout everywhere",
        description="Revoke every session of the current user",
    )
    async def logout_all(
        user: UserRecord = Depends(current_user),
        service: AuthService = Depends(get_auth_service),
    ) -> MessageResponse:
        await service.logout_all_devices(user.id)
        return MessageResponse(message="Logged out from all devices")

    @router.post(
        "/password-reset",
        response_model=MessageResponse,
        summary="Request password reset",
    )
    async def initiate_password_reset(
        body: PasswordResetRequest,
        service: AuthService = Depends(get_auth_service),
    ) -> MessageResponse:
        await service.initiate_password_reset(body.email)
        # Same answer whether or not the address is registered
        return MessageResponse(
            message="If the email exists, a password reset code has been sent"
        )

    @router.post(
        "/password-reset/verify",
        response_model=ResetTokenResponse,
        summary="Verify password reset code",
    )
    async def verify_password_reset(
        body: PasswordResetVerify,
        service: AuthService = Depends(get_auth_service),
    ) -> ResetTokenResponse:
        token = await service.verify_password_reset_otp(body.email, body.code)
        return ResetTokenResponse(reset_token=token)

    @router.post(
        "/password-reset/confirm",
        response_model=MessageResponse,
        summary="Set a new password",
    )
    async def reset_password(
        body: PasswordResetConfirm,
        service: AuthService = Depends(get_auth_service),
    ) -> MessageResponse:
        await service.reset_password(body.reset_token, body.new_password)
        return MessageResponse(message="Password has been reset. Please sign in again.")

    @router.get(
        "/me",
        response_model=UserRead,
        summary="Current user",
    )
    async def me(user: UserRecord = Depends(current_user)) -> UserRead:
        return UserRead.model_validate(user)

    return router
