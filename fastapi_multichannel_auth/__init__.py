"""FastAPI Multichannel Auth - Email/SMS OTP, password, 2FA and Google sign-in for FastAPI."""

from fastapi_multichannel_auth.cache import EphemeralCache, MemoryCache, RedisCache
from fastapi_multichannel_auth.config import AuthConfig
from fastapi_multichannel_auth.db import (
    Base,
    CredentialStore,
    OTPLedger,
    SQLAlchemyCredentialStore,
    SQLAlchemyOTPLedger,
)
from fastapi_multichannel_auth.delivery import (
    DeliveryChannel,
    DeliveryDispatcher,
    LoggingChannel,
    OTPMessage,
)
from fastapi_multichannel_auth.dependencies import get_current_user_dependency
from fastapi_multichannel_auth.error_handling import register_exception_handlers
from fastapi_multichannel_auth.exceptions import AuthError
from fastapi_multichannel_auth.federated import GoogleIdTokenVerifier
from fastapi_multichannel_auth.otp import OTPEngine
from fastapi_multichannel_auth.router import get_auth_router
from fastapi_multichannel_auth.service import (
    AuthResult,
    AuthService,
    SigninResult,
    SignupResult,
)
from fastapi_multichannel_auth.tokens import TokenClaims, TokenIssuer
from fastapi_multichannel_auth.types import DeliveryMethod, OTPType, TokenType

__version__ = "0.1.0"

__all__ = [
    "AuthConfig",
    "AuthError",
    "AuthResult",
    "AuthService",
    "Base",
    "CredentialStore",
    "DeliveryChannel",
    "DeliveryDispatcher",
    "DeliveryMethod",
    "EphemeralCache",
    "GoogleIdTokenVerifier",
    "LoggingChannel",
    "MemoryCache",
    "OTPEngine",
    "OTPLedger",
    "OTPMessage",
    "OTPType",
    "RedisCache",
    "SQLAlchemyCredentialStore",
    "SQLAlchemyOTPLedger",
    "SigninResult",
    "SignupResult",
    "TokenClaims",
    "TokenIssuer",
    "TokenType",
    "get_auth_router",
    "get_current_user_dependency",
    "register_exception_handlers",
]
