"""Exception hierarchy for authentication and OTP verification failures."""

from typing import Any


class AuthError(Exception):
    """
    Base class for all errors raised by the authentication core.

    Each subclass carries the HTTP status and a stable error code that the
    transport layer uses when rendering the failure.
    """

    status_code: int = 400
    error_code: str = "auth_error"

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(AuthError):
    """Malformed or missing input (400)."""

    status_code = 400
    error_code = "validation_error"


class ConflictError(AuthError):
    """Email, phone, or username already registered (409)."""

    status_code = 409
    error_code = "conflict"


class NotFoundError(AuthError):
    """Storage lookup matched nothing (404)."""

    status_code = 404
    error_code = "not_found"


class UserNotFound(NotFoundError):
    """No account matches the identifier (404)."""

    error_code = "user_not_found"


class InvalidCredentials(AuthError):
    """Unknown identifier or wrong password (401)."""

    status_code = 401
    error_code = "invalid_credentials"


class InvalidOTP(AuthError):
    """OTP code did not match (401)."""

    status_code = 401
    error_code = "invalid_otp"


class OTPExpired(AuthError):
    """No active OTP, or the active OTP has lapsed (401)."""

    status_code = 401
    error_code = "otp_expired"


class TooManyAttempts(AuthError):
    """OTP verification attempts exhausted (429)."""

    status_code = 429
    error_code = "too_many_attempts"


class InvalidToken(AuthError):
    """Token is forged, expired, of the wrong type, or already redeemed (401)."""

    status_code = 401
    error_code = "invalid_token"


class InvalidOrExpiredSession(AuthError):
    """Pending two-factor handle is unknown or has expired (401)."""

    status_code = 401
    error_code = "invalid_session"


class RateLimitExceeded(AuthError):
    """Too many OTPs issued to one recipient within the window (429)."""

    status_code = 429
    error_code = "rate_limited"


class InvalidFederatedToken(AuthError):
    """Identity provider rejected the ID token (401)."""

    status_code = 401
    error_code = "invalid_federated_token"


class StorageError(AuthError):
    """Backing store unreachable or failed (500)."""

    status_code = 500
    error_code = "server_error"


class ConfigurationError(AuthError):
    """Configuration is missing or insecure (500)."""

    status_code = 500
    error_code = "configuration_error"


__all__ = [
    "AuthError",
    "ConfigurationError",
    "ConflictError",
    "InvalidCredentials",
    "InvalidFederatedToken",
    "InvalidOTP",
    "InvalidOrExpiredSession",
    "InvalidToken",
    "NotFoundError",
    "OTPExpired",
    "RateLimitExceeded",
    "StorageError",
    "TooManyAttempts",
    "UserNotFound",
    "ValidationError",
]
