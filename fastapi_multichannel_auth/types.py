"""Enumerations shared by the OTP engine, storage adapters, and orchestrator."""

from enum import StrEnum


class OTPType(StrEnum):
    """Purpose an OTP was issued for."""

    SIGNUP = "signup"
    SIGNIN = "signin"
    PASSWORD_RESET = "password_reset"
    PHONE_VERIFY = "phone_verify"
    EMAIL_VERIFY = "email_verify"


class DeliveryMethod(StrEnum):
    """Channel an OTP is delivered through."""

    EMAIL = "email"
    SMS = "sms"


class TokenType(StrEnum):
    """Discriminator carried in the `type` claim of every JWT."""

    ACCESS = "access"
    REFRESH = "refresh"


LOCAL_PROVIDER = "local"
"""Provider tag for accounts that authenticate with a local password."""
