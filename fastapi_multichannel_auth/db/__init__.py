"""Storage contracts and SQLAlchemy implementations for fastapi-multichannel-auth."""

from fastapi_multichannel_auth.db.protocols import (
    CredentialStore,
    OTPLedger,
    OTPRecord,
    SessionRecord,
    UserRecord,
)
from fastapi_multichannel_auth.db.sqlalchemy.adapter import (
    SQLAlchemyCredentialStore,
    SQLAlchemyOTPLedger,
)
from fastapi_multichannel_auth.db.sqlalchemy.models import (
    Base,
    OTPCode,
    User,
    UserSession,
)
from fastapi_multichannel_auth.db.sqlalchemy.types import UTCDateTime

__all__ = [
    "Base",
    "CredentialStore",
    "OTPCode",
    "OTPLedger",
    "OTPRecord",
    "SQLAlchemyCredentialStore",
    "SQLAlchemyOTPLedger",
    "SessionRecord",
    "UTCDateTime",
    "User",
    "UserRecord",
    "UserSession",
]
