"""Protocols defining the storage contracts consumed by the authentication core."""

from datetime import datetime, timedelta
from typing import Protocol, TypeVar, runtime_checkable

from fastapi_multichannel_auth.types import DeliveryMethod, OTPType


@runtime_checkable
class UserRecord(Protocol):
    """Attributes the orchestrator reads and writes on a user."""

    id: int
    email: str | None
    phone: str | None
    username: str
    password_hash: str | None
    provider: str
    provider_id: str | None
    is_verified: bool
    is_profile_complete: bool
    created_at: datetime
    updated_at: datetime


@runtime_checkable
class SessionRecord(Protocol):
    """Attributes of a persisted session."""

    id: int
    user_id: int
    token: str
    refresh_token: str
    device_info: str | None
    ip_address: str | None
    expires_at: datetime
    created_at: datetime


@runtime_checkable
class OTPRecord(Protocol):
    """Attributes of a persisted OTP."""

    id: int
    user_id: int | None
    code: str
    otp_type: str
    method: str
    recipient: str
    attempts: int
    is_verified: bool
    is_invalidated: bool
    expires_at: datetime
    verified_at: datetime | None
    created_at: datetime


UserT = TypeVar("UserT", bound=UserRecord)
SessionT = TypeVar("SessionT", bound=SessionRecord)
OTPT = TypeVar("OTPT", bound=OTPRecord)


class CredentialStore(Protocol[UserT, SessionT]):
    """
    Durable users and sessions.

    Lookups raise `NotFoundError` instead of returning None. Writes that
    violate a uniqueness constraint raise `ConflictError`; any other backend
    failure raises `StorageError`.
    """

    async def create_user(
        self,
        *,
        username: str,
        email: str | None = None,
        phone: str | None = None,
        password_hash: str | None = None,
        provider: str = "local",
        provider_id: str | None = None,
        is_verified: bool = False,
    ) -> UserT: ...

    async def get_user_by_id(self, user_id: int) -> UserT: ...

    async def get_user_by_email(self, email: str) -> UserT: ...

    async def get_user_by_phone(self, phone: str) -> UserT: ...

    async def get_user_by_username(self, username: str) -> UserT: ...

    async def update_user(self, user: UserT, **fields: object) -> UserT: ...

    async def mark_verified(self, user: UserT) -> UserT: ...

    async def is_email_taken(self, email: str) -> bool: ...

    async def is_phone_taken(self, phone: str) -> bool: ...

    async def is_username_taken(self, username: str) -> bool: ...

    async def create_session(
        self,
        *,
        user_id: int,
        token: str,
        refresh_token: str,
        expires_at: datetime,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> SessionT: ...

    async def get_session_by_token(self, token: str) -> SessionT: ...

    async def get_session_by_refresh_token(self, refresh_token: str) -> SessionT: ...

    async def delete_session(self, session_id: int) -> None: ...

    async def delete_session_by_token(self, token: str) -> None: ...

    async def delete_all_sessions_for_user(self, user_id: int) -> int: ...


class OTPLedger(Protocol[OTPT]):
    """
    Durable record of issued OTP codes, keyed by recipient and type.

    `get_latest_active` returns the newest record that is neither verified
    nor invalidated; expiry is judged by the caller. `reserve_attempt` and
    `mark_verified` are conditional on the record still being active, so
    concurrent verifications spend the attempt budget and credit a code once.
    """

    async def create(
        self,
        *,
        recipient: str,
        otp_type: OTPType,
        method: DeliveryMethod,
        code: str,
        expires_at: datetime,
        user_id: int | None = None,
    ) -> OTPT: ...

    async def get_latest_active(self, recipient: str, otp_type: OTPType) -> OTPT: ...

    async def reserve_attempt(self, otp: OTPT, max_attempts: int) -> int | None: ...

    async def mark_verified(self, otp: OTPT) -> bool: ...

    async def invalidate_all_active(self, recipient: str, otp_type: OTPType) -> int: ...

    async def count_recently_issued(self, recipient: str, window: timedelta) -> int: ...

    async def delete_expired(self, now: datetime, verified_before: datetime) -> int: ...
