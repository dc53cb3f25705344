"""SQLAlchemy implementations of the credential store and OTP ledger."""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fastapi_multichannel_auth.db.sqlalchemy.models import OTPCode, User, UserSession
from fastapi_multichannel_auth.exceptions import (
    ConflictError,
    NotFoundError,
    StorageError,
    UserNotFound,
)
from fastapi_multichannel_auth.logging import get_logger
from fastapi_multichannel_auth.types import LOCAL_PROVIDER, DeliveryMethod, OTPType

logger = get_logger(__name__)

_USER_FIELDS = frozenset(
    {
        "email",
        "phone",
        "username",
        "password_hash",
        "provider",
        "provider_id",
        "is_verified",
        "is_profile_complete",
    }
)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into `StorageError`, leaving domain errors alone."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("storage_failure", operation=operation, error=type(e).__name__)
        raise StorageError("Storage backend failure") from e


class _SessionBound:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _commit_or_conflict(self, message: str) -> None:
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(message) from e


class SQLAlchemyCredentialStore(_SessionBound):
    """
    Users and sessions stored through an AsyncSession.

    Example:
        ```python
        async def get_store(
            session: AsyncSession = Depends(get_async_session),
        ) -> SQLAlchemyCredentialStore:
            return SQLAlchemyCredentialStore(session)
        ```
    """

    async def _get_user(self, *criteria: object) -> User:
        with _storage_errors("get_user"):
            result = await self.session.execute(select(User).where(*criteria))
            user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFound("User not found")
        return user

    async def _exists(self, *criteria: object) -> bool:
        with _storage_errors("exists"):
            result = await self.session.execute(
                select(func.count()).select_from(User).where(*criteria)
            )
            return result.scalar_one() > 0

    async def create_user(
        self,
        *,
        username: str,
        email: str | None = None,
        phone: str | None = None,
        password_hash: str | None = None,
        provider: str = LOCAL_PROVIDER,
        provider_id: str | None = None,
        is_verified: bool = False,
    ) -> User:
        """
        Insert a new user.

        Raises:
            ConflictError: If email, phone, or username is already taken,
                including when a concurrent signup won the race
        """
        user = User(
            username=username,
            email=email,
            phone=phone,
            password_hash=password_hash,
            provider=provider,
            provider_id=provider_id,
            is_verified=is_verified,
            is_profile_complete=False,
        )
        with _storage_errors("create_user"):
            self.session.add(user)
            await self._commit_or_conflict(
                "Email, phone number, or username is already registered"
            )
            await self.session.refresh(user)
        return user

    async def get_user_by_id(self, user_id: int) -> User:
        return await self._get_user(User.id == user_id)

    async def get_user_by_email(self, email: str) -> User:
        return await self._get_user(User.email == email.strip().lower())

    async def get_user_by_phone(self, phone: str) -> User:
        return await self._get_user(User.phone == phone.strip())

    async def get_user_by_username(self, username: str) -> User:
        return await self._get_user(User.username == username.strip().lower())

    async def update_user(self, user: User, **fields: object) -> User:
        """
        Apply field changes to a user and persist them.

        Raises:
            ValueError: If a field is not an updatable user attribute
            ConflictError: If the change collides with another account
        """
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        for name, value in fields.items():
            setattr(user, name, value)
        with _storage_errors("update_user"):
            await self._commit_or_conflict("Update conflicts with an existing account")
            await self.session.refresh(user)
        return user

    async def mark_verified(self, user: User) -> User:
        return await self.update_user(user, is_verified=True)

    async def is_email_taken(self, email: str) -> bool:
        return await self._exists(User.email == email.strip().lower())

    async def is_phone_taken(self, phone: str) -> bool:
        return await self._exists(User.phone == phone.strip())

    async def is_username_taken(self, username: str) -> bool:
        return await self._exists(User.username == username.strip().lower())

    async def create_session(
        self,
        *,
        user_id: int,
        token: str,
        refresh_token: str,
        expires_at: datetime,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> UserSession:
        session_row = UserSession(
            user_id=user_id,
            token=token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            device_info=device_info,
            ip_address=ip_address,
        )
        with _storage_errors("create_session"):
            self.session.add(session_row)
            await self._commit_or_conflict("Session token collision")
            await self.session.refresh(session_row)
        return session_row

    async def _get_session(self, *criteria: object) -> UserSession:
        with _storage_errors("get_session"):
            result = await self.session.execute(select(UserSession).where(*criteria))
            session_row = result.scalar_one_or_none()
        if session_row is None:
            raise NotFoundError("Session not found")
        return session_row

    async def get_session_by_token(self, token: str) -> UserSession:
        return await self._get_session(UserSession.token == token)

    async def get_session_by_refresh_token(self, refresh_token: str) -> UserSession:
        return await self._get_session(UserSession.refresh_token == refresh_token)

    async def _delete_sessions(self, operation: str, *criteria: object) -> int:
        with _storage_errors(operation):
            result = await self.session.execute(delete(UserSession).where(*criteria))
            await self.session.commit()
        return result.rowcount or 0

    async def delete_session(self, session_id: int) -> None:
        await self._delete_sessions("delete_session", UserSession.id == session_id)

    async def delete_session_by_token(self, token: str) -> None:
        await self._delete_sessions("delete_session_by_token", UserSession.token == token)

    async def delete_all_sessions_for_user(self, user_id: int) -> int:
        """
        Remove every session owned by a user.

        Returns:
            Number of sessions removed
        """
        return await self._delete_sessions(
            "delete_all_sessions_for_user", UserSession.user_id == user_id
        )


class SQLAlchemyOTPLedger(_SessionBound):
    """Issued OTP codes stored through an AsyncSession."""

    async def create(
        self,
        *,
        recipient: str,
        otp_type: OTPType,
        method: DeliveryMethod,
        code: str,
        expires_at: datetime,
        user_id: int | None = None,
    ) -> OTPCode:
        otp = OTPCode(
            recipient=recipient,
            otp_type=str(otp_type),
            method=str(method),
            code=code,
            expires_at=expires_at,
            user_id=user_id,
            attempts=0,
            is_verified=False,
            is_invalidated=False,
            created_at=datetime.now(UTC),
        )
        with _storage_errors("create_otp"):
            self.session.add(otp)
            await self.session.commit()
            await self.session.refresh(otp)
        return otp

    async def get_latest_active(self, recipient: str, otp_type: OTPType) -> OTPCode:
        """
        Fetch the newest OTP that is neither verified nor invalidated.

        Raises:
            NotFoundError: If there is none
        """
        statement = (
            select(OTPCode)
            .where(
                OTPCode.recipient == recipient,
                OTPCode.otp_type == str(otp_type),
                OTPCode.is_verified.is_(False),
                OTPCode.is_invalidated.is_(False),
            )
            .order_by(OTPCode.created_at.desc(), OTPCode.id.desc())
            .limit(1)
        )
        with _storage_errors("get_latest_active_otp"):
            result = await self.session.execute(statement)
            otp = result.scalar_one_or_none()
        if otp is None:
            raise NotFoundError("No active OTP found")
        return otp

    async def reserve_attempt(self, otp: OTPCode, max_attempts: int) -> int | None:
        """
        Atomically spend one verification attempt on a still-active OTP.

        The counter only moves while it is below `max_attempts` and the code
        is neither verified nor invalidated, so concurrent guesses can never
        exceed the budget.

        Returns:
            The new attempt count, or None if no attempt could be reserved
        """
        with _storage_errors("reserve_otp_attempt"):
            result = await self.session.execute(
                update(OTPCode)
                .where(
                    OTPCode.id == otp.id,
                    OTPCode.attempts < max_attempts,
                    OTPCode.is_verified.is_(False),
                    OTPCode.is_invalidated.is_(False),
                )
                .values(attempts=OTPCode.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            await self.session.refresh(otp)
        if result.rowcount != 1:
            return None
        return otp.attempts

    async def mark_verified(self, otp: OTPCode) -> bool:
        """
        Flag an OTP as verified if it is still active.

        Returns:
            False if another request already verified or superseded the code
        """
        with _storage_errors("mark_otp_verified"):
            result = await self.session.execute(
                update(OTPCode)
                .where(
                    OTPCode.id == otp.id,
                    OTPCode.is_verified.is_(False),
                    OTPCode.is_invalidated.is_(False),
                )
                .values(is_verified=True, verified_at=datetime.now(UTC))
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            await self.session.refresh(otp)
        return result.rowcount == 1

    async def invalidate_all_active(self, recipient: str, otp_type: OTPType) -> int:
        """
        Supersede every unverified OTP of a type for a recipient.

        Returns:
            Number of records invalidated
        """
        with _storage_errors("invalidate_otps"):
            result = await self.session.execute(
                update(OTPCode)
                .where(
                    OTPCode.recipient == recipient,
                    OTPCode.otp_type == str(otp_type),
                    OTPCode.is_verified.is_(False),
                    OTPCode.is_invalidated.is_(False),
                )
                .values(is_invalidated=True)
            )
            await self.session.commit()
        return result.rowcount or 0

    async def count_recently_issued(self, recipient: str, window: timedelta) -> int:
        since = datetime.now(UTC) - window
        with _storage_errors("count_recent_otps"):
            result = await self.session.execute(
                select(func.count())
                .select_from(OTPCode)
                .where(OTPCode.recipient == recipient, OTPCode.created_at > since)
            )
            return result.scalar_one()

    async def delete_expired(self, now: datetime, verified_before: datetime) -> int:
        """
        Garbage-collect lapsed codes and verified codes past retention.

        Returns:
            Number of records removed
        """
        with _storage_errors("delete_expired_otps"):
            result = await self.session.execute(
                delete(OTPCode).where(
                    or_(
                        OTPCode.expires_at < now,
                        and_(
                            OTPCode.is_verified.is_(True),
                            OTPCode.verified_at < verified_before,
                        ),
                    )
                )
            )
            await self.session.commit()
        return result.rowcount or 0
