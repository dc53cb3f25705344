"""OTP issuance, delivery, and verification."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from fastapi_multichannel_auth.config import AuthConfig
from fastapi_multichannel_auth.db.protocols import OTPLedger, OTPRecord
from fastapi_multichannel_auth.delivery import DeliveryChannel, DeliveryDispatcher, OTPMessage
from fastapi_multichannel_auth.exceptions import (
    InvalidOTP,
    NotFoundError,
    OTPExpired,
    RateLimitExceeded,
    TooManyAttempts,
)
from fastapi_multichannel_auth.logging import get_logger
from fastapi_multichannel_auth.security import codes_match, generate_otp
from fastapi_multichannel_auth.types import DeliveryMethod, OTPType

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedOTP:
    """
    Outcome of an issuance.

    `delivered` is True or False when the send finished in time, and None
    when delivery was dispatched without waiting.
    """

    otp_id: int
    recipient: str
    otp_type: OTPType
    method: DeliveryMethod
    expires_at: datetime
    delivered: bool | None


class OTPEngine:
    """
    Generates, rate-limits, delivers, and verifies one-time codes.

    Each OTP moves from issued to verified, or is abandoned once expired or
    out of attempts. The subject of a code is its recipient address; only the
    newest unverified code for a (recipient, type) pair is ever honoured.

    Args:
        config: Authentication configuration
        ledger: Durable OTP storage
        channels: Sender per delivery method
        dispatcher: Bounded pool used for sends
    """

    def __init__(
        self,
        config: AuthConfig,
        ledger: OTPLedger,
        channels: Mapping[DeliveryMethod, DeliveryChannel],
        dispatcher: DeliveryDispatcher,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.channels = dict(channels)
        self.dispatcher = dispatcher

    async def generate(
        self,
        recipient: str,
        otp_type: OTPType,
        method: DeliveryMethod,
        *,
        user_id: int | None = None,
    ) -> IssuedOTP:
        """
        Issue a new code and hand it to the delivery channel.

        Args:
            recipient: Normalized email address or E.164 phone number
            otp_type: Purpose of the code
            method: Delivery channel to use
            user_id: Owning user, when known

        Returns:
            Description of the issued code and its delivery outcome

        Raises:
            RateLimitExceeded: If the recipient already received the maximum
                number of codes within the window
        """
        recent = await self.ledger.count_recently_issued(
            recipient, self.config.otp_rate_limit_window
        )
        if recent >= self.config.otp_rate_limit_max:
            logger.info("otp_rate_limited", recipient=recipient, otp_type=str(otp_type))
            raise RateLimitExceeded(
                "Too many verification codes requested. Please try again later."
            )

        await self.ledger.invalidate_all_active(recipient, otp_type)

        code = generate_otp(self.config.otp_length, self.config.developer_mode)
        expires_at = datetime.now(UTC) + self.config.otp_expiry
        record = await self.ledger.create(
            recipient=recipient,
            otp_type=otp_type,
            method=method,
            code=code,
            expires_at=expires_at,
            user_id=user_id,
        )
        logger.info(
            "otp_issued",
            otp_id=record.id,
            recipient=recipient,
            otp_type=str(otp_type),
            method=str(method),
        )

        delivered = await self._dispatch(recipient, otp_type, method, code)
        return IssuedOTP(
            otp_id=record.id,
            recipient=recipient,
            otp_type=otp_type,
            method=method,
            expires_at=expires_at,
            delivered=delivered,
        )

    async def resend(
        self,
        recipient: str,
        otp_type: OTPType,
        method: DeliveryMethod,
        *,
        user_id: int | None = None,
    ) -> IssuedOTP:
        """Issue a fresh code through the same rate-limited path as `generate`."""
        return await self.generate(recipient, otp_type, method, user_id=user_id)

    async def verify(self, recipient: str, otp_type: OTPType, code: str) -> OTPRecord:
        """
        Check a code against the newest active OTP for a recipient and type.

        Expiry is checked before the attempt counter, so a lapsed code always
        reports OTPExpired however many guesses are made against it. Every
        check, including a successful one, spends an attempt reserved in the
        ledger before the code is compared.

        Args:
            recipient: Normalized email address or E.164 phone number
            otp_type: Purpose of the code
            code: Code supplied by the user

        Returns:
            The verified OTP record

        Raises:
            OTPExpired: If there is no active code or it has lapsed
            TooManyAttempts: If the attempt budget is used up
            InvalidOTP: If the code does not match
        """
        try:
            otp = await self.ledger.get_latest_active(recipient, otp_type)
        except NotFoundError as e:
            raise OTPExpired("No active verification code. Please request a new one.") from e

        if datetime.now(UTC) >= otp.expires_at:
            raise OTPExpired("Verification code has expired")

        max_attempts = self.config.max_otp_attempts
        attempts = await self.ledger.reserve_attempt(otp, max_attempts)
        if attempts is None:
            if otp.is_verified or otp.is_invalidated:
                raise OTPExpired("No active verification code. Please request a new one.")
            raise TooManyAttempts("Too many attempts. Please request a new code.")

        if not codes_match(otp.code, code.strip()):
            logger.info(
                "otp_mismatch",
                otp_id=otp.id,
                otp_type=str(otp_type),
                attempts=attempts,
            )
            if attempts >= max_attempts:
                raise TooManyAttempts("Too many attempts. Please request a new code.")
            raise InvalidOTP("Invalid verification code")

        if not await self.ledger.mark_verified(otp):
            raise OTPExpired("No active verification code. Please request a new one.")
        logger.info("otp_verified", otp_id=otp.id, otp_type=str(otp_type))
        return otp

    async def cleanup_expired(self) -> int:
        """
        Delete lapsed codes and verified codes older than the retention window.

        Returns:
            Number of records removed
        """
        now = datetime.now(UTC)
        removed = await self.ledger.delete_expired(
            now, now - self.config.otp_verified_retention
        )
        if removed:
            logger.info("otp_cleanup", removed=removed)
        return removed

    async def _dispatch(
        self, recipient: str, otp_type: OTPType, method: DeliveryMethod, code: str
    ) -> bool | None:
        channel = self.channels.get(method)
        if channel is None:
            logger.warning("otp_channel_missing", method=str(method), recipient=recipient)
            return False

        message = OTPMessage.build(
            code,
            otp_type,
            expires_in_minutes=int(self.config.otp_expiry.total_seconds() // 60),
        )
        return await self.dispatcher.deliver(
            channel, recipient, message, wait=self.config.delivery_wait
        )
