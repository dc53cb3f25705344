"""Best-effort OTP delivery through email and SMS channels."""

import asyncio
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from fastapi_multichannel_auth.logging import get_logger
from fastapi_multichannel_auth.types import OTPType

logger = get_logger(__name__)

EMAIL_SUBJECTS: dict[OTPType, str] = {
    OTPType.SIGNUP: "Verify Your Account",
    OTPType.SIGNIN: "Two-Factor Authentication Code",
    OTPType.PASSWORD_RESET: "Password Reset Code",
    OTPType.PHONE_VERIFY: "Verify Your Phone Number",
    OTPType.EMAIL_VERIFY: "Verify Your Email Address",
}


@dataclass(frozen=True)
class OTPMessage:
    """Payload handed to a delivery channel."""

    subject: str
    body: str
    code: str
    otp_type: OTPType
    expires_in_minutes: int

    @classmethod
    def build(cls, code: str, otp_type: OTPType, expires_in_minutes: int) -> "OTPMessage":
        return cls(
            subject=EMAIL_SUBJECTS.get(otp_type, "Verification Code"),
            body=(
                f"Your verification code is: {code}. "
                f"It will expire in {expires_in_minutes} minutes."
            ),
            code=code,
            otp_type=otp_type,
            expires_in_minutes=expires_in_minutes,
        )


@runtime_checkable
class DeliveryChannel(Protocol):
    """
    Sender for one delivery method (email or SMS).

    Implementations return False, or raise, when the message could not be
    handed off. Either outcome is logged by the dispatcher and never reaches
    the caller of signup, signin, or reset.

    Example:
        ```python
        class SendGridChannel:
            async def send(self, recipient: str, message: OTPMessage) -> bool:
                response = await client.post(..., json={"to": recipient, ...})
                return response.status_code < 400
        ```
    """

    async def send(self, recipient: str, message: OTPMessage) -> bool:
        """Send a message, returning True when the provider accepted it."""
        ...


class LoggingChannel:
    """Channel that logs the message instead of sending it. For local development."""

    def __init__(self, name: str = "log") -> None:
        self.name = name

    async def send(self, recipient: str, message: OTPMessage) -> bool:
        logger.info(
            "otp_delivery_logged",
            channel=self.name,
            recipient=recipient,
            subject=message.subject,
        )
        return True


class DeliveryDispatcher:
    """
    Bounded pool for fire-and-forget delivery.

    At most `max_workers` sends run at once; each is cut off after
    `send_timeout` seconds. Submitted tasks are tracked so `aclose` can drain
    them on shutdown.

    Args:
        max_workers: Maximum concurrent sends
        send_timeout: Per-send timeout in seconds
    """

    def __init__(self, max_workers: int = 8, send_timeout: float = 10.0) -> None:
        self.send_timeout = send_timeout
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: set[asyncio.Task[bool]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of sends not yet finished."""
        return len(self._tasks)

    async def _run(self, channel: DeliveryChannel, recipient: str, message: OTPMessage) -> bool:
        async with self._semaphore:
            try:
                async with asyncio.timeout(self.send_timeout):
                    delivered = bool(await channel.send(recipient, message))
            except TimeoutError:
                logger.warning(
                    "otp_delivery_timeout",
                    recipient=recipient,
                    otp_type=str(message.otp_type),
                    timeout=self.send_timeout,
                )
                return False
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "otp_delivery_failed",
                    recipient=recipient,
                    otp_type=str(message.otp_type),
                    error=str(e),
                )
                return False

        if not delivered:
            logger.warning(
                "otp_delivery_rejected",
                recipient=recipient,
                otp_type=str(message.otp_type),
            )
        return delivered

    def submit(
        self, channel: DeliveryChannel, recipient: str, message: OTPMessage
    ) -> asyncio.Task[bool]:
        """
        Schedule a send without waiting for it.

        Raises:
            RuntimeError: If the dispatcher has been closed
        """
        if self._closed:
            raise RuntimeError("DeliveryDispatcher is closed")
        task = asyncio.create_task(self._run(channel, recipient, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def deliver(
        self,
        channel: DeliveryChannel,
        recipient: str,
        message: OTPMessage,
        *,
        wait: float | None,
    ) -> bool | None:
        """
        Submit a send and optionally wait for its outcome.

        Waiting goes through `asyncio.shield`, so a caller that is cancelled
        or runs out of time does not cancel the send itself.

        Args:
            channel: Channel to send through
            recipient: Email address or phone number
            message: Message to deliver
            wait: Seconds to wait for the outcome, or None to not wait

        Returns:
            True or False when the outcome is known within `wait`, None when
            not waiting. A send still running after `wait` counts as False.
        """
        task = self.submit(channel, recipient, message)
        if wait is None:
            return None
        try:
            async with asyncio.timeout(wait):
                return await asyncio.shield(task)
        except TimeoutError:
            logger.warning("otp_delivery_pending", recipient=recipient, waited=wait)
            return False

    async def aclose(self, grace: float = 5.0) -> None:
        """
        Stop accepting work, wait up to `grace` seconds, then cancel leftovers.
        """
        self._closed = True
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=grace)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("otp_delivery_cancelled_on_shutdown", count=len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
