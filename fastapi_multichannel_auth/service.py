"""Signup, signin, two-factor, password-reset, and session protocols."""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from fastapi_multichannel_auth.cache import (
    FAILED_ATTEMPTS_NAMESPACE,
    PASSWORD_RESET_NAMESPACE,
    PENDING_AUTH_NAMESPACE,
    EphemeralCache,
    cache_key,
)
from fastapi_multichannel_auth.config import AuthConfig
from fastapi_multichannel_auth.db.protocols import CredentialStore, UserRecord
from fastapi_multichannel_auth.exceptions import (
    ConflictError,
    InvalidCredentials,
    InvalidOrExpiredSession,
    InvalidToken,
    NotFoundError,
    RateLimitExceeded,
    UserNotFound,
    ValidationError,
)
from fastapi_multichannel_auth.federated import FederatedVerifier
from fastapi_multichannel_auth.identifiers import (
    USERNAME_PATTERN,
    ContactPoints,
    IdentifierKind,
    classify_identifier,
    generate_username_from_email,
    normalize_email,
    normalize_phone,
    normalize_username,
)
from fastapi_multichannel_auth.logging import get_logger
from fastapi_multichannel_auth.otp import OTPEngine
from fastapi_multichannel_auth.security import (
    generate_secure_token,
    hash_password,
    verify_password,
)
from fastapi_multichannel_auth.tokens import TokenClaims, TokenIssuer
from fastapi_multichannel_auth.types import (
    LOCAL_PROVIDER,
    DeliveryMethod,
    OTPType,
    TokenType,
)

logger = get_logger(__name__)

RESEND_TYPES: dict[str, OTPType] = {
    "signup": OTPType.SIGNUP,
    "signin": OTPType.SIGNIN,
    "2fa": OTPType.SIGNIN,
    "password_reset": OTPType.PASSWORD_RESET,
    "phone_verify": OTPType.PHONE_VERIFY,
    "email_verify": OTPType.EMAIL_VERIFY,
}

_USERNAME_ATTEMPTS = 3


@dataclass
class AuthResult:
    """Token bundle returned by every successful authentication flow."""

    user: UserRecord
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class SignupResult:
    user: UserRecord
    message: str
    otp_sent: bool
    requires_verification: bool = True

    @property
    def requires_resend(self) -> bool:
        return not self.otp_sent


@dataclass
class SigninResult:
    """
    Outcome of a password check.

    Exactly one of three shapes: verification required (`otp_type ==
    "verification"`), second factor required (`otp_type == "2fa"` with a
    `pending_token`), or authenticated (`auth` set).
    """

    requires_otp: bool
    message: str
    pending_token: str | None = None
    otp_type: str | None = None
    auth: AuthResult | None = None


class AuthService:
    """
    Orchestrates the authentication protocols over the store, cache, OTP
    engine, and token issuer.

    The service holds no mutable state of its own; construct one per request
    around request-scoped collaborators.

    Args:
        config: Authentication configuration, including the 2FA switch
        store: Durable users and sessions
        cache: Ephemeral cache for pending 2FA handles, reset grants, and
            failed-login counters
        otp_engine: OTP issuance and verification
        token_issuer: JWT minting; built from `config` when omitted
        federated_verifier: Identity provider used by `google_auth`

    Example:
        ```python
        service = AuthService(config, store, cache, otp_engine)
        result = await service.signin("alice", "Secret123!")
        if result.auth:
            print(result.auth.access_token)
        ```
    """

    def __init__(
        self,
        config: AuthConfig,
        store: CredentialStore,
        cache: EphemeralCache,
        otp_engine: OTPEngine,
        *,
        token_issuer: TokenIssuer | None = None,
        federated_verifier: FederatedVerifier | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.cache = cache
        self.otp_engine = otp_engine
        self.token_issuer = token_issuer or TokenIssuer(config)
        self.federated_verifier = federated_verifier

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    async def signup(
        self,
        *,
        username: str,
        password: str,
        confirm_password: str,
        email: str | None = None,
        phone: str | None = None,
    ) -> SignupResult:
        """
        Create an unverified account and send its verification code.

        The code goes to the email address first and falls back to the phone
        number when email is absent or its delivery failed. Delivery problems
        never fail the signup; they are reported through `otp_sent`.

        Raises:
            ValidationError: On mismatched passwords, missing contact points,
                or malformed input
            ConflictError: If the email, phone, or username is taken
        """
        if password != confirm_password:
            raise ValidationError("Passwords do not match")

        contacts = ContactPoints.from_raw(email, phone)
        username = normalize_username(username)
        if not USERNAME_PATTERN.match(username):
            raise ValidationError(
                "Username must be 3-30 characters of letters, digits, or underscores"
            )
        self._check_password_policy(password)

        if contacts.email and await self.store.is_email_taken(contacts.email):
            raise ConflictError("Email already exists")
        if contacts.phone and await self.store.is_phone_taken(contacts.phone):
            raise ConflictError("Phone number already registered")
        if await self.store.is_username_taken(username):
            raise ConflictError("Username already exists")

        password_hash = await hash_password(password, self.config.bcrypt_cost)
        user = await self.store.create_user(
            username=username,
            email=contacts.email,
            phone=contacts.phone,
            password_hash=password_hash,
            provider=LOCAL_PROVIDER,
            is_verified=False,
        )
        logger.info("user_signed_up", user_id=user.id)

        sent_to = await self._send_verification_otp(user)
        if sent_to is None:
            message = "Failed to send verification code. Please use resend OTP."
        else:
            message = f"Verification code sent to {sent_to}"

        return SignupResult(user=user, message=message, otp_sent=sent_to is not None)

    async def verify_signup_otp(self, identifier: str, code: str) -> AuthResult:
        """
        Confirm the signup code, mark the account verified, and sign it in.

        Raises:
            ValidationError: If the identifier is neither an email nor a phone
            InvalidOTP, OTPExpired, TooManyAttempts: From the OTP engine
            UserNotFound: If no account owns the identifier
        """
        kind, recipient = classify_identifier(identifier)
        if kind == IdentifierKind.USERNAME:
            raise ValidationError("Invalid email or phone format")

        if kind == IdentifierKind.EMAIL:
            user = await self.store.get_user_by_email(recipient)
        else:
            user = await self.store.get_user_by_phone(recipient)

        await self.otp_engine.verify(recipient, OTPType.SIGNUP, code)

        if not user.is_verified:
            user = await self.store.mark_verified(user)
            logger.info("user_verified", user_id=user.id)

        return await self.create_auth_session(user)

    # ------------------------------------------------------------------
    # Signin
    # ------------------------------------------------------------------

    async def signin(
        self,
        identifier: str,
        password: str,
        *,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> SigninResult:
        """
        Check a password and route to verification, 2FA, or a session.

        The identifier is tried as an email, then a phone number, then a
        username. The branches are evaluated in this order: unverified
        account, 2FA enabled, plain login.

        Raises:
            InvalidCredentials: If no password-bearing account matches or the
                password is wrong
        """
        kind, normalized = classify_identifier(identifier)
        try:
            if kind == IdentifierKind.EMAIL:
                user = await self.store.get_user_by_email(normalized)
            elif kind == IdentifierKind.PHONE:
                user = await self.store.get_user_by_phone(normalized)
            else:
                user = await self.store.get_user_by_username(normalized)
        except NotFoundError as e:
            logger.info("signin_failed", reason="unknown_identifier")
            raise InvalidCredentials("Invalid credentials") from e

        if user.password_hash is None:
            logger.info("signin_failed", reason="federated_only", user_id=user.id)
            raise InvalidCredentials("Invalid credentials")

        if not await verify_password(password, user.password_hash):
            failures = await self._record_failed_attempt(normalized)
            logger.info(
                "signin_failed", reason="bad_password", user_id=user.id, failures=failures
            )
            raise InvalidCredentials("Invalid credentials")

        await self._clear_failed_attempts(normalized)

        if not user.is_verified:
            await self._send_verification_otp(user)
            return SigninResult(
                requires_otp=True,
                message="Account not verified. Verification code sent.",
                otp_type="verification",
            )

        if self.config.enable_2fa:
            await self._send_signin_otp(user)
            pending_token = generate_secure_token()
            await self.cache.set(
                cache_key(PENDING_AUTH_NAMESPACE, pending_token),
                json.dumps(
                    {
                        "user_id": user.id,
                        "expires": int(
                            (datetime.now(UTC) + self.config.pending_auth_ttl).timestamp()
                        ),
                    }
                ),
                self.config.pending_auth_ttl,
            )
            return SigninResult(
                requires_otp=True,
                message="2FA code sent to your registered email/phone",
                pending_token=pending_token,
                otp_type="2fa",
            )

        auth = await self.create_auth_session(
            user, device_info=device_info, ip_address=ip_address
        )
        return SigninResult(requires_otp=False, message="Login successful", auth=auth)

    async def verify_signin_otp(
        self,
        pending_token: str,
        code: str,
        *,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        """
        Complete a 2FA signin.

        The pending handle survives a wrong code so the user can retry, and
        is consumed atomically on success so it cannot be replayed.

        Raises:
            InvalidOrExpiredSession: If the handle is unknown, expired, or
                was consumed concurrently
            InvalidOTP, OTPExpired, TooManyAttempts: From the OTP engine
        """
        key = cache_key(PENDING_AUTH_NAMESPACE, pending_token)
        raw = await self.cache.get(key)
        if raw is None:
            raise InvalidOrExpiredSession("Invalid or expired session")
        user_id = _load_json(raw, InvalidOrExpiredSession)["user_id"]

        try:
            user = await self.store.get_user_by_id(int(user_id))
        except NotFoundError as e:
            await self.cache.delete(key)
            raise InvalidOrExpiredSession("Invalid or expired session") from e

        recipient = user.email or user.phone
        await self.otp_engine.verify(recipient, OTPType.SIGNIN, code)

        if await self.cache.pop(key) is None:
            raise InvalidOrExpiredSession("Invalid or expired session")

        return await self.create_auth_session(
            user, device_info=device_info, ip_address=ip_address
        )

    # ------------------------------------------------------------------
    # OTP resend
    # ------------------------------------------------------------------

    async def resend_otp(
        self,
        otp_type: str,
        *,
        email: str | None = None,
        phone: str | None = None,
    ) -> None:
        """
        Issue a new code of the given type to an email or phone number.

        Email takes precedence when both are given.

        Raises:
            ValidationError: If the type is unknown or no identifier is given
            RateLimitExceeded: From the OTP engine
        """
        resolved_type = RESEND_TYPES.get(otp_type.strip().lower())
        if resolved_type is None:
            raise ValidationError(f"Unknown OTP type: {otp_type}")

        if email and email.strip():
            recipient = normalize_email(email)
            method = DeliveryMethod.EMAIL
            lookup = self.store.get_user_by_email
        elif phone and phone.strip():
            recipient = normalize_phone(phone)
            method = DeliveryMethod.SMS
            lookup = self.store.get_user_by_phone
        else:
            raise ValidationError("Email or phone required")

        try:
            user_id: int | None = (await lookup(recipient)).id
        except NotFoundError:
            user_id = None

        await self.otp_engine.resend(recipient, resolved_type, method, user_id=user_id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def initiate_password_reset(self, email: str) -> None:
        """
        Send a password-reset code if the email belongs to an account.

        Unknown emails return normally so responses do not reveal which
        addresses are registered.

        Raises:
            RateLimitExceeded: From the OTP engine
        """
        normalized = normalize_email(email)
        try:
            user = await self.store.get_user_by_email(normalized)
        except NotFoundError:
            logger.info("password_reset_unknown_email")
            return

        await self.otp_engine.generate(
            normalized, OTPType.PASSWORD_RESET, DeliveryMethod.EMAIL, user_id=user.id
        )

    async def verify_password_reset_otp(self, email: str, code: str) -> str:
        """
        Exchange a password-reset code for a single-use reset token.

        Returns:
            Opaque reset token, valid for `password_reset_ttl`

        Raises:
            InvalidOTP, OTPExpired, TooManyAttempts: From the OTP engine
            UserNotFound: If the account disappeared
        """
        normalized = normalize_email(email)
        await self.otp_engine.verify(normalized, OTPType.PASSWORD_RESET, code)
        user = await self.store.get_user_by_email(normalized)

        reset_token = generate_secure_token()
        await self.cache.set(
            cache_key(PASSWORD_RESET_NAMESPACE, reset_token),
            json.dumps({"user_id": user.id, "email": normalized}),
            self.config.password_reset_ttl,
        )
        return reset_token

    async def reset_password(self, reset_token: str, new_password: str) -> None:
        """
        Redeem a reset token, set the new password, and sign out everywhere.

        The grant is deleted as it is read, so a token works once.

        Raises:
            InvalidToken: If the token is unknown, expired, or already used
            ValidationError: If the new password violates the policy
        """
        raw = await self.cache.pop(cache_key(PASSWORD_RESET_NAMESPACE, reset_token))
        if raw is None:
            raise InvalidToken("Invalid or expired reset token")
        grant = _load_json(raw, InvalidToken)
        if not grant.get("email"):
            raise InvalidToken("Invalid or expired reset token")

        self._check_password_policy(new_password)

        try:
            user = await self.store.get_user_by_id(int(grant["user_id"]))
        except NotFoundError as e:
            raise InvalidToken("Invalid or expired reset token") from e

        password_hash = await hash_password(new_password, self.config.bcrypt_cost)
        await self.store.update_user(user, password_hash=password_hash)
        revoked = await self.store.delete_all_sessions_for_user(user.id)
        logger.info("password_reset_completed", user_id=user.id, revoked_sessions=revoked)

    # ------------------------------------------------------------------
    # Federated login
    # ------------------------------------------------------------------

    async def google_auth(
        self,
        id_token: str,
        *,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        """
        Sign in with a Google ID token, creating or linking the account.

        Federated accounts skip OTP verification.

        Raises:
            InvalidFederatedToken: If Google rejects the token
        """
        if self.federated_verifier is None:
            raise ValidationError("Federated login is not configured")

        identity = await self.federated_verifier.verify(id_token)

        try:
            user = await self.store.get_user_by_email(identity.email)
        except NotFoundError:
            user = await self._create_federated_user(
                identity.email, identity.provider, identity.subject_id
            )
        else:
            if user.provider == LOCAL_PROVIDER:
                user = await self.store.update_user(
                    user, provider=identity.provider, provider_id=identity.subject_id
                )
                logger.info("provider_linked", user_id=user.id, provider=identity.provider)

        return await self.create_auth_session(
            user, device_info=device_info, ip_address=ip_address
        )

    # ------------------------------------------------------------------
    # Sessions and tokens
    # ------------------------------------------------------------------

    async def create_auth_session(
        self,
        user: UserRecord,
        *,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        """
        Mint a token pair and persist the session that owns it.

        Every successful flow ends here; no other path creates a session.
        The session lives as long as its refresh token.
        """
        access_token, refresh_token = self.token_issuer.issue_pair(user)
        session = await self.store.create_session(
            user_id=user.id,
            token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC) + self.config.refresh_token_lifetime,
            device_info=device_info,
            ip_address=ip_address,
        )
        logger.info("session_created", user_id=user.id, session_id=session.id)
        return AuthResult(
            user=user,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.config.access_token_lifetime.total_seconds()),
        )

    async def refresh_token(self, refresh_token: str) -> AuthResult:
        """
        Rotate a refresh token into a new session.

        The superseded session is deleted, so each refresh token can be
        redeemed once.

        Raises:
            InvalidToken: If the token is invalid, not a refresh token, or
                its session is gone
        """
        self.token_issuer.decode(refresh_token, expected_type=TokenType.REFRESH)

        try:
            session = await self.store.get_session_by_refresh_token(refresh_token)
            user = await self.store.get_user_by_id(session.user_id)
        except NotFoundError as e:
            raise InvalidToken("Session not found for refresh token") from e

        if session.expires_at <= datetime.now(UTC):
            await self.store.delete_session(session.id)
            raise InvalidToken("Session has expired")

        auth = await self.create_auth_session(
            user, device_info=session.device_info, ip_address=session.ip_address
        )
        await self.store.delete_session(session.id)
        return auth

    def validate_token(self, token: str) -> TokenClaims:
        """Verify a token of either type and return its claims."""
        return self.token_issuer.decode(token)

    async def authenticate(self, access_token: str) -> UserRecord:
        """
        Resolve the user behind an access token.

        The token must be validly signed and still backed by a session, so
        logout and password reset revoke it immediately.

        Raises:
            InvalidToken: If the token is invalid or its session is gone
        """
        claims = self.token_issuer.decode(access_token, expected_type=TokenType.ACCESS)
        try:
            session = await self.store.get_session_by_token(access_token)
            user = await self.store.get_user_by_id(session.user_id)
        except NotFoundError as e:
            raise InvalidToken("Session has been revoked") from e

        if session.expires_at <= datetime.now(UTC) or user.id != claims.user_id:
            raise InvalidToken("Session has been revoked")
        return user

    async def logout(self, access_token: str) -> None:
        await self.store.delete_session_by_token(access_token)

    async def logout_all_devices(self, user_id: int) -> int:
        revoked = await self.store.delete_all_sessions_for_user(user_id)
        logger.info("logout_all_devices", user_id=user_id, revoked_sessions=revoked)
        return revoked

    async def get_user_by_id(self, user_id: int) -> UserRecord:
        return await self.store.get_user_by_id(user_id)

    async def get_failed_attempts(self, identifier: str) -> int:
        """Current failed-password count for an identifier, 0 when none."""
        _, normalized = classify_identifier(identifier)
        raw = await self.cache.get(cache_key(FAILED_ATTEMPTS_NAMESPACE, normalized))
        return int(raw) if raw is not None else 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_password_policy(self, password: str) -> None:
        if not (
            self.config.password_min_length
            <= len(password)
            <= self.config.password_max_length
        ):
            raise ValidationError(
                f"Password must be between {self.config.password_min_length} and "
                f"{self.config.password_max_length} characters"
            )

    async def _send_verification_otp(self, user: UserRecord) -> str | None:
        """
        Send a signup code by email, falling back to SMS.

        Returns:
            The address the code was delivered to, or None if every attempt failed
        """
        targets = []
        if user.email:
            targets.append((user.email, DeliveryMethod.EMAIL))
        if user.phone:
            targets.append((user.phone, DeliveryMethod.SMS))

        for recipient, method in targets:
            try:
                issued = await self.otp_engine.generate(
                    recipient, OTPType.SIGNUP, method, user_id=user.id
                )
            except RateLimitExceeded:
                logger.warning(
                    "verification_otp_rate_limited", user_id=user.id, method=str(method)
                )
                continue
            if issued.delivered is not False:
                return recipient
        return None

    async def _send_signin_otp(self, user: UserRecord) -> None:
        if user.email:
            recipient, method = user.email, DeliveryMethod.EMAIL
        else:
            recipient, method = user.phone, DeliveryMethod.SMS

        try:
            await self.otp_engine.generate(
                recipient, OTPType.SIGNIN, method, user_id=user.id
            )
        except RateLimitExceeded:
            logger.warning("signin_otp_rate_limited", user_id=user.id)

    async def _record_failed_attempt(self, identifier: str) -> int:
        return await self.cache.incr(
            cache_key(FAILED_ATTEMPTS_NAMESPACE, identifier),
            self.config.failed_attempt_ttl,
        )

    async def _clear_failed_attempts(self, identifier: str) -> None:
        await self.cache.delete(cache_key(FAILED_ATTEMPTS_NAMESPACE, identifier))

    async def _create_federated_user(
        self, email: str, provider: str, provider_id: str
    ) -> UserRecord:
        for attempt in range(_USERNAME_ATTEMPTS):
            username = generate_username_from_email(email)
            if await self.store.is_username_taken(username):
                continue
            try:
                user = await self.store.create_user(
                    username=username,
                    email=email,
                    provider=provider,
                    provider_id=provider_id,
                    is_verified=True,
                )
            except ConflictError:
                if attempt == _USERNAME_ATTEMPTS - 1:
                    raise
                continue
            logger.info("federated_user_created", user_id=user.id, provider=provider)
            return user
        raise ConflictError("Could not allocate a username for the federated account")


def _load_json(raw: str, error: type[Exception]) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise error("Invalid or expired token") from e
    if not isinstance(data, dict) or "user_id" not in data:
        raise error("Invalid or expired token")
    return data
