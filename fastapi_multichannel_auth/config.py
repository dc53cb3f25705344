"""Configuration class for the authentication core."""

import os
from collections.abc import Mapping
from datetime import timedelta

from fastapi_multichannel_auth.exceptions import ConfigurationError

_SUPPORTED_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})


class AuthConfig:
    """
    Configuration for signup, signin, OTP, and token handling.

    Configuration can be set via class attributes on a subclass, via keyword
    overrides on the constructor, or from environment variables with
    `AuthConfig.from_env()`. Values are validated on construction.

    Example:
        ```python
        class MyAuthConfig(AuthConfig):
            secret_key = "your-secret-key-here-at-least-32-chars"
            access_token_lifetime = timedelta(minutes=30)
            enable_2fa = True

        config = MyAuthConfig()
        ```
    """

    # Required configuration - must be set
    secret_key: str = ""

    # Security settings
    developer_mode: bool = False
    algorithm: str = "HS256"
    issuer: str = "multichannel-auth"
    bcrypt_cost: int = 10
    password_min_length: int = 8
    password_max_length: int = 100

    # Token lifetimes
    access_token_lifetime: timedelta = timedelta(hours=1)
    refresh_token_lifetime: timedelta = timedelta(days=30)

    # OTP configuration
    otp_length: int = 6
    otp_expiry: timedelta = timedelta(minutes=10)
    max_otp_attempts: int = 5
    otp_verified_retention: timedelta = timedelta(hours=24)

    # Rate limiting: at most otp_rate_limit_max issuances per recipient per window
    otp_rate_limit_max: int = 5
    otp_rate_limit_window: timedelta = timedelta(hours=1)

    # Step-up authentication
    enable_2fa: bool = False

    # Ephemeral state lifetimes
    pending_auth_ttl: timedelta = timedelta(minutes=10)
    password_reset_ttl: timedelta = timedelta(minutes=30)
    failed_attempt_ttl: timedelta = timedelta(minutes=15)

    # Delivery dispatch
    delivery_timeout: float = 10.0
    delivery_wait: float | None = 5.0
    """Seconds to wait for a delivery result; None dispatches without waiting."""
    delivery_max_workers: int = 8

    # Federated identity
    google_client_id: str | None = None

    def __init__(self, **overrides: object) -> None:
        """
        Apply overrides and validate configuration.

        Args:
            **overrides: Attribute values that take precedence over class defaults

        Raises:
            ConfigurationError: If an override names an unknown setting or
                any value is invalid
        """
        for name, value in overrides.items():
            if name.startswith("_") or not hasattr(type(self), name):
                raise ConfigurationError(f"Unknown configuration option: {name}")
            setattr(self, name, value)
        self.validate()

    def validate(self) -> None:
        """
        Validate secret strength and numeric bounds.

        In developer mode any non-empty secret is accepted.

        Raises:
            ConfigurationError: If a value is missing or out of range
        """
        self.validate_secret()

        if self.algorithm not in _SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"algorithm must be one of {sorted(_SUPPORTED_ALGORITHMS)}, "
                f"got {self.algorithm!r}"
            )
        if not 4 <= self.otp_length <= 8:
            raise ConfigurationError("otp_length must be between 4 and 8")
        if not 1 <= self.max_otp_attempts <= 10:
            raise ConfigurationError("max_otp_attempts must be between 1 and 10")
        if self.otp_rate_limit_max < 1:
            raise ConfigurationError("otp_rate_limit_max must be at least 1")
        if not 4 <= self.bcrypt_cost <= 31:
            raise ConfigurationError("bcrypt_cost must be between 4 and 31")
        if self.delivery_max_workers < 1:
            raise ConfigurationError("delivery_max_workers must be at least 1")
        if self.password_min_length > self.password_max_length:
            raise ConfigurationError(
                "password_min_length cannot exceed password_max_length"
            )

        for name in (
            "access_token_lifetime",
            "refresh_token_lifetime",
            "otp_expiry",
            "otp_rate_limit_window",
            "pending_auth_ttl",
            "password_reset_ttl",
            "failed_attempt_ttl",
        ):
            if getattr(self, name) <= timedelta(0):
                raise ConfigurationError(f"{name} must be positive")

    def validate_secret(self) -> None:
        """
        Validate that the secret key is secure.

        In production mode, requires secret to be at least 32 characters.
        In developer mode, any non-empty secret is allowed.

        Raises:
            ConfigurationError: If secret is not secure enough
        """
        if not self.secret_key:
            raise ConfigurationError(
                "secret_key must be set. Generate with: openssl rand -hex 32"
            )

        if self.developer_mode:
            return

        if len(self.secret_key) < 32:
            raise ConfigurationError(
                "secret_key must be at least 32 characters long. "
                "Generate with: openssl rand -hex 32"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AuthConfig":
        """
        Build a configuration from `AUTH_*` environment variables.

        Durations are given in seconds. Unset variables keep the class default.

        Args:
            environ: Mapping to read from, defaults to `os.environ`

        Returns:
            Validated configuration instance

        Example:
            ```python
            # AUTH_SECRET_KEY=... AUTH_ENABLE_2FA=true AUTH_OTP_EXPIRY=300
            config = AuthConfig.from_env()
            ```
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}

        for name, default in _iter_settings(cls):
            raw = env.get(f"AUTH_{name.upper()}")
            if raw is None:
                continue
            overrides[name] = _coerce(name, raw, default)

        return cls(**overrides)


def _iter_settings(cls: type[AuthConfig]) -> list[tuple[str, object]]:
    settings = []
    for klass in reversed(cls.__mro__):
        for name in getattr(klass, "__annotations__", {}):
            if not name.startswith("_"):
                settings.append((name, getattr(cls, name, None)))
    return settings


def _coerce(name: str, raw: str, default: object) -> object:
    try:
        if isinstance(default, bool):
            return raw.strip().lower() in {"1", "true", "yes", "on"}
        if isinstance(default, timedelta):
            return timedelta(seconds=float(raw))
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float) or name == "delivery_wait":
            if raw.strip().lower() in {"", "none"}:
                return None
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for AUTH_{name.upper()}: {raw!r}") from e
    if default is None:
        return raw or None
    return raw
