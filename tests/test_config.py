"""Tests for authentication configuration."""

from datetime import timedelta

import pytest

from fastapi_multichannel_auth.config import AuthConfig
from fastapi_multichannel_auth.exceptions import ConfigurationError
from tests.conftest import TEST_SECRET

# ============================================================================
# Test Configuration Classes
# ============================================================================


class MinimalConfig(AuthConfig):
    """Minimal configuration with all required fields."""

    secret_key = TEST_SECRET


class ProductionConfig(AuthConfig):
    """Production-like configuration."""

    secret_key = "production-secret-key-very-long-and-secure-string-here"
    developer_mode = False
    access_token_lifetime = timedelta(hours=2)
    refresh_token_lifetime = timedelta(days=30)
    otp_expiry = timedelta(minutes=5)
    max_otp_attempts = 3
    enable_2fa = True


# ============================================================================
# Configuration Validation Tests
# ============================================================================


class TestConfigValidation:
    """Test suite for configuration validation."""

    def test_minimal_valid_config(self) -> None:
        """Should accept minimal valid configuration."""
        config = MinimalConfig()
        assert config.secret_key == TEST_SECRET

    def test_rejects_missing_secret(self) -> None:
        """Should reject an empty secret even in developer mode."""
        with pytest.raises(ConfigurationError, match="secret_key must be set"):
            AuthConfig(developer_mode=True)

    def test_rejects_short_secret_in_production(self) -> None:
        """Should reject secret keys shorter than 32 characters in production."""

        class ShortSecretConfig(AuthConfig):
            secret_key = "short"
            developer_mode = False

        with pytest.raises(ConfigurationError, match="at least 32 characters"):
            ShortSecretConfig()

    def test_allows_short_secret_in_developer_mode(self) -> None:
        config = AuthConfig(secret_key="short", developer_mode=True)
        assert config.developer_mode is True

    def test_rejects_asymmetric_algorithm(self) -> None:
        """Only HMAC algorithms are accepted so the verifier stays pinned."""
        with pytest.raises(ConfigurationError, match="algorithm"):
            MinimalConfig(algorithm="RS256")

    def test_rejects_none_algorithm(self) -> None:
        with pytest.raises(ConfigurationError):
            MinimalConfig(algorithm="none")

    @pytest.mark.parametrize("length", [3, 9])
    def test_rejects_otp_length_out_of_range(self, length: int) -> None:
        with pytest.raises(ConfigurationError, match="otp_length"):
            MinimalConfig(otp_length=length)

    @pytest.mark.parametrize("attempts", [0, 11])
    def test_rejects_max_attempts_out_of_range(self, attempts: int) -> None:
        with pytest.raises(ConfigurationError, match="max_otp_attempts"):
            MinimalConfig(max_otp_attempts=attempts)

    def test_rejects_low_bcrypt_cost(self) -> None:
        with pytest.raises(ConfigurationError, match="bcrypt_cost"):
            MinimalConfig(bcrypt_cost=3)

    def test_rejects_inverted_password_bounds(self) -> None:
        with pytest.raises(ConfigurationError, match="password_min_length"):
            MinimalConfig(password_min_length=20, password_max_length=10)

    def test_rejects_non_positive_lifetime(self) -> None:
        with pytest.raises(ConfigurationError, match="otp_expiry must be positive"):
            MinimalConfig(otp_expiry=timedelta(0))

    def test_rejects_unknown_override(self) -> None:
        """Typos in override names should fail loudly."""
        with pytest.raises(ConfigurationError, match="Unknown configuration option"):
            MinimalConfig(otp_expiery=timedelta(minutes=1))


# ============================================================================
# Default Values Tests
# ============================================================================


class TestConfigDefaults:
    """Test suite for default configuration values."""

    def test_default_values(self) -> None:
        config = MinimalConfig()

        assert config.algorithm == "HS256"
        assert config.access_token_lifetime == timedelta(hours=1)
        assert config.refresh_token_lifetime == timedelta(days=30)
        assert config.otp_length == 6
        assert config.otp_expiry == timedelta(minutes=10)
        assert config.max_otp_attempts == 5
        assert config.otp_rate_limit_max == 5
        assert config.otp_rate_limit_window == timedelta(hours=1)
        assert config.enable_2fa is False
        assert config.pending_auth_ttl == timedelta(minutes=10)
        assert config.password_reset_ttl == timedelta(minutes=30)
        assert config.failed_attempt_ttl == timedelta(minutes=15)

    def test_subclass_overrides(self) -> None:
        config = ProductionConfig()

        assert config.access_token_lifetime == timedelta(hours=2)
        assert config.otp_expiry == timedelta(minutes=5)
        assert config.max_otp_attempts == 3
        assert config.enable_2fa is True

    def test_keyword_overrides_take_precedence(self) -> None:
        config = ProductionConfig(max_otp_attempts=7)
        assert config.max_otp_attempts == 7
        assert ProductionConfig.max_otp_attempts == 3


# ============================================================================
# Environment Loading Tests
# ============================================================================


class TestConfigFromEnv:
    """Test suite for AuthConfig.from_env."""

    def test_reads_prefixed_variables(self) -> None:
        config = AuthConfig.from_env(
            {
                "AUTH_SECRET_KEY": TEST_SECRET,
                "AUTH_ENABLE_2FA": "true",
                "AUTH_OTP_LENGTH": "8",
                "AUTH_OTP_EXPIRY": "300",
                "AUTH_GOOGLE_CLIENT_ID": "client-123",
            }
        )

        assert config.secret_key == TEST_SECRET
        assert config.enable_2fa is True
        assert config.otp_length == 8
        assert config.otp_expiry == timedelta(minutes=5)
        assert config.google_client_id == "client-123"

    def test_unset_variables_keep_defaults(self) -> None:
        config = AuthConfig.from_env({"AUTH_SECRET_KEY": TEST_SECRET})
        assert config.max_otp_attempts == 5
        assert config.delivery_wait == 5.0

    def test_delivery_wait_none_means_fire_and_forget(self) -> None:
        config = AuthConfig.from_env(
            {"AUTH_SECRET_KEY": TEST_SECRET, "AUTH_DELIVERY_WAIT": "none"}
        )
        assert config.delivery_wait is None

    def test_invalid_number_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="AUTH_OTP_LENGTH"):
            AuthConfig.from_env(
                {"AUTH_SECRET_KEY": TEST_SECRET, "AUTH_OTP_LENGTH": "six"}
            )

    def test_values_are_validated(self) -> None:
        with pytest.raises(ConfigurationError):
            AuthConfig.from_env({"AUTH_SECRET_KEY": "too-short"})
