"""Test configuration and fixtures."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fastapi_multichannel_auth.cache import MemoryCache
from fastapi_multichannel_auth.config import AuthConfig
from fastapi_multichannel_auth.db.sqlalchemy.adapter import (
    SQLAlchemyCredentialStore,
    SQLAlchemyOTPLedger,
)
from fastapi_multichannel_auth.db.sqlalchemy.models import Base, User
from fastapi_multichannel_auth.delivery import DeliveryDispatcher, OTPMessage
from fastapi_multichannel_auth.otp import OTPEngine
from fastapi_multichannel_auth.security import hash_password_sync
from fastapi_multichannel_auth.service import AuthService
from fastapi_multichannel_auth.types import DeliveryMethod

TEST_SECRET = "test-secret-key-minimum-32-chars-long"
TEST_PASSWORD = "Secret123!"

# ============================================================================
# Test Configuration
# ============================================================================


class MockAuthConfig(AuthConfig):
    """Authentication configuration for testing."""

    secret_key = TEST_SECRET
    developer_mode = False  # Real codes, captured by RecordingChannel
    bcrypt_cost = 4
    access_token_lifetime = timedelta(hours=1)
    refresh_token_lifetime = timedelta(days=7)
    otp_expiry = timedelta(minutes=10)
    otp_length = 6
    max_otp_attempts = 5
    delivery_wait = 2.0


class RecordingChannel:
    """Delivery channel that stores messages instead of sending them."""

    def __init__(self, name: str, *, succeed: bool = True) -> None:
        self.name = name
        self.succeed = succeed
        self.sent: list[tuple[str, OTPMessage]] = []

    async def send(self, recipient: str, message: OTPMessage) -> bool:
        self.sent.append((recipient, message))
        return self.succeed

    def last_code(self, recipient: str) -> str:
        for sent_to, message in reversed(self.sent):
            if sent_to == recipient:
                return message.code
        raise AssertionError(f"No code sent to {recipient}")


class FakeClock:
    """Manually advanced monotonic clock for MemoryCache."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta.total_seconds()


# ============================================================================
# Basic Fixtures
# ============================================================================


@pytest.fixture
def test_config() -> MockAuthConfig:
    """Provide a test configuration."""
    return MockAuthConfig()


@pytest.fixture
def current_time() -> datetime:
    """Provide current UTC time."""
    return datetime.now(UTC)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(clock=clock)


@pytest.fixture
def email_channel() -> RecordingChannel:
    return RecordingChannel("email")


@pytest.fixture
def sms_channel() -> RecordingChannel:
    return RecordingChannel("sms")


@pytest.fixture
async def dispatcher() -> AsyncIterator[DeliveryDispatcher]:
    dispatcher = DeliveryDispatcher(max_workers=4, send_timeout=2.0)
    yield dispatcher
    await dispatcher.aclose(grace=1.0)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def async_engine():  # type: ignore[no-untyped-def]
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:  # type: ignore[no-untyped-def]
    """Create an async database session."""
    async_session_maker = async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session_maker() as session:
        yield session


@pytest.fixture
async def file_session_maker(tmp_path):  # type: ignore[no-untyped-def]
    """Session factory over a file-backed database, one connection per session."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(async_session: AsyncSession) -> SQLAlchemyCredentialStore:
    return SQLAlchemyCredentialStore(async_session)


@pytest.fixture
def ledger(async_session: AsyncSession) -> SQLAlchemyOTPLedger:
    return SQLAlchemyOTPLedger(async_session)


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def otp_engine(
    test_config: MockAuthConfig,
    ledger: SQLAlchemyOTPLedger,
    email_channel: RecordingChannel,
    sms_channel: RecordingChannel,
    dispatcher: DeliveryDispatcher,
) -> OTPEngine:
    return OTPEngine(
        test_config,
        ledger,
        {DeliveryMethod.EMAIL: email_channel, DeliveryMethod.SMS: sms_channel},
        dispatcher,
    )


@pytest.fixture
def service(
    test_config: MockAuthConfig,
    store: SQLAlchemyCredentialStore,
    cache: MemoryCache,
    otp_engine: OTPEngine,
) -> AuthService:
    return AuthService(test_config, store, cache, otp_engine)


@pytest.fixture
def two_factor_service(
    store: SQLAlchemyCredentialStore,
    cache: MemoryCache,
    ledger: SQLAlchemyOTPLedger,
    email_channel: RecordingChannel,
    sms_channel: RecordingChannel,
    dispatcher: DeliveryDispatcher,
) -> AuthService:
    """AuthService with two-factor signin switched on."""
    config = MockAuthConfig(enable_2fa=True)
    engine = OTPEngine(
        config,
        ledger,
        {DeliveryMethod.EMAIL: email_channel, DeliveryMethod.SMS: sms_channel},
        dispatcher,
    )
    return AuthService(config, store, cache, engine)


@pytest.fixture
async def test_user(store: SQLAlchemyCredentialStore) -> User:
    """Create an unverified user with a password."""
    return await store.create_user(
        username="testuser",
        email="test@example.com",
        password_hash=hash_password_sync(TEST_PASSWORD, 4),
    )


@pytest.fixture
async def verified_user(store: SQLAlchemyCredentialStore) -> User:
    """Create a verified user with email and phone."""
    return await store.create_user(
        username="verified",
        email="verified@example.com",
        phone="+15551234567",
        password_hash=hash_password_sync(TEST_PASSWORD, 4),
        is_verified=True,
    )
