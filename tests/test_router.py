"""Tests for API router endpoints."""

from collections.abc import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI
from redis.exceptions import ConnectionError as RedisConnectionError

from fastapi_multichannel_auth.cache import RedisCache
from fastapi_multichannel_auth.db.sqlalchemy.adapter import SQLAlchemyCredentialStore
from fastapi_multichannel_auth.db.sqlalchemy.models import User
from fastapi_multichannel_auth.error_handling import register_exception_handlers
from fastapi_multichannel_auth.exceptions import StorageError
from fastapi_multichannel_auth.router import get_auth_router
from fastapi_multichannel_auth.service import AuthService
from tests.conftest import TEST_PASSWORD, RecordingChannel


class UnreachableRedis:
    """Redis client whose server is down."""

    async def getdel(self, key: str) -> str | None:
        raise RedisConnectionError("Connection refused")


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def app(service: AuthService) -> FastAPI:
    """Create FastAPI application with auth router."""
    app_instance = FastAPI()
    register_exception_handlers(app_instance)

    def get_service() -> AuthService:
        return service

    app_instance.include_router(get_auth_router(get_service), prefix="/auth")

    @app_instance.get("/boom")
    async def boom() -> None:
        raise StorageError("connection refused by db-host-17")

    return app_instance


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Create test client bound to the test event loop."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def login(client: httpx.AsyncClient) -> dict:  # type: ignore[type-arg]
    response = await client.post(
        "/auth/signin", json={"identifier": "verified", "password": TEST_PASSWORD}
    )
    assert response.status_code == 200
    return response.json()["auth"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Signup Tests
# ============================================================================


class TestSignupEndpoints:
    """Test suite for POST /auth/signup and /auth/signup/verify."""

    async def test_signup_and_verify(
        self, client: httpx.AsyncClient, email_channel: RecordingChannel
    ) -> None:
        response = await client.post(
            "/auth/signup",
            json={
                "email": "jane@example.com",
                "username": "jane",
                "password": TEST_PASSWORD,
                "confirm_password": TEST_PASSWORD,
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["is_verified"] is False
        assert data["otp_sent"] is True
        assert "password_hash" not in data["user"]

        response = await client.post(
            "/auth/signup/verify",
            json={
                "identifier": "jane@example.com",
                "code": email_channel.last_code("jane@example.com"),
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "Bearer"
        assert data["user"]["is_verified"] is True
        assert data["access_token"]
        assert data["refresh_token"]

    async def test_conflict_maps_to_409(
        self, client: httpx.AsyncClient, verified_user: User
    ) -> None:
        response = await client.post(
            "/auth/signup",
            json={
                "email": "verified@example.com",
                "username": "someone",
                "password": TEST_PASSWORD,
                "confirm_password": TEST_PASSWORD,
            },
        )

        assert response.status_code == 409
        assert response.json() == {"detail": "Email already exists", "code": "conflict"}

    async def test_validation_maps_to_400(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/auth/signup",
            json={
                "username": "jane",
                "password": TEST_PASSWORD,
                "confirm_password": TEST_PASSWORD,
            },
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"


# ============================================================================
# Signin Tests
# ============================================================================


class TestSigninEndpoints:
    """Test suite for POST /auth/signin."""

    async def test_signin_returns_tokens(
        self, client: httpx.AsyncClient, verified_user: User
    ) -> None:
        auth = await login(client)
        assert auth["user"]["username"] == "verified"
        assert auth["expires_in"] == 3600

    async def test_bad_password(self, client: httpx.AsyncClient, verified_user: User) -> None:
        response = await client.post(
            "/auth/signin", json={"identifier": "verified", "password": "nope-nope"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"

    async def test_unverified_account(
        self, client: httpx.AsyncClient, test_user: User
    ) -> None:
        response = await client.post(
            "/auth/signin", json={"identifier": "testuser", "password": TEST_PASSWORD}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["requires_otp"] is True
        assert data["otp_type"] == "verification"
        assert data["auth"] is None

    async def test_signin_verify_unknown_handle(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/auth/signin/verify", json={"pending_token": "nope", "code": "123456"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_session"

    async def test_records_client_details(
        self,
        client: httpx.AsyncClient,
        store: SQLAlchemyCredentialStore,
        verified_user: User,
    ) -> None:
        response = await client.post(
            "/auth/signin",
            json={"identifier": "verified", "password": TEST_PASSWORD},
            headers={"User-Agent": "pytest-agent"},
        )
        token = response.json()["auth"]["access_token"]

        session = await store.get_session_by_token(token)
        assert session.device_info == "pytest-agent"


# ============================================================================
# Session Endpoint Tests
# ============================================================================


class TestSessionEndpoints:
    """Test suite for /auth/me, /auth/refresh, and logout."""

    async def test_me(self, client: httpx.AsyncClient, verified_user: User) -> None:
        auth = await login(client)

        response = await client.get("/auth/me", headers=bearer(auth["access_token"]))

        assert response.status_code == 200
        assert response.json()["email"] == "verified@example.com"

    async def test_me_requires_token(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_token"

    async def test_refresh_rotates(
        self, client: httpx.AsyncClient, verified_user: User
    ) -> None:
        auth = await login(client)

        response = await client.post(
            "/auth/refresh", json={"refresh_token": auth["refresh_token"]}
        )
        assert response.status_code == 200
        assert response.json()["access_token"] != auth["access_token"]

        replay = await client.post(
            "/auth/refresh", json={"refresh_token": auth["refresh_token"]}
        )
        assert replay.status_code == 401

    async def test_logout(self, client: httpx.AsyncClient, verified_user: User) -> None:
        auth = await login(client)

        response = await client.post("/auth/logout", headers=bearer(auth["access_token"]))
        assert response.status_code == 200

        response = await client.get("/auth/me", headers=bearer(auth["access_token"]))
        assert response.status_code == 401

    async def test_logout_all(self, client: httpx.AsyncClient, verified_user: User) -> None:
        first = await login(client)
        second = await login(client)

        response = await client.post(
            "/auth/logout-all", headers=bearer(second["access_token"])
        )
        assert response.status_code == 200

        response = await client.get("/auth/me", headers=bearer(first["access_token"]))
        assert response.status_code == 401


# ============================================================================
# OTP and Password Reset Endpoint Tests
# ============================================================================


class TestResetEndpoints:
    """Test suite for resend and password reset endpoints."""

    async def test_resend(
        self,
        client: httpx.AsyncClient,
        verified_user: User,
        email_channel: RecordingChannel,
    ) -> None:
        response = await client.post(
            "/auth/otp/resend", json={"otp_type": "signup", "email": "verified@example.com"}
        )

        assert response.status_code == 200
        assert len(email_channel.sent) == 1

    async def test_resend_rate_limited(
        self, client: httpx.AsyncClient, verified_user: User
    ) -> None:
        payload = {"otp_type": "signup", "email": "verified@example.com"}
        for _ in range(5):
            assert (await client.post("/auth/otp/resend", json=payload)).status_code == 200

        response = await client.post("/auth/otp/resend", json=payload)

        assert response.status_code == 429
        assert response.json()["code"] == "rate_limited"

    async def test_password_reset_flow(
        self,
        client: httpx.AsyncClient,
        verified_user: User,
        email_channel: RecordingChannel,
    ) -> None:
        response = await client.post(
            "/auth/password-reset", json={"email": "verified@example.com"}
        )
        assert response.status_code == 200

        response = await client.post(
            "/auth/password-reset/verify",
            json={
                "email": "verified@example.com",
                "code": email_channel.last_code("verified@example.com"),
            },
        )
        assert response.status_code == 200
        reset_token = response.json()["reset_token"]

        confirm = {"reset_token": reset_token, "new_password": "BrandNew123!"}
        assert (await client.post("/auth/password-reset/confirm", json=confirm)).status_code == 200

        replay = await client.post("/auth/password-reset/confirm", json=confirm)
        assert replay.status_code == 401
        assert replay.json()["code"] == "invalid_token"

    async def test_unknown_email_gets_same_answer(
        self, client: httpx.AsyncClient, verified_user: User
    ) -> None:
        known = await client.post(
            "/auth/password-reset", json={"email": "verified@example.com"}
        )
        unknown = await client.post(
            "/auth/password-reset", json={"email": "nobody@example.com"}
        )

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()


# ============================================================================
# Error Handling Tests
# ============================================================================


class TestErrorHandling:
    async def test_storage_error_is_opaque(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/boom")

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error", "code": "server_error"}

    async def test_google_not_configured(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/auth/google", json={"id_token": "abc"})

        assert response.status_code == 400

    async def test_cache_outage_is_opaque(
        self, client: httpx.AsyncClient, service: AuthService
    ) -> None:
        service.cache = RedisCache("redis://cache:6379/0", client=UnreachableRedis())  # type: ignore[arg-type]

        response = await client.post(
            "/auth/password-reset/confirm",
            json={"reset_token": "anything", "new_password": "BrandNew123!"},
        )

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error", "code": "server_error"}
