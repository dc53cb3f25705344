"""Example FastAPI application with multichannel authentication.

This example demonstrates:
- Creating the database tables and a request-scoped AuthService
- Registering email and SMS delivery channels
- Registering the auth router and its exception handlers
- Using protected endpoints with the current-user dependency
"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fastapi_multichannel_auth import (
    AuthConfig,
    AuthService,
    Base,
    DeliveryDispatcher,
    DeliveryMethod,
    GoogleIdTokenVerifier,
    LoggingChannel,
    MemoryCache,
    OTPEngine,
    SQLAlchemyCredentialStore,
    SQLAlchemyOTPLedger,
    get_auth_router,
    get_current_user_dependency,
    register_exception_handlers,
)
from fastapi_multichannel_auth.db import User

# Database configuration
DATABASE_URL = "sqlite+aiosqlite:///./test.db"

# Adapters read attributes after commit, so sessions must not expire them
engine = create_async_engine(DATABASE_URL, echo=True)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


class MyAuthConfig(AuthConfig):
    """Custom authentication configuration."""

    secret_key = "your-secret-key-min-32-chars-long-generate-with-openssl"
    developer_mode = True  # Set to False in production!
    enable_2fa = True


config = MyAuthConfig()

# Process-wide collaborators; swap MemoryCache for RedisCache when running
# more than one worker
cache = MemoryCache()
dispatcher = DeliveryDispatcher(
    max_workers=config.delivery_max_workers,
    send_timeout=config.delivery_timeout,
)
channels = {
    DeliveryMethod.EMAIL: LoggingChannel("email"),
    DeliveryMethod.SMS: LoggingChannel("sms"),
}
google_verifier = GoogleIdTokenVerifier(config.google_client_id)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_maker() as session:
        yield session


async def get_auth_service(
    session: AsyncSession = Depends(get_async_session),
) -> AuthService:
    """Dependency to build the AuthService for a request."""
    otp_engine = OTPEngine(config, SQLAlchemyOTPLedger(session), channels, dispatcher)
    return AuthService(
        config,
        SQLAlchemyCredentialStore(session),
        cache,
        otp_engine,
        federated_verifier=google_verifier,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await dispatcher.aclose()
    await engine.dispose()


app = FastAPI(
    title="FastAPI Multichannel Auth Example",
    description="Example application demonstrating email/SMS OTP authentication",
    lifespan=lifespan,
)
register_exception_handlers(app)
app.include_router(get_auth_router(get_auth_service), prefix="/auth", tags=["Authentication"])

current_user = Depends(get_current_user_dependency(get_auth_service))


@app.get("/")
async def root() -> dict[str, str]:
    """Public endpoint."""
    return {
        "message": "Welcome to FastAPI Multichannel Auth",
        "docs": "/docs",
    }


@app.get("/protected")
async def protected_route(user: User = current_user) -> dict[str, str | None]:
    """Protected endpoint - requires authentication."""
    return {
        "message": "This is a protected route",
        "user_id": str(user.id),
        "email": user.email,
        "username": user.username,
    }


if __name__ == "__main__":
    import uvicorn

    print("""
    Starting FastAPI Multichannel Auth Example

    1. Sign up:
       POST http://localhost:8000/auth/signup
       {"email": "jane@example.com", "username": "jane",
        "password": "Secret123!", "confirm_password": "Secret123!"}

    2. Verify (developer mode code is 000000):
       POST http://localhost:8000/auth/signup/verify
       {"identifier": "jane@example.com", "code": "000000"}

    3. Sign in; with 2FA enabled the response carries a pending_token:
       POST http://localhost:8000/auth/signin
       {"identifier": "jane", "password": "Secret123!"}

    4. Complete the second factor:
       POST http://localhost:8000/auth/signin/verify
       {"pending_token": "<pending_token>", "code": "000000"}

    API Docs: http://localhost:8000/docs
    """)

    uvicorn.run(app, host="0.0.0.0", port=8000)
