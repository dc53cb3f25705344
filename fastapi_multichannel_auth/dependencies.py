"""FastAPI dependencies for bearer-token authentication."""

from collections.abc import Callable
from typing import Any

from fastapi import Depends  # type: ignore[import-untyped]
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # type: ignore[import-untyped]

from fastapi_multichannel_auth.db.protocols import UserRecord
from fastapi_multichannel_auth.exceptions import InvalidToken
from fastapi_multichannel_auth.service import AuthService

# HTTP Bearer scheme for token extraction; a missing header is reported as InvalidToken
http_bearer_scheme = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer_scheme),
) -> str:
    """
    Dependency that extracts the raw bearer token.

    Raises:
        InvalidToken: If the Authorization header is missing or not a bearer token
    """
    if credentials is None or not credentials.credentials:
        raise InvalidToken("Missing bearer token")
    return credentials.credentials


def get_current_user_dependency(
    get_auth_service: Callable[..., AuthService],
) -> Callable[..., Any]:
    """
    Create a dependency for getting the current authenticated user.

    The token must carry a valid signature and still be backed by a session,
    so tokens revoked by logout or a password reset are refused.

    Args:
        get_auth_service: Dependency that returns an AuthService instance

    Returns:
        FastAPI dependency function

    Example:
        ```python
        current_user = Depends(get_current_user_dependency(get_auth_service))

        @app.get("/protected")
        async def protected_route(user = current_user):
            return {"user_id": user.id}
        ```
    """

    async def get_current_user(
        token: str = Depends(get_bearer_token),
        service: AuthService = Depends(get_auth_service),
    ) -> UserRecord:
        return await service.authenticate(token)

    return get_current_user
