"""Verification of identity tokens issued by external providers."""

from dataclasses import dataclass
from typing import Protocol

import httpx

from fastapi_multichannel_auth.exceptions import InvalidFederatedToken
from fastapi_multichannel_auth.identifiers import normalize_email
from fastapi_multichannel_auth.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"


@dataclass(frozen=True)
class FederatedIdentity:
    """Identity asserted by a provider."""

    email: str
    subject_id: str
    provider: str


class FederatedVerifier(Protocol):
    """Verifies an ID token and returns the identity it asserts."""

    provider: str

    async def verify(self, id_token: str) -> FederatedIdentity:
        """
        Raises:
            InvalidFederatedToken: If the provider rejects the token
        """
        ...


class GoogleIdTokenVerifier:
    """
    Verifies Google ID tokens through the tokeninfo endpoint.

    Args:
        client_id: Expected `aud` claim; skipped when None
        http_client: Client to use, a new one per call if omitted
        timeout: Request timeout in seconds
    """

    provider = "google"

    def __init__(
        self,
        client_id: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.client_id = client_id
        self.http_client = http_client
        self.timeout = timeout

    async def _fetch(self, id_token: str) -> httpx.Response:
        params = {"id_token": id_token}
        if self.http_client is not None:
            return await self.http_client.get(GOOGLE_TOKENINFO_URL, params=params)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(GOOGLE_TOKENINFO_URL, params=params)

    async def verify(self, id_token: str) -> FederatedIdentity:
        if not id_token:
            raise InvalidFederatedToken("Missing Google ID token")

        try:
            response = await self._fetch(id_token)
        except httpx.HTTPError as e:
            logger.warning("google_tokeninfo_unreachable", error=str(e))
            raise InvalidFederatedToken("Could not verify Google token") from e

        if response.status_code != 200:
            raise InvalidFederatedToken("Invalid Google token")

        try:
            info = response.json()
        except ValueError as e:
            raise InvalidFederatedToken("Invalid Google token") from e

        if self.client_id and info.get("aud") != self.client_id:
            raise InvalidFederatedToken("Google token was issued for another client")

        email = info.get("email")
        subject_id = info.get("sub") or info.get("user_id")
        if not email or not subject_id:
            raise InvalidFederatedToken("Google token is missing email or subject")

        if str(info.get("email_verified", "false")).lower() != "true":
            raise InvalidFederatedToken("Google account email is not verified")

        return FederatedIdentity(
            email=normalize_email(email),
            subject_id=str(subject_id),
            provider=self.provider,
        )
