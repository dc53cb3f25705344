"""Signed, time-bounded access and refresh tokens."""

import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from jose import JWTError, jwt  # type: ignore[import-untyped]

from fastapi_multichannel_auth.config import AuthConfig
from fastapi_multichannel_auth.exceptions import InvalidToken
from fastapi_multichannel_auth.types import TokenType


class TokenSubject(Protocol):
    """Anything tokens can be minted for."""

    id: int
    email: str | None
    username: str


@dataclass(frozen=True)
class TokenClaims:
    """Claims carried by every token. Timestamps are Unix seconds."""

    sub: str
    user_id: int
    type: str
    iat: int
    nbf: int
    exp: int
    iss: str
    jti: str
    email: str = ""
    username: str = ""


class TokenIssuer:
    """
    Mints and validates JWTs with a shared HMAC secret.

    The verifier only accepts the configured algorithm, so a token whose
    header names a different algorithm (including `none`) is rejected.

    Example:
        ```python
        issuer = TokenIssuer(config)
        access, refresh = issuer.issue_pair(user)
        claims = issuer.decode(refresh, expected_type=TokenType.REFRESH)
        ```
    """

    def __init__(self, config: AuthConfig) -> None:
        self.secret_key = config.secret_key
        self.algorithm = config.algorithm
        self.issuer = config.issuer
        self.lifetimes = {
            TokenType.ACCESS: config.access_token_lifetime,
            TokenType.REFRESH: config.refresh_token_lifetime,
        }

    def build_claims(
        self,
        user_id: int,
        token_type: TokenType,
        *,
        email: str | None = None,
        username: str | None = None,
        lifetime: timedelta | None = None,
    ) -> TokenClaims:
        """
        Assemble the claim set for a new token.

        Args:
            user_id: Subject of the token
            token_type: Access or refresh
            email: Optional display email
            username: Optional display username
            lifetime: Override of the configured lifetime for this token type

        Returns:
            Claims ready to be encoded
        """
        now = int(datetime.now(UTC).timestamp())
        ttl = lifetime if lifetime is not None else self.lifetimes[token_type]
        return TokenClaims(
            sub=str(user_id),
            user_id=user_id,
            type=str(token_type),
            iat=now,
            nbf=now,
            exp=now + int(ttl.total_seconds()),
            iss=self.issuer,
            jti=str(uuid.uuid4()),
            email=email or "",
            username=username or "",
        )

    def encode(self, claims: TokenClaims) -> str:
        """Sign a claim set."""
        return jwt.encode(asdict(claims), self.secret_key, algorithm=self.algorithm)

    def issue(self, user: TokenSubject, token_type: TokenType) -> str:
        """
        Mint a token for a user.

        Access tokens carry the display fields; refresh tokens carry only the
        subject.
        """
        if token_type == TokenType.ACCESS:
            claims = self.build_claims(
                user.id, token_type, email=user.email, username=user.username
            )
        else:
            claims = self.build_claims(user.id, token_type)
        return self.encode(claims)

    def issue_pair(self, user: TokenSubject) -> tuple[str, str]:
        """Mint an access token and a refresh token for a user."""
        return self.issue(user, TokenType.ACCESS), self.issue(user, TokenType.REFRESH)

    def decode(self, token: str, expected_type: TokenType | None = None) -> TokenClaims:
        """
        Verify a token and return its claims.

        Args:
            token: Encoded JWT
            expected_type: If given, the `type` claim must match it

        Returns:
            Decoded claims

        Raises:
            InvalidToken: On bad signature, disallowed algorithm, expiry,
                wrong issuer, missing claims, or type mismatch
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iat": True,
                    "verify_aud": False,
                    "require_exp": True,
                    "require_iat": True,
                    "require_nbf": True,
                    "require_sub": True,
                },
            )
        except JWTError as e:
            raise InvalidToken(f"Invalid or expired token: {e}") from e

        try:
            claims = TokenClaims(
                sub=payload["sub"],
                user_id=int(payload["user_id"]),
                type=payload["type"],
                iat=int(payload["iat"]),
                nbf=int(payload["nbf"]),
                exp=int(payload["exp"]),
                iss=payload["iss"],
                jti=payload["jti"],
                email=payload.get("email", ""),
                username=payload.get("username", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidToken("Invalid token claims") from e

        if claims.sub != str(claims.user_id):
            raise InvalidToken("Invalid token claims")

        if expected_type is not None and claims.type != expected_type:
            raise InvalidToken("Invalid token type")

        return claims
