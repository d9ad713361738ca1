"""
JWT-based authentication provider implementation.
"""

from __future__ import annotations

import time
from typing import Any

import jwt

from .base import AuthProvider, AuthUser, TokenStructureError

# Claims checked, in order, for the user id
USER_ID_CLAIMS = ("id", "userId", "sub")


class JWTAuthProvider(AuthProvider):
    """
    JWT-based authentication provider.

    Tokens are issued by the REST API's login flow; this provider only
    verifies them.

    Example:
        auth = JWTAuthProvider(secret_key=settings.jwt_secret)
        server = ProjectChatServer(settings, store=store, auth_provider=auth)
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str | None = None,
        audience: str | None = None,
        leeway: int = 0,
    ):
        """
        Initialize JWT auth provider.

        Args:
            secret_key: Secret key for verifying JWT signatures
            algorithm: JWT algorithm (HS256, RS256, etc.)
            issuer: Expected token issuer (optional)
            audience: Expected token audience (optional)
            leeway: Seconds of leeway for expiration checks
        """
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway

    async def authenticate(self, token: str) -> AuthUser | None:
        """
        Authenticate a user from a JWT token.

        Expected JWT payload:
        {
            "id": "user-id",          # or "userId" / "sub"
            "roles": ["member"],      # optional
            "exp": 1234567890,        # optional expiration time
        }
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway,
                options={"verify_aud": self.audience is not None},
            )
        except jwt.InvalidTokenError:
            # Covers expired signatures
            return None

        user_id = next((payload[claim] for claim in USER_ID_CLAIMS if payload.get(claim)), None)
        if user_id is None:
            raise TokenStructureError("Token has no user id claim")

        roles = payload.get("roles") or []
        return AuthUser(
            id=str(user_id),
            roles=[str(role) for role in roles] if isinstance(roles, list) else [],
            claims=payload,
        )

    def create_token(
        self,
        user_id: str,
        roles: list[str] | None = None,
        expires_in: int = 3600,
        claims: dict[str, Any] | None = None,
    ) -> str:
        """
        Create a JWT token for a user.

        This is a helper method for testing and development.
        In production, tokens are created by the REST API's auth service.

        Args:
            user_id: Unique user identifier
            roles: List of role names
            expires_in: Token lifetime in seconds (default 1 hour)
            claims: Additional claims

        Returns:
            Signed JWT token string
        """
        now = int(time.time())
        payload: dict[str, Any] = {
            "id": user_id,
            "iat": now,
            "exp": now + expires_in,
        }

        if roles:
            payload["roles"] = roles
        if claims:
            payload.update(claims)
        if self.issuer:
            payload["iss"] = self.issuer
        if self.audience:
            payload["aud"] = self.audience

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
