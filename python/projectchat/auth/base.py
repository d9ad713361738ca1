"""
Abstract authentication provider interface.

Implement this interface to integrate your own credential format.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class TokenStructureError(Exception):
    """The credential verified but carries no usable user id."""


@dataclass
class AuthUser:
    """
    The subject of a verified credential.

    Attributes:
        id: Unique user identifier
        roles: Role names granted by the credential
        claims: Remaining decoded claims
    """
    id: str
    roles: list[str] = field(default_factory=list)
    claims: dict[str, Any] = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        """Check if user has a specific role."""
        return role in self.roles


class AuthProvider(ABC):
    """
    Abstract base class for authentication providers.

    Example:
        class MyTokenAuth(AuthProvider):
            async def authenticate(self, token: str) -> AuthUser | None:
                session = await sessions.lookup(token)
                return AuthUser(id=session.user_id) if session else None
    """

    @abstractmethod
    async def authenticate(self, token: str) -> AuthUser | None:
        """
        Verify a credential.

        Args:
            token: Credential presented at connection time

        Returns:
            AuthUser if verification succeeds, None otherwise

        Raises:
            TokenStructureError: If the credential is valid but has no user id
        """
        ...


class NoAuth(AuthProvider):
    """
    No-op authentication provider for local development.

    Accepts any token and treats it as the user id.
    DO NOT use in production!
    """

    _warned = False

    async def authenticate(self, token: str) -> AuthUser | None:
        """Accept any token as user ID."""
        if not NoAuth._warned:
            logger.warning(
                "NoAuth provider is enabled - this is insecure and should only be used for development."
            )
            NoAuth._warned = True

        if not token:
            return None
        return AuthUser(id=token)
