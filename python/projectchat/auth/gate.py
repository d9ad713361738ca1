"""
Handshake-time authentication.

Verifies the credential presented when a connection is opened, resolves the
user's profile and enforces the per-user connection cap. A rejected
connection never enters the registry.
"""

from __future__ import annotations

import logging

from ..config import MAX_CONNECTIONS_PER_USER
from ..registry import ConnectionIdentity, ConnectionRegistry
from ..storage import ChatStore
from .base import AuthProvider, TokenStructureError
from .cache import ProfileCache

logger = logging.getLogger(__name__)

# Rejection reasons reported to the client
REASON_TOKEN_REQUIRED = "Authentication token required"
REASON_INVALID_TOKEN = "Invalid authentication token"
REASON_INVALID_STRUCTURE = "Invalid token structure"
REASON_MAX_CONNECTIONS = "Maximum connections exceeded"
REASON_FAILED = "Authentication failed"


class HandshakeRejected(Exception):
    """The connection attempt is refused; ``reason`` is sent to the client."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ConnectionCounter:
    """
    Provisional per-user connection counts.

    Written at handshake and disconnect; the registry stays authoritative and
    the periodic sweep reconciles the two.
    """

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._counts)

    def get(self, user_id: str) -> int:
        return self._counts.get(user_id, 0)

    def set(self, user_id: str, count: int) -> None:
        self._counts[user_id] = count

    def decrement(self, user_id: str) -> int:
        """Decrement with a floor at zero; the entry is dropped at zero."""
        count = max(0, self._counts.get(user_id, 0) - 1)
        if count == 0:
            self._counts.pop(user_id, None)
        else:
            self._counts[user_id] = count
        return count

    def reconcile(self, live_user_ids: set[str]) -> int:
        """
        Drop entries for users with no live connection.

        Returns:
            Number of entries removed.
        """
        stale = [user_id for user_id in self._counts if user_id not in live_user_ids]
        for user_id in stale:
            del self._counts[user_id]
        return len(stale)


class AuthenticationGate:
    """Turns a bearer credential into a ConnectionIdentity or a rejection."""

    def __init__(
        self,
        auth_provider: AuthProvider,
        store: ChatStore,
        registry: ConnectionRegistry,
        cache: ProfileCache | None = None,
        counter: ConnectionCounter | None = None,
        max_connections_per_user: int = MAX_CONNECTIONS_PER_USER,
    ):
        self._auth = auth_provider
        self._store = store
        self._registry = registry
        self._cache = cache or ProfileCache()
        self._counter = counter or ConnectionCounter()
        self._max_connections_per_user = max_connections_per_user

    @property
    def cache(self) -> ProfileCache:
        return self._cache

    @property
    def counter(self) -> ConnectionCounter:
        return self._counter

    async def authenticate(self, token: str | None) -> ConnectionIdentity:
        """
        Validate a credential and resolve the connecting user.

        The connection cap is checked last and without awaiting, so the
        caller can register the connection before any other handler runs.

        Raises:
            HandshakeRejected: If the connection must be refused.
        """
        if not token:
            raise HandshakeRejected(REASON_TOKEN_REQUIRED)

        try:
            auth_user = await self._auth.authenticate(token)
        except TokenStructureError:
            raise HandshakeRejected(REASON_INVALID_STRUCTURE)
        except Exception:
            logger.exception("Credential verification failed")
            raise HandshakeRejected(REASON_FAILED)

        if auth_user is None:
            raise HandshakeRejected(REASON_INVALID_TOKEN)
        if not auth_user.id:
            raise HandshakeRejected(REASON_INVALID_STRUCTURE)

        try:
            profile = await self._cache.resolve(auth_user.id, self._store.get_user_profile)
        except Exception:
            logger.exception(f"Profile lookup failed for user {auth_user.id}")
            raise HandshakeRejected(REASON_FAILED)

        if profile is None:
            raise HandshakeRejected(REASON_INVALID_TOKEN)

        current = self._registry.count_for_user(profile.id)
        if current >= self._max_connections_per_user:
            logger.info(f"Rejecting connection for user {profile.id}: {current} open connections")
            raise HandshakeRejected(REASON_MAX_CONNECTIONS)

        self._counter.set(profile.id, current + 1)
        logger.debug(f"User authenticated: {profile.username}")

        return ConnectionIdentity(
            user_id=profile.id,
            profile=profile,
            capabilities=frozenset(auth_user.roles),
        )

    def release(self, user_id: str) -> int:
        """Decrement the provisional counter for a closed connection."""
        return self._counter.decrement(user_id)

    def sweep(self) -> int:
        """Reconcile the provisional counter with the registry."""
        return self._counter.reconcile(self._registry.online_user_ids())


__all__ = [
    "AuthenticationGate",
    "ConnectionCounter",
    "HandshakeRejected",
    "REASON_TOKEN_REQUIRED",
    "REASON_INVALID_TOKEN",
    "REASON_INVALID_STRUCTURE",
    "REASON_MAX_CONNECTIONS",
    "REASON_FAILED",
]
