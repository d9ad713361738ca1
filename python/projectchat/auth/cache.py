"""
Short-lived cache of user profiles used during the handshake.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..config import PROFILE_CACHE_TTL
from ..storage import UserProfile

ProfileLoader = Callable[[str], Awaitable["UserProfile | None"]]


@dataclass
class CachedProfile:
    profile: UserProfile
    fetched_at: float


class ProfileCache:
    """
    Process-wide user id -> profile cache with a fixed freshness window.

    Entries older than ``ttl`` are treated as absent. Nothing is persisted.
    """

    def __init__(self, ttl: float = PROFILE_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CachedProfile] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, user_id: str) -> UserProfile | None:
        """Return a fresh profile, or None if missing or stale."""
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at > self._ttl:
            del self._entries[user_id]
            return None
        return entry.profile

    def prune(self) -> int:
        """
        Drop every stale entry.

        Returns:
            Number of entries removed.
        """
        cutoff = self._clock() - self._ttl
        stale = [user_id for user_id, entry in self._entries.items() if entry.fetched_at < cutoff]
        for user_id in stale:
            del self._entries[user_id]
        return len(stale)

    def put(self, profile: UserProfile) -> None:
        self._entries[profile.id] = CachedProfile(profile=profile, fetched_at=self._clock())

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    async def resolve(self, user_id: str, loader: ProfileLoader) -> UserProfile | None:
        """
        Return the cached profile or refresh it through ``loader``.

        Loader errors propagate; a None result is not cached.
        """
        profile = self.get(user_id)
        if profile is not None:
            return profile

        profile = await loader(user_id)
        if profile is not None:
            self.put(profile)
        return profile


__all__ = ["CachedProfile", "ProfileCache"]
