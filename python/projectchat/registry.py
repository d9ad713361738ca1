"""
Connection registry for projectchat.

Tracks which authenticated user owns which live connection and which rooms
each connection has joined. Pure in-memory structure: nothing here performs
I/O or awaits, so every mutation is atomic with respect to other handlers
on the event loop.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterator

from .storage import UserProfile

# Room name prefixes
PROJECT_ROOM_PREFIX = "project_"
CHAT_ROOM_PREFIX = "room_"
VIDEO_ROOM_PREFIX = "video_"
MAILBOX_ROOM_PREFIX = "user_"


def project_room(project_id: str) -> str:
    return f"{PROJECT_ROOM_PREFIX}{project_id}"


def chat_room(room_id: str) -> str:
    return f"{CHAT_ROOM_PREFIX}{room_id}"


def video_room(room_id: str) -> str:
    return f"{VIDEO_ROOM_PREFIX}{room_id}"


def mailbox_room(user_id: str) -> str:
    return f"{MAILBOX_ROOM_PREFIX}{user_id}"


@dataclass(frozen=True)
class ConnectionIdentity:
    """
    The user a connection was authenticated as.

    Attributes:
        user_id: Unique user identifier
        profile: Profile resolved at handshake time
        capabilities: Roles granted by the credential
    """
    user_id: str
    profile: UserProfile
    capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def username(self) -> str | None:
        return self.profile.username

    @property
    def avatar_url(self) -> str | None:
        return self.profile.avatar_url


class Connection:
    """One live WebSocket session bound to an identity."""

    def __init__(self, websocket: Any, identity: ConnectionIdentity, connection_id: str | None = None):
        self.id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self.identity = identity
        self.connected_at = time.time()

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def username(self) -> str | None:
        return self.identity.username

    @property
    def profile(self) -> UserProfile:
        return self.identity.profile

    async def send(self, data: dict[str, Any]) -> None:
        """Send one JSON frame."""
        await self.websocket.send_json(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.websocket.close(code=code, reason=reason)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r})"


class ConnectionRegistry:
    """
    In-memory mapping of users to connections and connections to rooms.

    Provides:
    - Registration and removal of connections (several per user)
    - Room membership per connection
    - Lookups used by presence and signaling (who is in a room, is a user
      online, which connection of a user is in a room)

    Lookups scan the live connections. Callers go through the methods below
    so an indexed structure can replace the scans without touching them.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._user_connections: dict[str, set[str]] = {}
        self._rooms: dict[str, set[str]] = {}

    def register(self, connection: Connection) -> None:
        """Add a connection to its user's set and give it an empty room set."""
        if connection.id in self._connections:
            return
        self._connections[connection.id] = connection
        self._user_connections.setdefault(connection.user_id, set()).add(connection.id)
        self._rooms[connection.id] = set()

    def join_room(self, connection_id: str, room: str) -> None:
        self._rooms.setdefault(connection_id, set()).add(room)

    def leave_room(self, connection_id: str, room: str) -> bool:
        """Remove one room from a connection. Returns True if it was a member."""
        rooms = self._rooms.get(connection_id)
        if rooms is None or room not in rooms:
            return False
        rooms.discard(room)
        return True

    def leave_all(self, connection_id: str) -> set[str]:
        """
        Remove a connection entirely.

        Returns:
            The rooms the connection had joined, for notification purposes.
            Unknown connections yield an empty set.
        """
        connection = self._connections.pop(connection_id, None)
        rooms = self._rooms.pop(connection_id, set())

        if connection is not None:
            user_connections = self._user_connections.get(connection.user_id)
            if user_connections is not None:
                user_connections.discard(connection_id)
                if not user_connections:
                    del self._user_connections[connection.user_id]

        return rooms

    def is_registered(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def connections(self) -> list[Connection]:
        """Snapshot of every live connection."""
        return list(self._connections.values())

    def __iter__(self) -> Iterator[Connection]:
        return iter(self.connections())

    def __len__(self) -> int:
        return len(self._connections)

    def rooms_of(self, connection_id: str) -> set[str]:
        """Copy of a connection's room set."""
        return set(self._rooms.get(connection_id, ()))

    def is_in_room(self, connection_id: str, room: str) -> bool:
        return room in self._rooms.get(connection_id, ())

    def count_for_user(self, user_id: str) -> int:
        return len(self._user_connections.get(user_id, ()))

    def connections_in_room(self, room: str) -> list[Connection]:
        """Every live connection whose membership includes ``room``."""
        return [
            connection
            for connection_id, connection in self._connections.items()
            if room in self._rooms.get(connection_id, ())
        ]

    def find_connection(self, user_id: str, room: str) -> Connection | None:
        """The first connection of ``user_id`` that has joined ``room``."""
        for connection_id, connection in self._connections.items():
            if connection.user_id == user_id and room in self._rooms.get(connection_id, ()):
                return connection
        return None

    def is_user_online(self, user_id: str) -> bool:
        return any(connection.user_id == user_id for connection in self._connections.values())

    def online_user_ids(self) -> set[str]:
        return {connection.user_id for connection in self._connections.values()}

    def stats(self) -> dict[str, int]:
        """Aggregate counts for diagnostics."""
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
            "total_room_memberships": sum(len(rooms) for rooms in self._rooms.values()),
        }


__all__ = [
    "Connection",
    "ConnectionIdentity",
    "ConnectionRegistry",
    "PROJECT_ROOM_PREFIX",
    "CHAT_ROOM_PREFIX",
    "VIDEO_ROOM_PREFIX",
    "MAILBOX_ROOM_PREFIX",
    "project_room",
    "chat_room",
    "video_room",
    "mailbox_room",
]
