"""
Abstract store interface.

The relational database is an external collaborator; the real-time core
only needs the handful of predicate lookups and inserts below. Implement
this interface to plug in another backend.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


class StoreError(Exception):
    """A downstream store call failed."""


@dataclass(frozen=True)
class UserProfile:
    """
    Public profile fields of a user.

    Attributes:
        id: Unique user identifier
        username: Handle shown in chat
        full_name: Optional display name
        avatar_url: Optional avatar image URL
    """
    id: str
    username: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize profile to dictionary."""
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProfile":
        """Deserialize profile from dictionary."""
        return cls(
            id=str(data["id"]),
            username=data.get("username"),
            full_name=data.get("full_name"),
            avatar_url=data.get("avatar_url"),
        )


@dataclass(frozen=True)
class ChatRoom:
    """A chat room belonging to a project."""
    id: str
    project_id: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


class ChatStore(ABC):
    """
    Abstract base class for the data store.

    Example:
        class MyStore(ChatStore):
            async def get_user_profile(self, user_id: str) -> UserProfile | None:
                # Load from your database
                ...
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize storage connection."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close storage connection."""
        ...

    # Users and friendships

    @abstractmethod
    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        """
        Point lookup of a user's profile.

        Returns:
            The profile, or None if the user does not exist
        """
        ...

    @abstractmethod
    async def list_friend_ids(self, user_id: str) -> list[str]:
        """Ids of every user with an accepted friendship with ``user_id``."""
        ...

    @abstractmethod
    async def are_friends(self, user_id: str, other_id: str) -> bool:
        """True if an accepted friendship exists in either direction."""
        ...

    # Projects and chat rooms

    @abstractmethod
    async def is_project_member(self, user_id: str, project_id: str) -> bool:
        """True if the user is an active member or the owner of the project."""
        ...

    @abstractmethod
    async def list_chat_rooms(self, project_id: str, limit: int = 50) -> list[ChatRoom]:
        """Chat rooms of a project."""
        ...

    @abstractmethod
    async def get_chat_room(self, room_id: str) -> ChatRoom | None:
        """Point lookup of a chat room."""
        ...

    # Messages

    @abstractmethod
    async def insert_chat_message(
        self,
        room_id: str,
        user_id: str,
        content: str,
        message_type: str = "text",
        reply_to_message_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Persist a chat message.

        Returns:
            The stored row with the sender's profile attached under ``user``
        """
        ...

    @abstractmethod
    async def get_chat_message(self, message_id: str) -> dict[str, Any] | None:
        """Fetch a chat message (with ``user``) by id."""
        ...

    @abstractmethod
    async def insert_friend_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
    ) -> dict[str, Any]:
        """Persist a direct message and return the stored row."""
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryStore(ChatStore):
    """
    In-memory store for development and testing.

    Data is not persisted across restarts.
    """

    def __init__(self):
        self._users: dict[str, UserProfile] = {}
        self._friendships: list[tuple[str, str, str]] = []
        self._members: dict[tuple[str, str], str] = {}
        self._owners: dict[str, str] = {}
        self._rooms: dict[str, ChatRoom] = {}
        self.chat_messages: dict[str, dict[str, Any]] = {}
        self.friend_messages: list[dict[str, Any]] = []

    async def connect(self) -> None:
        """No-op for memory storage."""
        pass

    async def disconnect(self) -> None:
        """No-op for memory storage."""
        pass

    # Seeding helpers

    def add_user(
        self,
        user_id: str,
        username: str | None = None,
        full_name: str | None = None,
        avatar_url: str | None = None,
    ) -> UserProfile:
        profile = UserProfile(
            id=user_id,
            username=username or user_id,
            full_name=full_name,
            avatar_url=avatar_url,
        )
        self._users[user_id] = profile
        return profile

    def add_friendship(self, requester_id: str, addressee_id: str, status: str = "accepted") -> None:
        self._friendships.append((requester_id, addressee_id, status))

    def add_project_member(self, project_id: str, user_id: str, status: str = "active") -> None:
        self._members[(project_id, user_id)] = status

    def set_project_owner(self, project_id: str, user_id: str) -> None:
        self._owners[project_id] = user_id

    def add_chat_room(self, room_id: str, project_id: str, name: str | None = None) -> ChatRoom:
        room = ChatRoom(id=room_id, project_id=project_id, name=name)
        self._rooms[room_id] = room
        return room

    # ChatStore

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        return self._users.get(user_id)

    async def list_friend_ids(self, user_id: str) -> list[str]:
        friend_ids = []
        for requester, addressee, status in self._friendships:
            if status != "accepted":
                continue
            if requester == user_id:
                friend_ids.append(addressee)
            elif addressee == user_id:
                friend_ids.append(requester)
        return friend_ids

    async def are_friends(self, user_id: str, other_id: str) -> bool:
        return any(
            status == "accepted" and {requester, addressee} == {user_id, other_id}
            for requester, addressee, status in self._friendships
        )

    async def is_project_member(self, user_id: str, project_id: str) -> bool:
        if self._owners.get(project_id) == user_id:
            return True
        return self._members.get((project_id, user_id)) == "active"

    async def list_chat_rooms(self, project_id: str, limit: int = 50) -> list[ChatRoom]:
        rooms = [room for room in self._rooms.values() if room.project_id == project_id]
        return rooms[:limit]

    async def get_chat_room(self, room_id: str) -> ChatRoom | None:
        return self._rooms.get(room_id)

    async def insert_chat_message(
        self,
        room_id: str,
        user_id: str,
        content: str,
        message_type: str = "text",
        reply_to_message_id: str | None = None,
    ) -> dict[str, Any]:
        sender = self._users.get(user_id)
        if sender is None:
            raise StoreError(f"Unknown sender {user_id}")

        row = {
            "id": str(uuid.uuid4()),
            "room_id": room_id,
            "user_id": user_id,
            "message_type": message_type,
            "content": content,
            "reply_to_message_id": reply_to_message_id,
            "created_at": _now_iso(),
        }
        self.chat_messages[row["id"]] = row
        return {**row, "user": sender.to_dict()}

    async def get_chat_message(self, message_id: str) -> dict[str, Any] | None:
        row = self.chat_messages.get(message_id)
        if row is None:
            return None
        sender = self._users.get(row["user_id"])
        return {**row, "user": sender.to_dict() if sender else None}

    async def insert_friend_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
    ) -> dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": content,
            "is_read": False,
            "created_at": _now_iso(),
        }
        self.friend_messages.append(row)
        return dict(row)
