"""
Room membership and presence for projectchat.

Handles joining project, chat and mailbox rooms, announces users to their
friends, answers "who is online" queries and emits the scoped offline
events when a connection goes away.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .config import CHAT_ROOM_LIMIT
from .emitter import Emitter
from .protocol import (
    ErrorCode,
    FriendOnlineMessage,
    OnlineFriendsListMessage,
    OnlineUsersMessage,
    RoomsJoinedMessage,
    UserOfflineBroadcast,
)
from .registry import (
    PROJECT_ROOM_PREFIX,
    Connection,
    ConnectionRegistry,
    chat_room,
    mailbox_room,
    project_room,
)
from .storage import ChatStore

logger = logging.getLogger(__name__)


class PresenceManager:
    """
    Manages room joins and online status.

    Provides methods for:
    - Joining a project's room and all of its chat rooms
    - Joining the personal mailbox room and announcing to friends
    - Listing the connections present in a project
    - Broadcasting offline events on disconnect
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        emitter: Emitter,
        store: ChatStore,
        chat_room_limit: int = CHAT_ROOM_LIMIT,
    ):
        """
        Initialize the presence manager.

        Args:
            registry: Live connections and their rooms.
            emitter: Outbound delivery.
            store: Membership, room and friendship lookups.
            chat_room_limit: Maximum chat rooms joined per project.
        """
        self._registry = registry
        self._emitter = emitter
        self._store = store
        self._chat_room_limit = chat_room_limit

    async def join_project_rooms(self, connection: Connection, project_id: str) -> list[str]:
        """
        Join a project's room and every chat room belonging to it.

        Args:
            connection: The requesting connection.
            project_id: The project to join.

        Returns:
            The room names joined (empty if the join was refused).
        """
        membership, rooms = await asyncio.gather(
            self._store.is_project_member(connection.user_id, project_id),
            self._store.list_chat_rooms(project_id, limit=self._chat_room_limit),
            return_exceptions=True,
        )

        if isinstance(membership, Exception):
            logger.error(f"Membership lookup failed for project {project_id}: {membership}")
            await self._emitter.send_error(connection, ErrorCode.INTERNAL_ERROR, "Failed to join project rooms")
            return []
        if not membership:
            await self._emitter.send_error(connection, ErrorCode.PERMISSION_DENIED, "Not a project member")
            return []
        if isinstance(rooms, Exception):
            logger.error(f"Chat room lookup failed for project {project_id}: {rooms}")
            await self._emitter.send_error(connection, ErrorCode.INTERNAL_ERROR, "Failed to fetch chat rooms")
            return []

        # The connection may have closed while the lookups were in flight
        if not self._registry.is_registered(connection.id):
            return []

        joined = [project_room(project_id)] + [chat_room(room.id) for room in rooms]
        for room in joined:
            self._registry.join_room(connection.id, room)

        await self._emitter.send(
            connection,
            RoomsJoinedMessage(project_id=project_id, rooms=[room.to_dict() for room in rooms]),
        )
        return joined

    async def join_friends_chat(self, connection: Connection) -> list[str]:
        """
        Join the mailbox room and tell online friends this user is here.

        Friend lookup failures are logged and otherwise ignored.

        Returns:
            Ids of friends with at least one live connection.
        """
        self._registry.join_room(connection.id, mailbox_room(connection.user_id))

        try:
            friend_ids = await self._store.list_friend_ids(connection.user_id)
        except Exception:
            logger.exception(f"Friend lookup failed for user {connection.user_id}")
            return []

        if not self._registry.is_registered(connection.id):
            return []

        await self._emitter.broadcast_many(
            (mailbox_room(friend_id) for friend_id in friend_ids),
            FriendOnlineMessage(user_id=connection.user_id, username=connection.username),
        )

        online_friends = [
            friend_id for friend_id in friend_ids if self._registry.is_user_online(friend_id)
        ]
        await self._emitter.send(connection, OnlineFriendsListMessage(online_friends=online_friends))
        return online_friends

    def online_users(self, project_id: str) -> list[dict[str, str | None]]:
        """
        Snapshot of the connections present in a project.

        One entry per connection: a user with two connections is listed twice.
        """
        return [
            {
                "id": connection.user_id,
                "username": connection.profile.username,
                "full_name": connection.profile.full_name,
                "avatar_url": connection.profile.avatar_url,
            }
            for connection in self._registry.connections_in_room(project_room(project_id))
        ]

    async def get_online_users(self, connection: Connection, project_id: str) -> None:
        await self._emitter.send(
            connection,
            OnlineUsersMessage(project_id=project_id, users=self.online_users(project_id)),
        )

    async def notify_offline(self, connection: Connection, rooms: Iterable[str]) -> int:
        """
        Emit ``user_offline`` to each project room in ``rooms``.

        Returns:
            Number of rooms notified.
        """
        notified = 0
        for room in rooms:
            if not room.startswith(PROJECT_ROOM_PREFIX):
                continue
            project_id = room[len(PROJECT_ROOM_PREFIX):]
            await self._emitter.broadcast(
                room,
                UserOfflineBroadcast(user_id=connection.user_id, project_id=project_id),
                exclude=connection,
            )
            notified += 1
        return notified


__all__ = ["PresenceManager"]
