"""
Chat message relay.

Validates, persists and fans out project chat messages and direct messages
between friends. Every failure degrades to an ``error`` frame to the sender;
nothing is raised to the transport loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable

from .config import MAX_MESSAGE_LENGTH, MESSAGE_RATE_LIMIT, MESSAGE_RATE_WINDOW
from .emitter import Emitter
from .protocol import (
    ErrorCode,
    FriendMessageBroadcast,
    FriendMessageSent,
    MessageSentMessage,
    NewMessageBroadcast,
    SendChatMessage,
    SendFriendMessage,
)
from .registry import Connection, chat_room, mailbox_room
from .storage import ChatStore

logger = logging.getLogger(__name__)

INVALID_DATA = "Invalid message data"
SEND_FAILED = "Failed to send message"


class SlidingWindowRateLimiter:
    """Per-key limit of ``limit`` events in any rolling ``window`` seconds."""

    def __init__(
        self,
        limit: int = MESSAGE_RATE_LIMIT,
        window: float = MESSAGE_RATE_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._events: dict[str, deque[float]] = {}

    def is_allowed(self, key: str) -> bool:
        """Check if an event is allowed and record it."""
        now = self._clock()
        events = self._events.setdefault(key, deque())
        while events and events[0] <= now - self.window:
            events.popleft()

        if len(events) >= self.limit:
            return False
        events.append(now)
        return True

    def cleanup(self, key: str) -> None:
        """Clean up state for a disconnected connection."""
        self._events.pop(key, None)


class MessageRelay:
    """Room chat and friend-to-friend messaging."""

    def __init__(
        self,
        emitter: Emitter,
        store: ChatStore,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        max_message_length: int = MAX_MESSAGE_LENGTH,
    ):
        self._emitter = emitter
        self._store = store
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._max_message_length = max_message_length

    @property
    def rate_limiter(self) -> SlidingWindowRateLimiter:
        return self._rate_limiter

    async def send_room_message(self, connection: Connection, message: SendChatMessage) -> dict[str, Any] | None:
        """
        Persist a chat message and relay it to the room.

        Returns:
            The persisted message, or None if it was rejected.
        """
        room_id = message.room_id
        project_id = message.project_id
        content = message.content

        if not room_id or not project_id or not content or not content.strip():
            await self._emitter.send_error(connection, ErrorCode.INVALID_MESSAGE, INVALID_DATA)
            return None

        if not self._rate_limiter.is_allowed(connection.id):
            await self._emitter.send_error(connection, ErrorCode.RATE_LIMITED, "Message rate limit exceeded")
            return None

        content = content[:self._max_message_length]

        try:
            room, is_member = await asyncio.gather(
                self._store.get_chat_room(room_id),
                self._store.is_project_member(connection.user_id, project_id),
            )
        except Exception:
            logger.exception(f"Chat message lookups failed for room {room_id}")
            await self._emitter.send_error(connection, ErrorCode.INTERNAL_ERROR, SEND_FAILED)
            return None

        if room is None or room.project_id != project_id:
            await self._emitter.send_error(connection, ErrorCode.NOT_FOUND, "Chat room not found")
            return None
        if not is_member:
            await self._emitter.send_error(connection, ErrorCode.PERMISSION_DENIED, "Not a project member")
            return None

        try:
            stored = await self._store.insert_chat_message(
                room_id=room_id,
                user_id=connection.user_id,
                content=content,
                message_type=message.message_type,
                reply_to_message_id=message.reply_to_message_id,
            )
        except Exception:
            logger.exception(f"Failed to persist chat message in room {room_id}")
            await self._emitter.send_error(connection, ErrorCode.INTERNAL_ERROR, SEND_FAILED)
            return None

        if message.reply_to_message_id:
            reply_to = await self._fetch_reply(message.reply_to_message_id)
            if reply_to is not None:
                stored["reply_to"] = reply_to

        await self._emitter.broadcast(
            chat_room(room_id),
            NewMessageBroadcast(message=stored, room_id=room_id, project_id=room.project_id),
            exclude=connection,
        )
        await self._emitter.send(connection, MessageSentMessage(message=stored, room_id=room_id))
        return stored

    async def _fetch_reply(self, message_id: str) -> dict[str, Any] | None:
        """Best-effort lookup of the message being replied to."""
        try:
            return await self._store.get_chat_message(message_id)
        except Exception as exc:
            logger.warning(f"Could not load replied-to message {message_id}: {exc}")
            return None

    async def send_friend_message(self, connection: Connection, message: SendFriendMessage) -> dict[str, Any] | None:
        """
        Persist a direct message and deliver it to the recipient's mailbox.

        Returns:
            The persisted message, or None if it was rejected.
        """
        recipient_id = message.recipient_id
        content = message.content.strip() if message.content else ""

        if not recipient_id or not content:
            await self._emitter.send_error(connection, ErrorCode.INVALID_MESSAGE, INVALID_DATA)
            return None

        try:
            are_friends = await self._store.are_friends(connection.user_id, recipient_id)
        except Exception:
            logger.exception(f"Friendship lookup failed for {connection.user_id} -> {recipient_id}")
            await self._emitter.send_error(connection, ErrorCode.INTERNAL_ERROR, SEND_FAILED)
            return None

        if not are_friends:
            await self._emitter.send_error(connection, ErrorCode.PERMISSION_DENIED, "Not friends with this user")
            return None

        try:
            stored = await self._store.insert_friend_message(
                sender_id=connection.user_id,
                recipient_id=recipient_id,
                content=content,
            )
        except Exception:
            logger.exception(f"Failed to persist friend message to {recipient_id}")
            await self._emitter.send_error(connection, ErrorCode.INTERNAL_ERROR, SEND_FAILED)
            return None

        await self._emitter.broadcast(
            mailbox_room(recipient_id),
            FriendMessageBroadcast(sender_id=connection.user_id, message=stored),
        )
        await self._emitter.send(connection, FriendMessageSent(message=stored))
        return stored

    def forget(self, connection: Connection) -> None:
        """Drop per-connection state on disconnect."""
        self._rate_limiter.cleanup(connection.id)


__all__ = ["MessageRelay", "SlidingWindowRateLimiter"]
