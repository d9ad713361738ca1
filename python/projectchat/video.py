"""
WebRTC call signaling.

Pure routing: the router tracks which connections joined which call room
and relays opaque offer/answer/ICE payloads to exactly one peer. All media
negotiation state lives in the clients.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from .emitter import Emitter
from .protocol import (
    MAX_CALL_MESSAGE_LENGTH,
    ScreenShareStartedBroadcast,
    ScreenShareStoppedBroadcast,
    VideoAnswerRelay,
    VideoCallChatBroadcast,
    VideoCurrentParticipants,
    VideoIceCandidateRelay,
    VideoOfferRelay,
    VideoParticipant,
    VideoParticipantJoined,
    VideoParticipantLeft,
)
from .registry import VIDEO_ROOM_PREFIX, Connection, ConnectionRegistry, video_room

logger = logging.getLogger(__name__)


class VideoSignalingRouter:
    """Call membership, peer-to-peer signal relay and call-wide notices."""

    def __init__(self, registry: ConnectionRegistry, emitter: Emitter):
        self._registry = registry
        self._emitter = emitter

    def participants(self, room_id: str, exclude: Connection | None = None) -> list[VideoParticipant]:
        return [
            VideoParticipant(
                user_id=connection.user_id,
                username=connection.username,
                avatar_url=connection.profile.avatar_url,
            )
            for connection in self._registry.connections_in_room(video_room(room_id))
            if exclude is None or connection.id != exclude.id
        ]

    async def join(self, connection: Connection, room_id: str) -> list[VideoParticipant]:
        """
        Join a call, announce the newcomer and send it the current roster.

        Returns:
            The participants already in the call.
        """
        room = video_room(room_id)
        self._registry.join_room(connection.id, room)
        logger.debug(f"{connection.username} joined video room {room}")

        await self._emitter.broadcast(
            room,
            VideoParticipantJoined(
                user_id=connection.user_id,
                username=connection.username,
                avatar_url=connection.profile.avatar_url,
                room_id=room_id,
            ),
            exclude=connection,
        )

        participants = self.participants(room_id, exclude=connection)
        await self._emitter.send(
            connection,
            VideoCurrentParticipants(participants=participants, room_id=room_id),
        )
        return participants

    async def _relay(self, room_id: str, target_user_id: str, message: Any) -> bool:
        """Forward to the target's connection in the call; drop silently if absent."""
        target = self._registry.find_connection(target_user_id, video_room(room_id))
        if target is None:
            logger.debug(f"Dropping {message.type} for {target_user_id}: not in video room {room_id}")
            return False
        return await self._emitter.send(target, message)

    async def offer(self, connection: Connection, room_id: str, target_user_id: str, offer: Any) -> bool:
        logger.debug(f"Offer from {connection.username} to user {target_user_id}")
        return await self._relay(
            room_id,
            target_user_id,
            VideoOfferRelay(
                user_id=connection.user_id,
                username=connection.username,
                avatar_url=connection.profile.avatar_url,
                offer=offer,
                room_id=room_id,
            ),
        )

    async def answer(self, connection: Connection, room_id: str, target_user_id: str, answer: Any) -> bool:
        logger.debug(f"Answer from {connection.username} to user {target_user_id}")
        return await self._relay(
            room_id,
            target_user_id,
            VideoAnswerRelay(
                user_id=connection.user_id,
                username=connection.username,
                answer=answer,
                room_id=room_id,
            ),
        )

    async def ice_candidate(self, connection: Connection, room_id: str, target_user_id: str, candidate: Any) -> bool:
        return await self._relay(
            room_id,
            target_user_id,
            VideoIceCandidateRelay(
                user_id=connection.user_id,
                candidate=candidate,
                room_id=room_id,
            ),
        )

    async def leave(self, connection: Connection, room_id: str) -> None:
        """Leave a call and tell the remaining participants."""
        room = video_room(room_id)
        self._registry.leave_room(connection.id, room)
        logger.debug(f"{connection.username} left video room {room}")

        await self._emitter.broadcast(
            room,
            VideoParticipantLeft(user_id=connection.user_id, room_id=room_id),
            exclude=connection,
        )

    async def notify_disconnect(self, connection: Connection, rooms: Iterable[str]) -> int:
        """
        Announce a closed connection to every call it was in.

        Returns:
            Number of call rooms notified.
        """
        notified = 0
        for room in rooms:
            if not room.startswith(VIDEO_ROOM_PREFIX):
                continue
            room_id = room[len(VIDEO_ROOM_PREFIX):]
            await self._emitter.broadcast(
                room,
                VideoParticipantLeft(user_id=connection.user_id, room_id=room_id),
                exclude=connection,
            )
            notified += 1
        return notified

    async def screen_share_started(self, connection: Connection, room_id: str) -> None:
        await self._emitter.broadcast(
            video_room(room_id),
            ScreenShareStartedBroadcast(
                user_id=connection.user_id,
                username=connection.username,
                room_id=room_id,
            ),
            exclude=connection,
        )

    async def screen_share_stopped(self, connection: Connection, room_id: str) -> None:
        await self._emitter.broadcast(
            video_room(room_id),
            ScreenShareStoppedBroadcast(user_id=connection.user_id, room_id=room_id),
            exclude=connection,
        )

    async def call_message(self, connection: Connection, room_id: str, message: str | None) -> bool:
        """
        Relay an in-call chat line.

        Empty lines are dropped and long lines truncated, both without a reply.
        """
        text = message.strip() if message else ""
        if not text:
            return False
        text = text[:MAX_CALL_MESSAGE_LENGTH]

        await self._emitter.broadcast(
            video_room(room_id),
            VideoCallChatBroadcast(
                user_id=connection.user_id,
                username=connection.username,
                message=text,
                timestamp=datetime.now(timezone.utc).isoformat(),
                room_id=room_id,
            ),
            exclude=connection,
        )
        return True


__all__ = ["VideoSignalingRouter"]
