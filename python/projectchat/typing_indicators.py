"""
Typing indicators.

Each (connection, room) pair is either IDLE or TYPING. A start signal in
IDLE broadcasts ``user_typing`` and arms an expiry timer; further start
signals only re-arm it. An explicit stop or the timer firing returns to IDLE
and broadcasts ``user_stopped_typing``. Disconnect cancels the timers
without broadcasting.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from .config import TYPING_TIMEOUT
from .emitter import Emitter
from .protocol import UserStoppedTypingBroadcast, UserTypingBroadcast
from .registry import Connection, chat_room
from .tasks import DetachedTaskGroup

logger = logging.getLogger(__name__)


class TypingState(str, Enum):
    IDLE = "idle"
    TYPING = "typing"


@dataclass
class TypingEntry:
    """An armed indicator: state TYPING with its expiry handle."""

    connection: Connection
    project_id: str | None
    timer: asyncio.TimerHandle


class TypingIndicators:
    """Debounced typing state per (connection, room)."""

    def __init__(
        self,
        emitter: Emitter,
        tasks: DetachedTaskGroup | None = None,
        timeout: float = TYPING_TIMEOUT,
    ):
        self._emitter = emitter
        self._tasks = tasks or DetachedTaskGroup("typing")
        self._timeout = timeout
        self._entries: dict[tuple[str, str], TypingEntry] = {}

    def state(self, connection_id: str, room_id: str) -> TypingState:
        if (connection_id, room_id) in self._entries:
            return TypingState.TYPING
        return TypingState.IDLE

    def _arm(self, connection: Connection, room_id: str) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(self._timeout, self._expire, connection.id, room_id)

    async def start(self, connection: Connection, room_id: str, project_id: str | None = None) -> bool:
        """
        Handle a start signal.

        Returns:
            True if ``user_typing`` was broadcast (IDLE -> TYPING).
        """
        key = (connection.id, room_id)
        entry = self._entries.get(key)
        if entry is not None:
            entry.timer.cancel()
            entry.timer = self._arm(connection, room_id)
            return False

        self._entries[key] = TypingEntry(
            connection=connection,
            project_id=project_id,
            timer=self._arm(connection, room_id),
        )
        await self._emitter.broadcast(
            chat_room(room_id),
            UserTypingBroadcast(
                user_id=connection.user_id,
                username=connection.username,
                room_id=room_id,
                project_id=project_id,
            ),
            exclude=connection,
        )
        return True

    async def stop(self, connection: Connection, room_id: str, project_id: str | None = None) -> None:
        """Handle an explicit stop signal. Always broadcasts ``user_stopped_typing``."""
        entry = self._entries.pop((connection.id, room_id), None)
        if entry is not None:
            entry.timer.cancel()
            project_id = project_id or entry.project_id

        await self._broadcast_stopped(connection, room_id, project_id)

    def _expire(self, connection_id: str, room_id: str) -> None:
        entry = self._entries.pop((connection_id, room_id), None)
        if entry is None:
            return
        self._tasks.spawn(
            self._broadcast_stopped(entry.connection, room_id, entry.project_id),
            name=f"typing-expire-{connection_id}-{room_id}",
        )

    async def _broadcast_stopped(self, connection: Connection, room_id: str, project_id: str | None) -> None:
        await self._emitter.broadcast(
            chat_room(room_id),
            UserStoppedTypingBroadcast(
                user_id=connection.user_id,
                room_id=room_id,
                project_id=project_id,
            ),
            exclude=connection,
        )

    def cancel_all(self, connection_id: str) -> int:
        """
        Cancel every armed timer of a connection without broadcasting.

        Returns:
            Number of timers cancelled.
        """
        keys = [key for key in self._entries if key[0] == connection_id]
        for key in keys:
            self._entries.pop(key).timer.cancel()
        if keys:
            logger.debug(f"Cancelled {len(keys)} typing timers for connection {connection_id}")
        return len(keys)


__all__ = ["TypingEntry", "TypingIndicators", "TypingState"]
