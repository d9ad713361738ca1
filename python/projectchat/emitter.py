"""
Outbound delivery: single-connection sends and room fan-out.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from .protocol import ErrorCode, ErrorMessage, WireModel
from .registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


def _serialize(message: Any) -> dict[str, Any]:
    if isinstance(message, WireModel):
        return message.to_wire()
    if hasattr(message, "model_dump"):
        return message.model_dump()
    return message


class Emitter:
    """Sends frames to connections and rooms tracked by the registry."""

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry

    async def send(self, connection: Connection, message: Any) -> bool:
        """
        Send a message to one connection.

        Returns:
            True if the frame was written.
        """
        try:
            await connection.send(_serialize(message))
            return True
        except Exception as exc:
            logger.warning(f"Failed to send to connection {connection.id}: {exc}")
            return False

    async def send_error(self, connection: Connection, code: ErrorCode, message: str) -> None:
        """Send an error frame. Never raises."""
        await self.send(connection, ErrorMessage(code=code.value, message=message))

    async def broadcast(
        self,
        room: str,
        message: Any,
        exclude: Connection | None = None,
    ) -> int:
        """
        Broadcast a message to every connection in a room.

        Args:
            room: The room name.
            message: The message to send (will be JSON serialized).
            exclude: Optional connection to skip (usually the sender).

        Returns:
            Number of connections the frame was delivered to.
        """
        targets = [
            connection
            for connection in self._registry.connections_in_room(room)
            if exclude is None or connection.id != exclude.id
        ]
        return await self._deliver(targets, _serialize(message))

    async def broadcast_many(
        self,
        rooms: Iterable[str],
        message: Any,
        exclude: Connection | None = None,
    ) -> int:
        """Broadcast to the union of several rooms, each connection at most once."""
        seen: dict[str, Connection] = {}
        for room in rooms:
            for connection in self._registry.connections_in_room(room):
                if exclude is not None and connection.id == exclude.id:
                    continue
                seen.setdefault(connection.id, connection)
        return await self._deliver(list(seen.values()), _serialize(message))

    async def _deliver(self, targets: list[Connection], data: dict[str, Any]) -> int:
        if not targets:
            return 0

        results = await asyncio.gather(
            *(connection.send(data) for connection in targets),
            return_exceptions=True,
        )
        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to send to connection {connection.id}: {result}")
            else:
                delivered += 1
        return delivered


__all__ = ["Emitter"]
