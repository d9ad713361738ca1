"""
Connection teardown, periodic maintenance and shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .auth import AuthenticationGate
from .config import STALE_SWEEP_INTERVAL, STATS_INTERVAL
from .presence import PresenceManager
from .registry import Connection, ConnectionRegistry
from .relay import MessageRelay
from .tasks import DetachedTaskGroup
from .typing_indicators import TypingIndicators
from .video import VideoSignalingRouter

logger = logging.getLogger(__name__)

# WebSocket close code for server shutdown ("going away")
CLOSE_GOING_AWAY = 1001


class LifecycleController:
    """
    Unwinds per-connection state and runs the background timers.

    Handles:
    - Disconnect cleanup (typing timers, rate-limit window, provisional
      connection counter, registry entries, participant-left and offline
      notices)
    - Periodic reconciliation of the provisional counter
    - Periodic diagnostic stats
    - Graceful shutdown
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        gate: AuthenticationGate,
        presence: PresenceManager,
        relay: MessageRelay,
        typing: TypingIndicators,
        video: VideoSignalingRouter,
        tasks: DetachedTaskGroup | None = None,
        sweep_interval: float = STALE_SWEEP_INTERVAL,
        stats_interval: float = STATS_INTERVAL,
    ):
        self._registry = registry
        self._gate = gate
        self._presence = presence
        self._relay = relay
        self._typing = typing
        self._video = video
        self._tasks = tasks or DetachedTaskGroup("lifecycle")
        self._sweep_interval = sweep_interval
        self._stats_interval = stats_interval
        self._sweep_task: asyncio.Task | None = None
        self._stats_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._sweep_task is not None

    async def handle_disconnect(self, connection: Connection, reason: str = "") -> set[str]:
        """
        Clean up after a closed connection.

        Returns:
            The rooms the connection had joined.
        """
        logger.debug(f"[Disconnect] {connection.username} - {reason}")

        self._typing.cancel_all(connection.id)
        self._relay.forget(connection)

        if not self._registry.is_registered(connection.id):
            return set()

        self._gate.release(connection.user_id)
        rooms = self._registry.leave_all(connection.id)

        await self._video.notify_disconnect(connection, rooms)
        await self._presence.notify_offline(connection, rooms)
        return rooms

    def sweep(self) -> int:
        """
        Drop provisional counter entries for users with no live connection
        and expired profile cache entries.

        Returns:
            Number of counter entries removed.
        """
        cleaned = self._gate.sweep()
        if cleaned:
            logger.info(f"[Cleanup] Removed {cleaned} stale connection counter entries")
        pruned = self._gate.cache.prune()
        if pruned:
            logger.info(f"[Cleanup] Pruned {pruned} expired cached profiles")
        return cleaned

    def log_stats(self) -> dict[str, int]:
        stats = self._registry.stats()
        logger.info(
            f"[Stats] Connections: {stats['total_connections']}, "
            f"Users: {stats['unique_users']}, "
            f"Room memberships: {stats['total_room_memberships']}"
        )
        return stats

    async def _every(self, interval: float, action: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                action()
            except Exception:
                logger.exception("Periodic maintenance failed")

    async def start(self) -> None:
        """Start the sweep and stats timers."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._every(self._sweep_interval, self.sweep))
            self._stats_task = asyncio.create_task(self._every(self._stats_interval, self.log_stats))

    async def stop(self) -> None:
        """Stop both timers."""
        for task in (self._sweep_task, self._stats_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
        self._stats_task = None

    async def shutdown(self) -> None:
        """Stop timers, close every live connection and drain background work."""
        logger.info("Shutting down real-time connections...")
        await self.stop()

        closers: list[Awaitable[None]] = [
            connection.close(code=CLOSE_GOING_AWAY, reason="Server shutting down")
            for connection in self._registry.connections()
        ]
        results = await asyncio.gather(*closers, return_exceptions=True)
        failures = sum(1 for result in results if isinstance(result, Exception))
        if failures:
            logger.warning(f"{failures} connections failed to close cleanly")

        await self._tasks.drain()
        logger.info(f"Closed {len(results)} connections")


__all__ = ["LifecycleController", "CLOSE_GOING_AWAY"]
