"""
Detached background work.

Best-effort work (timer-driven broadcasts, diagnostics) runs as tasks that
nobody awaits on the request path. The group keeps a reference to every
task until it finishes and logs failures at the task boundary.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class DetachedTaskGroup:
    """Owns fire-and-forget tasks and reports their errors."""

    def __init__(self, name: str = "detached"):
        self._name = name
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop without awaiting it."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"[{self._name}] background task {task.get_name()} failed",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """Wait until every task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()


__all__ = ["DetachedTaskGroup"]
