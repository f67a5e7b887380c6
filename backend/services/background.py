"""Best-effort fire-and-forget dispatch for side effects after a reply is sent.

Tasks are tracked so they are not garbage collected mid-flight and can be
cancelled on shutdown. A failing task is logged and otherwise ignored; its
result is never observed by the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, coro: Awaitable, name: str | None = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background task %s failed: %s", task.get_name(), exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight tasks (tests and graceful shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            if not task.done():
                task.cancel()


dispatcher = BackgroundDispatcher()
