"""Supervised detached asyncio tasks.

Fire-and-forget work (audit writes, unwind actions, reconciliation loops) runs
here so a failure is logged instead of vanishing with an unreferenced task.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._keyed: dict[str, asyncio.Task] = {}

    def spawn(
        self, coro: Coroutine[Any, Any, Any], *, key: str | None = None, name: str | None = None
    ) -> asyncio.Task:
        """Schedule ``coro``. A keyed spawn replaces (cancels) any live task with that key."""
        if key is not None:
            self.cancel(key)
        task = asyncio.get_running_loop().create_task(coro, name=name or key)
        self._tasks.add(task)
        if key is not None:
            self._keyed[key] = task
        task.add_done_callback(lambda t: self._on_done(t, key))
        return task

    def _on_done(self, task: asyncio.Task, key: str | None) -> None:
        self._tasks.discard(task)
        if key is not None and self._keyed.get(key) is task:
            del self._keyed[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed: %s",
                task.get_name(), exc, exc_info=(type(exc), exc, exc.__traceback__),
            )

    def get(self, key: str) -> asyncio.Task | None:
        return self._keyed.get(key)

    def cancel(self, key: str) -> bool:
        task = self._keyed.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def __len__(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait until every task (including ones spawned while waiting) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.join()
        self._keyed.clear()
