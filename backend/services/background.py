from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class TaskFailure:
    name: str
    error: BaseException


class TaskRegistry:
    """
    Detached background work (post-upload processing) with an error channel.

    The spawning request never awaits these tasks; failures are logged and kept
    in `failures` instead of vanishing inside a callback.
    """

    def __init__(self, *, max_failures: int = 100) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._max_failures = max_failures
        self.failures: list[TaskFailure] = []

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("[tasks] Spawned %s", name)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("[tasks] %s cancelled", task.get_name())
            return
        error = task.exception()
        if error is None:
            logger.info("[tasks] %s finished", task.get_name())
            return
        logger.error("[tasks] %s failed: %s", task.get_name(), error, exc_info=error)
        self.failures.append(TaskFailure(name=task.get_name(), error=error))
        del self.failures[: -self._max_failures]

    async def drain(self) -> None:
        """Wait for every task spawned so far (and any they spawn)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
