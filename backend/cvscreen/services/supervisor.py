"""
Background task supervisor for in-process extraction jobs.

Request handlers return as soon as a job is scheduled; the supervisor keeps
a strong reference to every spawned task (asyncio only keeps weak ones),
logs tasks that die with an exception, and lets the application lifespan
wait for outstanding work before the process exits.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)


class BackgroundTaskSupervisor:

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: str | None = None) -> asyncio.Task:
        if self._closed:
            coro.close()
            raise RuntimeError("supervisor is draining; no new tasks accepted")

        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Task spawned | name=%s pending=%d", name, len(self._tasks))
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Task cancelled | name=%s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Task failed | name=%s error=%s", task.get_name(), exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float | None = None) -> bool:
        """
        Stop accepting tasks and wait for the running ones.

        Returns True when every task finished; tasks still running after
        ``timeout`` seconds are cancelled and False is returned.
        """
        self._closed = True
        if not self._tasks:
            return True

        logger.info("Draining background tasks | pending=%d timeout=%s", len(self._tasks), timeout)
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Drain timed out | cancelled=%d", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
        return not still_running
