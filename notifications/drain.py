import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class DrainCoordinator:
    """Counts in-flight fan-outs so shutdown can wait for them.

    Work is registered synchronously in :meth:`spawn`, before the coroutine
    gets a chance to run, and released only once it has finished.
    """

    def __init__(self):
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return self._count

    def _enter(self):
        self._count += 1
        self._idle.clear()

    def _leave(self, task: asyncio.Task | None = None):
        if task is not None:
            self._tasks.discard(task)
            # Retrieve the outcome; the caller may have been cancelled
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    f"Background notification task failed: {task.exception()!r}"
                )
        self._count -= 1
        if self._count == 0:
            self._idle.set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` as a tracked background task."""
        self._enter()
        try:
            task = asyncio.create_task(coro)
        except BaseException:
            self._leave()
            coro.close()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._leave)
        return task

    async def wait(self):
        """Block until no tracked work remains."""
        if self._count:
            logger.info(f"Waiting for {self._count} in-flight notification(s)")
        await self._idle.wait()
