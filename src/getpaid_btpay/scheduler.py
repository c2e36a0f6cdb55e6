"""Timer abstraction shared by token refresh and status polling."""

import asyncio
import logging
import time
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Protocol


logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class Handle(Protocol):
    def cancel(self) -> object: ...


class Scheduler(Protocol):
    """Runs async callbacks after a delay and tells the time."""

    def now(self) -> float: ...

    def schedule(self, delay: float, callback: Callback) -> Handle: ...


class AsyncioScheduler:
    """Default scheduler backed by the running event loop.

    Each scheduled callback is an ``asyncio.Task`` sleeping for ``delay``
    seconds; cancelling the handle cancels the task.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return time.monotonic()

    def schedule(self, delay: float, callback: Callback) -> asyncio.Task:
        async def runner() -> None:
            await asyncio.sleep(delay)
            try:
                await callback()
            except Exception:
                logger.exception("Scheduled callback %r failed", callback)

        task = asyncio.get_running_loop().create_task(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())
