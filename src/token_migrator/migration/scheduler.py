"""Deferred re-invocation of the orchestrator.

"Retry later" is a timer on the running event loop, not a thread. Callers are
never blocked waiting for the deferred work.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

ScheduledFn = Callable[[], Awaitable[None]]


class Scheduler(ABC):
    @abstractmethod
    def schedule_once(self, delay_seconds: float, fn: ScheduledFn, *, name: str = "") -> None:
        """Run ``fn`` once after ``delay_seconds``."""


class AsyncioScheduler(Scheduler):
    """Schedule callbacks as tasks on the running asyncio loop.

    Must be used from inside a running loop. Exceptions raised by a callback
    are logged; they never reach the code that scheduled it.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule_once(self, delay_seconds: float, fn: ScheduledFn, *, name: str = "") -> None:
        task = asyncio.get_running_loop().create_task(self._run(delay_seconds, fn, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Callback scheduled", extra={"task": name, "delay_seconds": delay_seconds})

    async def _run(self, delay_seconds: float, fn: ScheduledFn, name: str) -> None:
        await asyncio.sleep(delay_seconds)
        try:
            await fn()
        except Exception:
            logger.exception("Scheduled callback failed", extra={"task": name})

    async def join(self) -> None:
        """Wait until no scheduled work remains, including work scheduled meanwhile."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all pending callbacks."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
