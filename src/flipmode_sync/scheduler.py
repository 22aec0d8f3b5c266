"""Repeating-task scheduling."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Set

logger = logging.getLogger(__name__)

TickFn = Callable[[], Awaitable[Any]]


class CancellationHandle:
    """Stops a scheduled repeating task."""

    def __init__(self, cancel: Callable[[], Any]):
        self._cancel = cancel
        self.cancelled = False

    def cancel(self):
        if not self.cancelled:
            self.cancelled = True
            self._cancel()


class Scheduler(ABC):
    """Runs a coroutine function on a fixed interval."""

    @abstractmethod
    def schedule_repeating(self, interval: float, fn: TickFn) -> CancellationHandle:
        pass


class AsyncioScheduler(Scheduler):
    """Scheduler on the running asyncio loop. Ticks never overlap."""

    def __init__(self):
        self.tasks: Set[asyncio.Task] = set()

    def schedule_repeating(self, interval: float, fn: TickFn) -> CancellationHandle:
        task = asyncio.create_task(self._run(interval, fn))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return CancellationHandle(task.cancel)

    async def _run(self, interval: float, fn: TickFn):
        while True:
            await asyncio.sleep(interval)
            try:
                await fn()
            except Exception as e:
                logger.error(f"Scheduled task failed: {e}")

    async def shutdown(self):
        for task in list(self.tasks):
            task.cancel()
        await asyncio.gather(*list(self.tasks), return_exceptions=True)
