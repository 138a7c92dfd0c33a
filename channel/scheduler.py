"""Cancellable timers on the running event loop."""
import asyncio
from typing import Awaitable, Callable, Optional, Set

from utils.logger import setup_logger

logger = setup_logger(__name__)


class ScheduledTask:
    """Handle to a scheduled timer or interval. Cancelling it is idempotent."""

    def __init__(self, task: asyncio.Task, name: str):
        self._task = task
        self.name = name

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> None:
        """Wait for the task to finish, ignoring cancellation."""
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class Scheduler:
    """Creates delayed and repeating tasks, and cancels them all on shutdown."""

    def __init__(self):
        self._tasks: Set[ScheduledTask] = set()

    def call_later(
        self,
        delay_ms: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "timer"
    ) -> ScheduledTask:
        """Run callback once after delay_ms milliseconds."""

        async def _runner():
            await asyncio.sleep(max(delay_ms, 0) / 1000)
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Scheduled task '{name}' failed")

        return self._track(_runner(), name)

    def repeat(
        self,
        interval_ms: Callable[[], float],
        callback: Callable[[], Awaitable[None]],
        name: str = "interval"
    ) -> ScheduledTask:
        """Run callback forever, sleeping interval_ms() milliseconds before each run.

        interval_ms is re-evaluated on every tick so callers can add jitter.
        """

        async def _runner():
            while True:
                await asyncio.sleep(max(interval_ms(), 0) / 1000)
                try:
                    await callback()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(f"Interval task '{name}' failed")

        return self._track(_runner(), name)

    def _track(self, coro, name: str) -> ScheduledTask:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        handle = ScheduledTask(task, name)
        self._tasks.add(handle)
        task.add_done_callback(lambda _: self._tasks.discard(handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done)

    async def shutdown(self, wait: Optional[bool] = True) -> None:
        """Cancel every outstanding task."""
        handles = list(self._tasks)
        for handle in handles:
            handle.cancel()
        if wait:
            for handle in handles:
                await handle.wait()
