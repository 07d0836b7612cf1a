# app/services/scheduling.py
"""
Cancellable background work for a view session. Every timer a session
starts goes through its Scheduler, so tearing the session down is a single
``dispose()`` call.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle on one scheduled coroutine."""

    def __init__(self, task: asyncio.Task, name: str):
        self._task = task
        self.name = name

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> Any:
        """Wait for completion. A cancelled task resolves to None."""
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            return None

    def __repr__(self):
        state = "done" if self.done else "pending"
        return f"<ScheduledTask {self.name} {state}>"


class Scheduler:
    def __init__(self, name: str = "scheduler"):
        self.name = name
        self._handles: Set[ScheduledTask] = set()
        self.disposed = False

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._handles if not handle.done)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> ScheduledTask:
        """Run a coroutine in the background, owned by this scheduler."""
        if self.disposed:
            coro.close()
            raise RuntimeError(f"{self.name} is disposed")
        task_name = name or getattr(coro, "__name__", "task")
        task = asyncio.create_task(coro, name=f"{self.name}:{task_name}")
        handle = ScheduledTask(task, task_name)
        self._handles.add(handle)
        task.add_done_callback(lambda t, h=handle: self._finished(h, t))
        return handle

    def call_later(self, delay: float, func: Callable[[], Awaitable[Any]], name: Optional[str] = None) -> ScheduledTask:
        async def _delayed():
            await asyncio.sleep(delay)
            return await func()

        return self.spawn(_delayed(), name=name or getattr(func, "__name__", "delayed"))

    def every(
        self,
        interval: float,
        func: Callable[[], Awaitable[Any]],
        initial_delay: Optional[float] = None,
        name: Optional[str] = None,
    ) -> ScheduledTask:
        """
        Call ``func`` every ``interval`` seconds until cancelled. A tick that
        raises is logged and the schedule carries on.
        """
        async def _repeat():
            await asyncio.sleep(interval if initial_delay is None else initial_delay)
            while True:
                try:
                    await func()
                except Exception as e:
                    logger.error(f"{self.name}: periodic task {name or func.__name__} failed: {e}")
                await asyncio.sleep(interval)

        return self.spawn(_repeat(), name=name or getattr(func, "__name__", "periodic"))

    def _finished(self, handle: ScheduledTask, task: asyncio.Task) -> None:
        self._handles.discard(handle)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self.name}: background task {handle.name} failed: {exc!r}")

    def dispose(self) -> None:
        """Cancel every pending task of this scheduler."""
        self.disposed = True
        for handle in list(self._handles):
            handle.cancel()

    async def aclose(self) -> None:
        handles = list(self._handles)
        self.dispose()
        for handle in handles:
            await handle.wait()
