"""
Cancellable delayed calls on the running event loop.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional, Set

from .log import get_logger

logger = get_logger(__name__)


class Debouncer:
    """
    Run ``func`` once, ``delay`` seconds after the last call.

    Calling again before the delay elapses cancels the pending call and
    reschedules it with the new arguments. A call that already started runs
    to completion; only the waiting period is cancellable.
    """

    def __init__(self, delay: float, func: Callable[..., Awaitable[Any]]) -> None:
        self.delay = delay
        self._func = func
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args: Any) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire, args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, args: tuple) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._func(*args))
        self._tasks.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("debounced_call_failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for calls that already fired."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
