# langpad/scheduler.py
"""Keyed debouncing of update streams."""

import asyncio
import functools
import inspect
import logging
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 150


class DebouncedScheduler:
    """
    Delays actions per key, so that a burst of requests runs only the last one.

    ``schedule(key, delay_ms, action)`` cancels whatever is still pending for
    ``key`` and restarts the delay window. Once the window closes the action
    runs exactly once. Actions may be plain callables or return awaitables.

    A body that already started is never cancelled. Bodies for the same key
    run one after another: a body whose timer fires while its predecessor is
    still running waits for it first. Keys never affect each other.
    """

    def __init__(self) -> None:
        self._timers: Dict[Hashable, asyncio.TimerHandle] = {}
        self._running: Dict[Hashable, asyncio.Task] = {}
        self._closed = False

    def schedule(self, key: Hashable, delay_ms: float, action: Callable[[], Any]) -> None:
        if self._closed:
            logger.debug("Scheduler closed, ignoring action for key %r", key)
            return
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(max(delay_ms, 0) / 1000.0, self._fire, key, action)

    def cancel(self, key: Hashable) -> bool:
        """Drops the pending action for ``key``. Returns True if one was pending."""
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self, key: Hashable) -> bool:
        return key in self._timers

    def running(self, key: Hashable) -> bool:
        task = self._running.get(key)
        return task is not None and not task.done()

    def close(self) -> None:
        """Cancels every pending action; nothing scheduled before this fires afterwards."""
        self._closed = True
        for key in list(self._timers):
            self.cancel(key)

    async def wait_idle(self) -> None:
        """Waits for every action body that already started."""
        tasks = [task for task in self._running.values() if not task.done()]
        if tasks:
            await asyncio.wait(tasks)

    async def aclose(self) -> None:
        self.close()
        await self.wait_idle()

    def _fire(self, key: Hashable, action: Callable[[], Any]) -> None:
        self._timers.pop(key, None)
        previous: Optional[asyncio.Task] = self._running.get(key)
        task = asyncio.ensure_future(self._run(key, action, previous))
        self._running[key] = task
        task.add_done_callback(functools.partial(self._forget, key))

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._running.get(key) is task:
            del self._running[key]

    async def _run(self, key: Hashable, action: Callable[[], Any],
                   previous: Optional[asyncio.Task]) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            result = action()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Scheduled action for key %r failed", key)
