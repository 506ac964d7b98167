"""Named, cancellable timers on the asyncio event loop.

Debounce, heartbeat and midnight upload all need "fire this later unless
something changes".  Each timer has a name; arming a name that is already
armed cancels the old handle first, so a name never has two outstanding
firings.

Callbacks may be plain functions or coroutine functions.  Coroutines are
run as tasks that the registry tracks; cancelling a timer never cancels a
callback that has already started (an in-flight upload finishes or times
out on its own).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable

logger = logging.getLogger("tracekit.sync.timers")

TimerCallback = Callable[[], "Awaitable[Any] | None"]


class TimerRegistry:
    """Cooperative scheduler owning named timer handles.

    Usage::

        timers = TimerRegistry()
        timers.arm("debounce", 3.0, controller.commit)
        timers.arm_repeating("heartbeat", 30.0, driver.send_heartbeat)
        timers.cancel("debounce")
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loop = loop
        self._clock = clock
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        """Monotonic seconds, the time base for every delay."""
        return self._clock()

    # ------------------------------------------------------------------
    # Arming / cancelling
    # ------------------------------------------------------------------

    def arm(self, name: str, delay: float, callback: TimerCallback) -> None:
        """Fire ``callback`` once after ``delay`` seconds, replacing any timer named ``name``."""
        self.cancel(name)
        loop = self._get_loop()
        self._handles[name] = loop.call_later(
            max(0.0, delay), self._fire_once, name, callback
        )
        logger.debug("Armed timer %s in %.3fs", name, delay)

    def arm_repeating(self, name: str, interval: float, callback: TimerCallback) -> None:
        """Fire ``callback`` every ``interval`` seconds until cancelled."""
        if interval <= 0:
            raise ValueError(f"Repeating timer {name!r} needs a positive interval")
        self.cancel(name)
        loop = self._get_loop()
        self._handles[name] = loop.call_later(
            interval, self._fire_repeating, name, interval, callback
        )
        logger.debug("Armed repeating timer %s every %.1fs", name, interval)

    def cancel(self, name: str) -> bool:
        """Cancel the named timer.  Returns True if one was armed."""
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Cancelled timer %s", name)
        return True

    def cancel_all(self) -> None:
        for name in list(self._handles):
            self.cancel(name)

    def is_armed(self, name: str) -> bool:
        return name in self._handles

    @property
    def names(self) -> list[str]:
        return sorted(self._handles)

    async def drain(self) -> None:
        """Wait for callbacks that are already running to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _fire_once(self, name: str, callback: TimerCallback) -> None:
        self._handles.pop(name, None)
        self._invoke(name, callback)

    def _fire_repeating(self, name: str, interval: float, callback: TimerCallback) -> None:
        # Re-arm first so a slow callback cannot delay the next tick.
        self._handles[name] = self._get_loop().call_later(
            interval, self._fire_repeating, name, interval, callback
        )
        self._invoke(name, callback)

    def _invoke(self, name: str, callback: TimerCallback) -> None:
        try:
            result = callback()
        except Exception as exc:
            logger.error("Timer %s callback failed: %s", name, exc)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result, loop=self._get_loop())
            self._tasks.add(task)
            task.add_done_callback(lambda t, n=name: self._task_done(n, t))

    def _task_done(self, name: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Timer %s task failed: %s", name, exc)
