"""Restartable one-shot timers on the running asyncio loop."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ResettableTimer:
    """
    Fires ``callback`` once after ``delay`` seconds of not being restarted.

    Each start cancels the pending sleep and schedules a new one, so only
    the last start counts. The callback may be a plain function or a
    coroutine function.
    """

    def __init__(self, delay: float, callback: Callable[[], Any], name: str = "timer"):
        self.delay = delay
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the timer, restarting it when already running."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug(f"{self.name} cancelled")
        self._task = None

    async def _run(self):
        await asyncio.sleep(self.delay)
        # Detach first so the callback may restart this timer
        self._task = None
        logger.debug(f"{self.name} fired after {self.delay}s")
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"{self.name} callback failed: {e}")
