"""
Recurring timers on the running event loop.

A RecurringTimer calls its callback every `interval` seconds until cancelled.
Callback errors are logged and the timer keeps running.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RecurringTimer:

    def __init__(self, interval: float, callback: Callable[[], Any], name: str = "timer"):
        self.interval = interval
        self.name = name
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "RecurringTimer":
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"{self.name} tick failed: {e}")
