"""
Minimal event emitter.

Listeners are plain callables or coroutine functions. A failing listener is
logged and never breaks the emitter or the other listeners.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener for event. Returns False if nobody listens."""
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                result = listener(*args)
            except Exception as e:
                logger.exception(f"Listener for '{event}' failed: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._task_done)
        return bool(listeners)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async listener failed: {task.exception()!r}")

    async def drain(self) -> None:
        """Wait for async listeners scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
