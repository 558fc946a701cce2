"""TimerRegistry — every delayed callback and background task of one connection.

Call timeouts, retry backoffs and handshake tasks are all created through the
registry so a shutdown can cancel them in one sweep.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class TimerRegistry:
    """Tracks ``loop.call_later`` handles and the tasks spawned from them."""

    def __init__(self) -> None:
        self._handles: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    def schedule(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> asyncio.TimerHandle:
        """Run *callback* after *delay* seconds.

        A coroutine returned by the callback is spawned as a tracked task.
        """
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._handles.discard(handle)
            result = callback(*args)
            if inspect.isawaitable(result):
                self.spawn(result)

        handle = loop.call_later(max(delay, 0.0), _fire)
        self._handles.add(handle)
        return handle

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def cancel(self, handle: asyncio.TimerHandle | None) -> None:
        if handle is None:
            return
        handle.cancel()
        self._handles.discard(handle)

    def cancel_all(self) -> None:
        """Cancel every pending timer and every running task but the caller's."""
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks = {t for t in self._tasks if t is current}

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed", task.get_name(), exc_info=exc
            )

    @property
    def pending_timers(self) -> int:
        return len(self._handles)

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:
        return len(self._handles) + len(self._tasks)
