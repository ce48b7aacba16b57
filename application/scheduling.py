from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Protocol


logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """
    One-shot timer facility.

    The application layer only needs "run this callback after `delay`
    seconds" and the ability to cancel it again.
    """

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


class AsyncioScheduler(Scheduler):
    """
    `Scheduler` backed by the running asyncio event loop.

    Callbacks may be plain functions or coroutine functions. Coroutines are
    wrapped in a task; exceptions from either kind are logged rather than
    surfacing as "Task exception was never retrieved".
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._get_loop()
        return loop.call_later(max(0.0, delay), self._run, loop, callback)

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop, callback: Callable[[], Any]) -> None:
        try:
            result = callback()
        except Exception:
            logger.exception("Scheduled callback %r failed", callback)
            return

        if inspect.isawaitable(result):
            task = loop.create_task(result)
            task.add_done_callback(_log_task_failure)


def _log_task_failure(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Scheduled task failed", exc_info=exc)
