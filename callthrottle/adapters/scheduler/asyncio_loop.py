"""Scheduler backed by an asyncio event loop.

Notes:
- Uses the loop's monotonic clock (``loop.time()``) and ``call_later`` timers.
- Cancelling an ``asyncio.TimerHandle`` is honoured even when the loop has
  already moved it to the ready queue.
- Not thread-safe: must be used from the loop's own thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from callthrottle.adapters.scheduler.base import AbstractScheduler
from callthrottle.core.errors import SchedulerError

logger = logging.getLogger(__name__)


class AsyncioScheduler(AbstractScheduler):
    """Scheduler that delegates to an asyncio event loop.

    When constructed without a loop, the running loop is resolved on every
    call, so one instance can be created at import time and used later from
    inside a coroutine.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"AsyncioScheduler(loop={self._loop!r})"

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            if self._loop.is_closed():
                raise SchedulerError(
                    "Event loop is closed",
                    details={"hint": "Create the throttle on a live event loop"},
                )
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError as exc:
            raise SchedulerError(
                "No running event loop to schedule a deferred invocation on",
                details={
                    "hint": "Call invoke() from inside a coroutine or pass AsyncioScheduler(loop=...)",
                },
            ) from exc

    def now(self) -> float:
        if self._loop is not None:
            return self._loop.time()
        try:
            return asyncio.get_running_loop().time()
        except RuntimeError:
            # Leading fires don't need a loop; the default loop clock is
            # time.monotonic().
            return time.monotonic()

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._get_loop()
        return loop.call_later(max(0.0, delay_seconds), callback)

    def report_failure(self, error: BaseException) -> None:
        """Hand the failure to the loop's exception handler."""
        try:
            loop = self._get_loop()
        except SchedulerError:
            logger.error("scheduler.unhandled_failure", exc_info=error)
            return
        loop.call_exception_handler(
            {
                "message": "Unhandled failure in throttled callback",
                "exception": error,
            }
        )
