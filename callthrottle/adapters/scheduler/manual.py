"""Deterministic scheduler driven by a simulated clock.

Time only moves when the owner calls :meth:`ManualScheduler.advance`, which
makes throttle behaviour reproducible in tests and in offline replays of
recorded event streams.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable

from callthrottle.adapters.scheduler.base import AbstractScheduler
from callthrottle.core.errors import SchedulerError

logger = logging.getLogger(__name__)

# Float slack when comparing a delay against the clock resolution.
_RESOLUTION_TOLERANCE = 1e-9


@dataclass(order=True)
class ManualTask:
    """Task scheduled on a :class:`ManualScheduler`.

    Ordered by ``deliver_at``: ``when`` shifted by the scheduler's timer lag,
    and pulled earlier by its clock resolution for delays longer than that
    resolution.
    """

    deliver_at: float
    seq: int
    when: float = field(compare=False)
    callback: Callable[[], None] = field(compare=False)
    scheduler: "ManualScheduler | None" = field(default=None, compare=False, repr=False)
    _cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self.scheduler is not None:
            self.scheduler._discard(self)

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(AbstractScheduler):
    """Scheduler with a virtual clock.

    Attributes:
        failures: Failures reported through :meth:`report_failure`, in order.
    """

    def __init__(
        self,
        *,
        start: float = 0.0,
        raise_failures: bool = True,
        clock_resolution: float = 0.0,
        timer_lag: float = 0.0,
        max_tasks_per_advance: int = 10_000,
    ) -> None:
        """Initialize the manual scheduler.

        Args:
            start: Initial clock value in seconds.
            raise_failures: Re-raise reported failures out of advance().
            clock_resolution: Run tasks up to this many seconds before they
                are due, mimicking event loops that batch timers by clock
                resolution.
            timer_lag: Deliver every task this many seconds after it is
                due, mimicking a busy or coarsened timer.
            max_tasks_per_advance: Cap on tasks run by one advance() call;
                exceeding it means a task keeps rescheduling itself.

        Raises:
            ValueError: If clock_resolution or timer_lag is negative, or
                max_tasks_per_advance is below 1.
        """
        if clock_resolution < 0:
            raise ValueError("clock_resolution must be >= 0")
        if timer_lag < 0:
            raise ValueError("timer_lag must be >= 0")
        if max_tasks_per_advance < 1:
            raise ValueError("max_tasks_per_advance must be >= 1")

        self._now = float(start)
        self._raise_failures = raise_failures
        self._clock_resolution = clock_resolution
        self._timer_lag = timer_lag
        self._max_tasks_per_advance = max_tasks_per_advance
        self._heap: list[ManualTask] = []
        self._live: set[int] = set()
        self._counter = itertools.count()
        self.failures: list[BaseException] = []

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"ManualScheduler(now={self._now}, pending={self.pending_count}, "
            f"next_due={self.next_due})"
        )

    @property
    def pending_count(self) -> int:
        """Number of scheduled tasks that have neither run nor been cancelled."""
        return len(self._live)

    @property
    def next_due(self) -> float | None:
        """Due time of the earliest live task, before lag or early delivery."""
        live = [task.when for task in self._heap if task.seq in self._live]
        return min(live) if live else None

    def now(self) -> float:
        return self._now

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> ManualTask:
        if delay_seconds != delay_seconds:  # NaN
            raise SchedulerError(
                "Cannot schedule a task with a NaN delay",
                details={"delay_seconds": delay_seconds},
            )
        delay = max(0.0, delay_seconds)
        when = self._now + delay
        deliver_at = when + self._timer_lag
        if delay - self._clock_resolution > _RESOLUTION_TOLERANCE:
            deliver_at -= self._clock_resolution
        if delay > 0 and deliver_at <= self._now:
            # Never deliver a delayed task at the instant it was scheduled.
            deliver_at = when
        task = ManualTask(
            deliver_at=deliver_at,
            when=when,
            seq=next(self._counter),
            callback=callback,
            scheduler=self,
        )
        heapq.heappush(self._heap, task)
        self._live.add(task.seq)
        return task

    def report_failure(self, error: BaseException) -> None:
        self.failures.append(error)
        logger.error("scheduler.unhandled_failure", exc_info=error)
        if self._raise_failures:
            raise error

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running every task that comes due.

        Tasks run in due-time order with the clock set to their delivery
        time (earlier than due by at most the clock resolution). Tasks
        scheduled by a running task are picked up within the same call. If a
        task raises, the clock stays at that task's delivery time.

        Args:
            seconds: Non-negative amount of simulated time to move.

        Raises:
            ValueError: If seconds is negative.
            RuntimeError: If a task keeps rescheduling itself inside the window.
        """
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self._run_until(self._now + seconds)

    def advance_to(self, when: float) -> None:
        """Advance the clock to an absolute time (no-op if already past it)."""
        self._run_until(max(self._now, when))

    def _run_until(self, target: float) -> None:
        for _ in range(self._max_tasks_per_advance):
            task = self._peek_live()
            if task is None or task.deliver_at > target:
                break
            heapq.heappop(self._heap)
            self._live.discard(task.seq)
            self._now = max(self._now, task.deliver_at)
            task.callback()
        else:
            raise RuntimeError(
                f"more than {self._max_tasks_per_advance} tasks came due in one advance"
            )
        self._now = target

    def run_until_idle(self, *, max_tasks: int = 10_000) -> None:
        """Run scheduled tasks, advancing the clock, until none remain.

        Raises:
            RuntimeError: If more than ``max_tasks`` tasks run (runaway reschedule).
        """
        for _ in range(max_tasks):
            task = self._peek_live()
            if task is None:
                return
            self.advance_to(task.deliver_at)
        raise RuntimeError(f"scheduler still busy after {max_tasks} tasks")

    def _peek_live(self) -> ManualTask | None:
        while self._heap and self._heap[0].seq not in self._live:
            heapq.heappop(self._heap)
        return self._heap[0] if self._heap else None

    def _discard(self, task: ManualTask) -> None:
        self._live.discard(task.seq)
