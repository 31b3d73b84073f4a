"""Scheduler interfaces.

The throttle controller depends on this abstraction (not a concrete event
loop) so the time source and timers can be swapped, e.g. for a simulated
clock in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Protocol


class ScheduledTask(Protocol):
    """Handle returned by :meth:`AbstractScheduler.call_later`."""

    def cancel(self) -> None:
        ...

    def cancelled(self) -> bool:
        ...


class AbstractScheduler(ABC):
    """Interface for clocks + deferred-task schedulers."""

    @abstractmethod
    def now(self) -> float:
        """Return the current monotonic time in seconds."""
        raise NotImplementedError

    @abstractmethod
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> ScheduledTask:
        """Schedule ``callback`` to run once, no earlier than ``delay_seconds`` from now.

        Args:
            delay_seconds: Non-negative delay in seconds.
            callback: Zero-argument callable.

        Returns:
            A task handle accepted by :meth:`cancel`.

        Raises:
            SchedulerError: If the task cannot be scheduled.
        """
        raise NotImplementedError

    def cancel(self, task: ScheduledTask) -> None:
        """Revoke a scheduled task so it never runs. Idempotent."""
        task.cancel()

    @abstractmethod
    def report_failure(self, error: BaseException) -> None:
        """Surface a failure that has no synchronous caller to propagate to."""
        raise NotImplementedError
