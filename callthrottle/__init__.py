"""Leading-edge, trailing-guaranteed call throttling for event-loop code."""

from callthrottle.adapters.scheduler.asyncio_loop import AsyncioScheduler
from callthrottle.adapters.scheduler.base import AbstractScheduler, ScheduledTask
from callthrottle.adapters.scheduler.manual import ManualScheduler
from callthrottle.core.errors import (
    AppError,
    InvalidConfigurationError,
    SchedulerError,
    TargetInvocationError,
)
from callthrottle.services.throttle import (
    ThrottleHandle,
    ThrottleSession,
    ThrottleState,
    create_throttle,
    throttle,
)

__all__ = [
    "AbstractScheduler",
    "AppError",
    "AsyncioScheduler",
    "InvalidConfigurationError",
    "ManualScheduler",
    "ScheduledTask",
    "SchedulerError",
    "TargetInvocationError",
    "ThrottleHandle",
    "ThrottleSession",
    "ThrottleState",
    "create_throttle",
    "throttle",
]

__version__ = "0.1.0"
