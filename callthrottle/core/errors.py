"""Library exception types.

This module defines the errors raised by throttles and schedulers, enabling
consistent error handling and logging by callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability.

    Fields are optional; each error fills in what it knows.
    """

    code: str
    message: str
    hint: str
    throttle: str | None
    window_ms: Any
    field: str
    delay_seconds: float
    arg_count: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for library failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidConfigurationError(ValidationAppError):
    """Raised at construction when a throttle is configured with bad options."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "invalid_configuration",
        details: ErrorDetails | None = None,
    ) -> None:
        super().__init__(code=code, message=message, details=details)


class SchedulerError(AppError):
    """Raised when a deferred invocation cannot be scheduled."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "scheduler_unavailable",
        details: ErrorDetails | None = None,
    ) -> None:
        super().__init__(code=code, message=message, details=details)


class TargetInvocationError(AppError):
    """Raised on behalf of a wrapped callback that failed during a trailing fire.

    The original exception is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "target_invocation_failed",
        details: ErrorDetails | None = None,
    ) -> None:
        super().__init__(code=code, message=message, details=details)
