"""Leading-edge, trailing-guaranteed call throttling.

A throttle wraps a callback and a window. The first call in a burst runs the
callback immediately; calls that arrive inside the window are coalesced so
that only the most recent arguments survive, and those are delivered once
the window closes. The final state of a burst is therefore never dropped.

The controller is single-threaded: ``invoke()``, ``cancel()`` and the
deferred timer must all run on the scheduler's thread (the event loop for
:class:`AsyncioScheduler`).

Usage:
    handle = create_throttle(report_position, 100)
    handle(scroll_y)        # fires now
    handle(scroll_y + 10)   # coalesced, fires ~100ms after the first
    handle.cancel()         # drops the pending fire
"""

from __future__ import annotations

import functools
import logging
import math
import numbers
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from callthrottle.adapters.scheduler.asyncio_loop import AsyncioScheduler
from callthrottle.adapters.scheduler.base import AbstractScheduler, ScheduledTask
from callthrottle.core.config import settings
from callthrottle.core.errors import (
    InvalidConfigurationError,
    SchedulerError,
    TargetInvocationError,
)
from callthrottle.core.logging import reset_active_throttle, set_active_throttle

logger = logging.getLogger(__name__)

ErrorHook = Callable[[TargetInvocationError], None]

# Absorbs float rounding in ``now + (due - now)`` so a timer delivered at
# its due time is not mistaken for an early one.
_CLOCK_EPSILON = 1e-9


class ThrottleState(str, Enum):
    """Observable state of a throttle session."""

    IDLE = "idle"
    ACTIVE_WINDOW = "active_window"
    TRAILING_SCHEDULED = "trailing_scheduled"


class ThrottleOptions(BaseModel):
    """Validated construction options for a throttle."""

    model_config = ConfigDict(frozen=True)

    window_ms: float
    name: str | None = None

    @field_validator("window_ms", mode="before")
    @classmethod
    def _require_real_number(cls, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise ValueError(f"window_ms must be a number, got {type(value).__name__}")
        return float(value)

    @field_validator("window_ms")
    @classmethod
    def _require_finite_non_negative(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("window_ms must be finite")
        if value < 0:
            raise ValueError("window_ms must be >= 0")
        return value


def _build_options(window_ms: Any, name: str | None) -> ThrottleOptions:
    """Validate raw options, converting pydantic errors to library errors.

    Raises:
        InvalidConfigurationError: If any option is malformed.
    """
    try:
        return ThrottleOptions(window_ms=window_ms, name=name)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "window_ms"
        raise InvalidConfigurationError(
            f"Invalid throttle configuration: {first.get('msg', 'invalid value')}",
            details={
                "field": field,
                "window_ms": window_ms,
                "throttle": name,
                "hint": "window_ms must be a finite, non-negative number of milliseconds",
            },
        ) from exc


def _describe(target: Callable[..., Any]) -> str:
    return getattr(target, "__qualname__", None) or getattr(target, "__name__", None) or repr(target)


class ThrottleSession:
    """State machine behind a :class:`ThrottleHandle`.

    Invariants:
        - At most one deferred invocation is scheduled at a time.
        - ``pending_args`` is set exactly while the state is TRAILING_SCHEDULED.
        - ``last_fire_at`` never decreases.
        - The target is never re-entered by the controller; an ``invoke()``
          made from inside the target is deferred.
    """

    def __init__(
        self,
        target: Callable[..., Any],
        options: ThrottleOptions,
        scheduler: AbstractScheduler,
        on_error: ErrorHook | None = None,
    ) -> None:
        self._target = target
        self._window_ms = options.window_ms
        self._window = options.window_ms / 1000.0
        self._name = options.name or _describe(target)
        self._scheduler = scheduler
        self._on_error = on_error
        self._log_events = settings.throttle.log_events

        self._last_fire_at: float | None = None
        self._pending_args: tuple[tuple[Any, ...], dict[str, Any]] | None = None
        self._timer: ScheduledTask | None = None
        self._state = ThrottleState.IDLE
        self._firing = False

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"ThrottleSession(name={self._name!r}, window_ms={self._window_ms}, "
            f"state={self.state.value}, last_fire_at={self._last_fire_at})"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def window_ms(self) -> float:
        return self._window_ms

    @property
    def last_fire_at(self) -> float | None:
        return self._last_fire_at

    @property
    def pending_args(self) -> tuple[tuple[Any, ...], dict[str, Any]] | None:
        return self._pending_args

    @property
    def state(self) -> ThrottleState:
        """Current state, derived from the clock.

        An elapsed window reads as IDLE without a transition. ``cancel()``
        drops pending work but keeps the last fire time, so a session
        cancelled inside its window reads as ACTIVE_WINDOW until the window
        runs out.
        """
        if self._state is ThrottleState.TRAILING_SCHEDULED:
            return self._state
        if self._last_fire_at is None:
            return ThrottleState.IDLE
        if self._scheduler.now() - self._last_fire_at >= self._window:
            return ThrottleState.IDLE
        return ThrottleState.ACTIVE_WINDOW

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        """Record a call attempt.

        Fires the target synchronously on a leading edge (its exceptions
        propagate to the caller); otherwise stores the arguments for the
        trailing fire.

        Raises:
            SchedulerError: If a trailing fire is needed but cannot be scheduled.
        """
        now = self._scheduler.now()
        if not self._firing and (
            self._last_fire_at is None or now - self._last_fire_at >= self._window
        ):
            self._fire_leading(now, args, kwargs)
            return
        self._defer(now, args, kwargs)

    def cancel(self) -> None:
        """Drop any pending trailing fire. Idempotent.

        The time of the last fire is kept, so a call made right after
        cancelling, inside the same window, is deferred rather than fired.
        """
        had_pending = self._timer is not None
        self._clear_timer()
        self._pending_args = None
        self._state = ThrottleState.IDLE
        if had_pending:
            self._log("throttle.cancelled")

    def _fire_leading(self, now: float, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        self._clear_timer()
        self._pending_args = None
        self._mark_fired(now)
        self._log("throttle.leading_fire", arg_count=len(args) + len(kwargs))
        self._call_target(args, kwargs)

    def _defer(self, now: float, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        if self._timer is not None:
            self._pending_args = (args, kwargs)
            self._log("throttle.coalesced", arg_count=len(args) + len(kwargs))
            return

        due = (self._last_fire_at if self._last_fire_at is not None else now) + self._window
        self._timer = self._schedule(due - now)
        self._pending_args = (args, kwargs)
        self._state = ThrottleState.TRAILING_SCHEDULED
        self._log("throttle.trailing_scheduled", delay_ms=round(max(0.0, due - now) * 1000, 3))

    def _schedule(self, delay: float) -> ScheduledTask:
        try:
            return self._scheduler.call_later(max(0.0, delay), self._on_timer)
        except SchedulerError:
            raise
        except Exception as exc:
            raise SchedulerError(
                "Failed to schedule trailing invocation",
                details={"throttle": self._name, "delay_seconds": delay},
            ) from exc

    def _on_timer(self) -> None:
        self._timer = None
        if self._state is not ThrottleState.TRAILING_SCHEDULED or self._pending_args is None:
            return

        now = self._scheduler.now()
        due = (self._last_fire_at or 0.0) + self._window
        if due - now > _CLOCK_EPSILON:
            # Delivered early (loops batch timers by clock resolution).
            try:
                self._timer = self._schedule(due - now)
            except SchedulerError as error:
                self._pending_args = None
                self._state = ThrottleState.ACTIVE_WINDOW
                self._scheduler.report_failure(error)
            return

        args, kwargs = self._pending_args
        self._pending_args = None
        self._mark_fired(now)
        self._log("throttle.trailing_fire", arg_count=len(args) + len(kwargs))
        try:
            self._call_target(args, kwargs)
        except Exception as exc:
            error = TargetInvocationError(
                f"Throttled callback {self._name!r} failed during trailing invocation",
                details={"throttle": self._name, "arg_count": len(args) + len(kwargs)},
            )
            error.__cause__ = exc
            logger.error(
                "throttle.trailing_failed",
                exc_info=exc,
                extra={"throttle": self._name, "error_type": type(exc).__name__},
            )
            if self._on_error is not None:
                self._on_error(error)
            else:
                self._scheduler.report_failure(error)

    def _mark_fired(self, now: float) -> None:
        if self._last_fire_at is None or now > self._last_fire_at:
            self._last_fire_at = now
        self._state = ThrottleState.ACTIVE_WINDOW

    def _call_target(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        token = set_active_throttle(self._name)
        self._firing = True
        try:
            self._target(*args, **kwargs)
        finally:
            self._firing = False
            reset_active_throttle(token)

    def _clear_timer(self) -> None:
        if self._timer is not None:
            timer, self._timer = self._timer, None
            self._scheduler.cancel(timer)

    def _log(self, event: str, **fields: Any) -> None:
        if not self._log_events:
            return
        logger.debug(
            event,
            extra={"throttle": self._name, "window_ms": self._window_ms, **fields},
        )


class ThrottleHandle:
    """Callable proxy returned by :func:`create_throttle`.

    Calling the handle (or ``invoke()``) records a call attempt. Use it as a
    context manager to cancel pending work on exit.
    """

    def __init__(self, session: ThrottleSession) -> None:
        self._session = session

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"<ThrottleHandle {self._session.name!r} state={self._session.state.value}>"

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        self._session.invoke(*args, **kwargs)

    def __enter__(self) -> "ThrottleHandle":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._session.cancel()

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        self._session.invoke(*args, **kwargs)

    def cancel(self) -> None:
        self._session.cancel()

    @property
    def session(self) -> ThrottleSession:
        return self._session

    @property
    def state(self) -> ThrottleState:
        return self._session.state

    @property
    def pending(self) -> bool:
        """Whether a trailing invocation is scheduled."""
        return self._session.pending_args is not None

    @property
    def window_ms(self) -> float:
        return self._session.window_ms

    @property
    def name(self) -> str:
        return self._session.name


def create_throttle(
    target: Callable[..., Any],
    window_ms: float | None = None,
    *,
    scheduler: AbstractScheduler | None = None,
    on_error: ErrorHook | None = None,
    name: str | None = None,
) -> ThrottleHandle:
    """Wrap ``target`` so it runs at most once per ``window_ms``.

    Args:
        target: Callback to throttle. Its return value is discarded.
        window_ms: Minimum spacing between fires in milliseconds. Defaults to
            ``settings.throttle.default_window_ms``.
        scheduler: Clock and timer source. Defaults to an
            :class:`AsyncioScheduler` bound to the running loop.
        on_error: Receives a :class:`TargetInvocationError` when the target
            fails during a trailing fire. Without it the failure goes to
            ``scheduler.report_failure``.
        name: Label used in logs and error details. Defaults to the target's
            qualified name.

    Returns:
        ThrottleHandle: Callable proxy with ``invoke()`` and ``cancel()``.

    Raises:
        InvalidConfigurationError: If ``window_ms`` is not a finite,
            non-negative number, or ``target``/``on_error`` are not callable.
    """
    if not callable(target):
        raise InvalidConfigurationError(
            "Throttle target must be callable",
            details={"field": "target", "throttle": name},
        )
    if on_error is not None and not callable(on_error):
        raise InvalidConfigurationError(
            "on_error must be callable",
            details={"field": "on_error", "throttle": name},
        )

    options = _build_options(
        settings.throttle.default_window_ms if window_ms is None else window_ms,
        name,
    )
    session = ThrottleSession(
        target,
        options,
        scheduler if scheduler is not None else AsyncioScheduler(),
        on_error,
    )
    logger.debug(
        "throttle.created",
        extra={"throttle": session.name, "window_ms": session.window_ms},
    )
    return ThrottleHandle(session)


def throttle(
    window_ms: float | None = None,
    *,
    scheduler: AbstractScheduler | None = None,
    on_error: ErrorHook | None = None,
    name: str | None = None,
) -> Callable[[Callable[..., Any]], ThrottleHandle]:
    """Decorator form of :func:`create_throttle` for plain functions.

    Example:
        >>> @throttle(250)
        ... def on_resize(width, height):
        ...     ...
        >>> on_resize(800, 600)
    """

    def decorator(fn: Callable[..., Any]) -> ThrottleHandle:
        handle = create_throttle(
            fn,
            window_ms,
            scheduler=scheduler,
            on_error=on_error,
            name=name,
        )
        functools.update_wrapper(handle, fn)
        return handle

    return decorator
