"""Unit tests for the simulated-clock scheduler."""

from unittest.mock import Mock

import pytest

from callthrottle.adapters.scheduler.manual import ManualScheduler
from callthrottle.core.errors import SchedulerError


def test_runs_tasks_in_due_order_with_clock_at_due_time() -> None:
    scheduler = ManualScheduler()
    seen: list[tuple[str, float]] = []

    scheduler.call_later(0.3, lambda: seen.append(("c", scheduler.now())))
    scheduler.call_later(0.1, lambda: seen.append(("a", scheduler.now())))
    scheduler.call_later(0.2, lambda: seen.append(("b", scheduler.now())))

    scheduler.advance(1.0)

    assert [name for name, _ in seen] == ["a", "b", "c"]
    assert [t for _, t in seen] == pytest.approx([0.1, 0.2, 0.3])
    assert scheduler.now() == pytest.approx(1.0)


def test_tasks_due_later_stay_pending() -> None:
    scheduler = ManualScheduler(start=10.0)
    callback = Mock()

    scheduler.call_later(5, callback)
    scheduler.advance(4.9)

    callback.assert_not_called()
    assert scheduler.pending_count == 1

    scheduler.advance(0.2)
    callback.assert_called_once_with()
    assert scheduler.pending_count == 0


def test_cancelled_task_never_runs() -> None:
    scheduler = ManualScheduler()
    callback = Mock()

    task = scheduler.call_later(0.1, callback)
    scheduler.cancel(task)
    scheduler.cancel(task)

    assert task.cancelled() is True
    assert scheduler.pending_count == 0
    scheduler.advance(1)
    callback.assert_not_called()


def test_task_cancelled_by_earlier_task_in_same_advance() -> None:
    scheduler = ManualScheduler()
    late = Mock()

    late_task = scheduler.call_later(0.2, late)
    scheduler.call_later(0.1, late_task.cancel)
    scheduler.advance(1)

    late.assert_not_called()


def test_tasks_scheduled_by_tasks_run_within_same_advance() -> None:
    scheduler = ManualScheduler()
    second = Mock()

    scheduler.call_later(0.1, lambda: scheduler.call_later(0.1, second))
    scheduler.advance(0.25)

    second.assert_called_once_with()


def test_negative_advance_is_rejected() -> None:
    with pytest.raises(ValueError):
        ManualScheduler().advance(-1)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"clock_resolution": -0.1},
        {"timer_lag": -0.1},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        ManualScheduler(**kwargs)


def test_nan_delay_is_a_scheduler_error() -> None:
    with pytest.raises(SchedulerError):
        ManualScheduler().call_later(float("nan"), Mock())


def test_clock_resolution_delivers_long_timers_early() -> None:
    scheduler = ManualScheduler(clock_resolution=0.01)
    fired_at: list[float] = []

    scheduler.call_later(0.5, lambda: fired_at.append(scheduler.now()))
    scheduler.call_later(0.005, lambda: fired_at.append(scheduler.now()))
    scheduler.run_until_idle()

    assert fired_at == pytest.approx([0.005, 0.49])


def test_timer_lag_delivers_late() -> None:
    scheduler = ManualScheduler(timer_lag=0.2)
    callback = Mock()

    scheduler.call_later(0.1, callback)
    scheduler.advance(0.25)
    callback.assert_not_called()

    scheduler.advance(0.1)
    callback.assert_called_once_with()


def test_run_until_idle_detects_runaway_rescheduling() -> None:
    scheduler = ManualScheduler()

    def reschedule() -> None:
        scheduler.call_later(0.01, reschedule)

    scheduler.call_later(0.01, reschedule)

    with pytest.raises(RuntimeError):
        scheduler.run_until_idle(max_tasks=50)


def test_report_failure_reraises_by_default() -> None:
    scheduler = ManualScheduler()
    error = RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        scheduler.report_failure(error)

    assert scheduler.failures == [error]


def test_report_failure_can_only_record() -> None:
    scheduler = ManualScheduler(raise_failures=False)
    error = RuntimeError("boom")

    scheduler.report_failure(error)

    assert scheduler.failures == [error]


def test_delay_just_above_resolution_is_delivered_at_due_time() -> None:
    scheduler = ManualScheduler(start=0.095, clock_resolution=0.005)
    fired_at: list[float] = []

    # 0.1 - 0.095 rounds to a hair above 0.005.
    scheduler.call_later(0.1 - 0.095, lambda: fired_at.append(scheduler.now()))
    scheduler.advance(0.001)
    assert fired_at == []

    scheduler.advance(0.01)
    assert fired_at == pytest.approx([0.1])


def test_delayed_task_is_never_delivered_at_scheduling_instant() -> None:
    # At this magnitude the pulled-early delivery time rounds back to now.
    scheduler = ManualScheduler(start=1e9, clock_resolution=0.5)
    callback = Mock()

    scheduler.call_later(0.5 + 2e-9, callback)
    scheduler.advance(0)

    callback.assert_not_called()
    assert scheduler.pending_count == 1


def test_advance_detects_task_rescheduling_itself_without_delay() -> None:
    scheduler = ManualScheduler(max_tasks_per_advance=50)
    runs: list[float] = []

    def reschedule() -> None:
        runs.append(scheduler.now())
        scheduler.call_later(0, reschedule)

    scheduler.call_later(0.1, reschedule)

    with pytest.raises(RuntimeError, match="50 tasks"):
        scheduler.advance(1)

    assert len(runs) == 50


def test_max_tasks_per_advance_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ManualScheduler(max_tasks_per_advance=0)


def test_next_due_reports_earliest_live_task() -> None:
    scheduler = ManualScheduler(start=1.0, timer_lag=0.5)
    assert scheduler.next_due is None

    first = scheduler.call_later(0.2, Mock())
    scheduler.call_later(0.4, Mock())

    assert scheduler.next_due == pytest.approx(1.2)

    first.cancel()
    assert scheduler.next_due == pytest.approx(1.4)
