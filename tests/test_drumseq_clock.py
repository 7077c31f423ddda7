import logging
import threading

import pytest

from drumseq.clock import ManualTimers, RepeatingTimer


def test_manual_timer_fires_on_each_deadline() -> None:
    timers = ManualTimers()
    fired: list[float] = []
    timer = timers(0.1, lambda: fired.append(timers.now))
    timer.start()
    timers.advance(0.35)
    assert fired == pytest.approx([0.1, 0.2, 0.3])
    assert timers.now == pytest.approx(0.35)


def test_manual_timer_cancel_from_callback() -> None:
    timers = ManualTimers()
    fired: list[int] = []

    def _once() -> None:
        fired.append(1)
        timer.cancel()

    timer = timers(0.1, _once)
    timer.start()
    timers.advance(1.0)
    assert fired == [1]
    assert timers.pending == 0


def test_manual_timers_fire_in_deadline_order() -> None:
    timers = ManualTimers()
    order: list[str] = []
    timers(0.3, lambda: order.append("slow")).start()
    timers(0.2, lambda: order.append("fast")).start()
    timers.advance(0.5)
    assert order == ["fast", "slow", "fast"]


def test_manual_timer_callback_errors_are_logged(caplog) -> None:
    timers = ManualTimers()
    calls: list[int] = []

    def _boom() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    timers(0.1, _boom).start()
    with caplog.at_level(logging.WARNING, logger="drumseq.clock"):
        timers.advance(0.25)
    assert len(calls) == 2
    assert "boom" in caplog.text


def test_timers_reject_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        RepeatingTimer(0.0, lambda: None)
    with pytest.raises(ValueError):
        ManualTimers()(-1.0, lambda: None)


def test_repeating_timer_runs_until_cancelled() -> None:
    done = threading.Event()
    count = 0

    def _tick() -> None:
        nonlocal count
        count += 1
        if count >= 3:
            done.set()

    timer = RepeatingTimer(0.01, _tick)
    timer.start()
    assert done.wait(2.0)
    timer.cancel()
    assert timer.cancelled
    assert count >= 3


def test_repeating_timer_cancel_inside_callback_does_not_deadlock() -> None:
    done = threading.Event()
    timer: RepeatingTimer

    def _tick() -> None:
        timer.cancel()
        done.set()

    timer = RepeatingTimer(0.01, _tick)
    timer.start()
    assert done.wait(2.0)
    assert timer.cancelled


def test_repeating_timer_survives_callback_errors() -> None:
    done = threading.Event()
    calls: list[int] = []

    def _flaky() -> None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first call fails")
        done.set()

    timer = RepeatingTimer(0.01, _flaky)
    timer.start()
    assert done.wait(2.0)
    timer.cancel()
    assert len(calls) >= 2
