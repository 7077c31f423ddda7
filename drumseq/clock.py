"""
Cancellable repeating timers.

`RepeatingTimer` runs its callback on a daemon thread at deadlines
`start + k * interval`, so late callbacks do not push later ones back.
`ManualTimers` produces timers driven by `advance()` for offline rendering.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Protocol

from .logging_utils import debug_enabled

_LOGGER = logging.getLogger("drumseq.clock")

TimerCallback = Callable[[], None]


class Timer(Protocol):
    @property
    def interval(self) -> float: ...

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, TimerCallback], Timer]


def _run_callback(callback: TimerCallback) -> None:
    try:
        callback()
    except Exception as exc:
        _LOGGER.warning("Timer callback failed: %s", exc, exc_info=debug_enabled())


class RepeatingTimer:
    def __init__(
        self,
        interval: float,
        callback: TimerCallback,
        *,
        clock: Callable[[], float] = time.perf_counter,
        name: str = "drumseq-timer",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._interval = interval
        self._callback = callback
        self._clock = clock
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        # Never joins: may be called from the callback itself
        self._cancelled.set()

    def _run(self) -> None:
        origin = self._clock()
        for count in itertools.count(1):
            deadline = origin + count * self._interval
            if self._cancelled.wait(max(deadline - self._clock(), 0.0)):
                return
            _run_callback(self._callback)


class _ManualTimer:
    def __init__(self, owner: ManualTimers, interval: float, callback: TimerCallback) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._owner = owner
        self._interval = interval
        self.callback = callback
        self.cancelled = False

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        self._owner._arm(self, self._owner.now + self._interval)

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Deterministic timer factory with a manually advanced clock.

    Use the instance as a `TimerFactory` and `clock()` as the scheduler's
    clock; `advance(seconds)` fires every due callback in deadline order.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._queue: list[tuple[float, int, _ManualTimer]] = []
        self._order = itertools.count()

    def __call__(self, interval: float, callback: TimerCallback) -> _ManualTimer:
        return _ManualTimer(self, interval, callback)

    def clock(self) -> float:
        return self.now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def _arm(self, timer: _ManualTimer, deadline: float) -> None:
        heapq.heappush(self._queue, (deadline, next(self._order), timer))

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-12:
            deadline, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.now = max(self.now, deadline)
            _run_callback(timer.callback)
            if not timer.cancelled:
                self._arm(timer, deadline + timer.interval)
        self.now = target
