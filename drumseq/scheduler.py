"""
Sequencer scheduler: a 16-step cursor advanced by a repeating timer.

Every step is stamped with the scheduler's own timeline (previous stamp plus
one step interval), never with the host time the timer callback happened to
run at, so tracks of one step sound together and long runs keep tempo.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Literal

from .clock import RepeatingTimer, Timer, TimerFactory
from .config import STEP_COUNT, Pattern, PatternRef, TrackParams
from .errors import InvalidPatternError
from .logging_utils import debug_enabled

_LOGGER = logging.getLogger("drumseq.scheduler")

SequencerState = Literal["stopped", "running"]
TriggerFn = Callable[[str, TrackParams, float, int], None]
StepFn = Callable[[int, float], None]

NO_STEP = -1


def step_interval_ms(tempo: float) -> float:
    """Length of one 16th note in milliseconds."""
    if tempo <= 0:
        raise InvalidPatternError(f"tempo must be positive, got {tempo}")
    return 60000 / (tempo * 4)


def step_interval(tempo: float) -> float:
    return step_interval_ms(tempo) / 1000.0


def default_timer(interval: float, callback: Callable[[], None]) -> Timer:
    return RepeatingTimer(interval, callback, name="drumseq-sequencer")


class Sequencer:
    """Advances the step cursor and triggers every active track per step.

    `trigger(track, params, time, step)` is called once per active track.
    Failures inside it are logged and do not stop the step or the run.
    """

    def __init__(
        self,
        pattern: PatternRef,
        trigger: TriggerFn,
        *,
        clock: Callable[[], float] = time.perf_counter,
        timer_factory: TimerFactory = default_timer,
        lookahead: float = 0.0,
        on_step: StepFn | None = None,
    ) -> None:
        self._pattern = pattern
        self._trigger = trigger
        self._clock = clock
        self._timer_factory = timer_factory
        self._lookahead = lookahead
        self._on_step = on_step
        self._lock = threading.Lock()
        self._state: SequencerState = "stopped"
        self._cursor = NO_STEP
        self._last_time = 0.0
        self._timer: Timer | None = None
        self._generation = 0

    @property
    def state(self) -> SequencerState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state == "running"

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def interval(self) -> float | None:
        timer = self._timer
        return timer.interval if timer is not None and self.is_playing else None

    def start(self) -> None:
        with self._lock:
            if self._state == "running":
                return
            snapshot = self._pattern.get()
            self._state = "running"
            self._cursor = 0
            self._last_time = self._clock() + self._lookahead
            step_time = self._last_time
            self._start_timer(step_interval(snapshot.tempo))
        _LOGGER.info("Sequencer started at %d BPM", snapshot.tempo)
        self._fire(snapshot, 0, step_time)

    def stop(self) -> None:
        with self._lock:
            if self._state == "stopped":
                return
            self._cancel_timer()
            self._state = "stopped"
            self._cursor = NO_STEP
        _LOGGER.info("Sequencer stopped")

    def retime(self) -> None:
        """Apply the current tempo to the running timer, keeping the cursor."""

        with self._lock:
            if self._state != "running":
                return
            tempo = self._pattern.get().tempo
            self._cancel_timer()
            self._last_time = self._clock() + self._lookahead
            self._start_timer(step_interval(tempo))
        _LOGGER.debug("Sequencer retimed to %d BPM at step %d", tempo, self._cursor)

    def tick(self) -> None:
        self._tick(self._generation)

    # ------------------------------------------------------------------

    def _start_timer(self, interval: float) -> None:
        self._generation += 1
        generation = self._generation
        self._timer = self._timer_factory(interval, lambda: self._tick(generation))
        self._timer.start()

    def _cancel_timer(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self, generation: int) -> None:
        with self._lock:
            if self._state != "running" or generation != self._generation:
                return
            snapshot = self._pattern.get()
            interval = step_interval(snapshot.tempo)
            timer = self._timer
            # this step was due one running interval after the last; a new
            # tempo takes over from the next step
            due = timer.interval if timer is not None else interval
            self._cursor = (self._cursor + 1) % STEP_COUNT
            self._last_time += due
            step, step_time = self._cursor, self._last_time
            if timer is not None and abs(timer.interval - interval) > 1e-9:
                self._cancel_timer()
                self._start_timer(interval)
        self._fire(snapshot, step, step_time)

    def _fire(self, snapshot: Pattern, step: int, step_time: float) -> None:
        if self._on_step is not None:
            try:
                self._on_step(step, step_time)
            except Exception as exc:
                _LOGGER.warning("Step observer failed: %s", exc, exc_info=debug_enabled())
        for track in snapshot.tracks:
            if not snapshot.is_active(track, step):
                continue
            try:
                self._trigger(track, snapshot.params(track), step_time, step)
            except Exception as exc:
                _LOGGER.warning("Trigger for %r at step %d failed: %s", track, step, exc, exc_info=debug_enabled())
