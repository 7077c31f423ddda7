import threading

import pytest

from drumseq.clock import ManualTimers
from drumseq.config import Pattern, PatternRef, TrackParams
from drumseq.errors import InvalidPatternError
from drumseq.scheduler import NO_STEP, Sequencer, step_interval, step_interval_ms


class _Recorder:
    def __init__(self) -> None:
        self.hits: list[tuple[str, int, float]] = []
        self.steps: list[tuple[int, float]] = []

    def trigger(self, track: str, params: TrackParams, time: float, step: int) -> None:
        self.hits.append((track, step, time))

    def on_step(self, step: int, time: float) -> None:
        self.steps.append((step, time))


def _make(pattern: Pattern, *, lookahead: float = 0.0):
    timers = ManualTimers()
    ref = PatternRef(pattern)
    recorder = _Recorder()
    sequencer = Sequencer(
        ref,
        recorder.trigger,
        clock=timers.clock,
        timer_factory=timers,
        lookahead=lookahead,
        on_step=recorder.on_step,
    )
    return sequencer, ref, timers, recorder


def _grid(*active: int) -> list[bool]:
    return [step in active for step in range(16)]


def test_step_interval_formula_over_tempo_range() -> None:
    for tempo in range(60, 201):
        assert step_interval_ms(tempo) == 60000 / (tempo * 4)
        assert step_interval(tempo) == pytest.approx(60 / (tempo * 4))
    assert step_interval_ms(120) == 125.0


@pytest.mark.parametrize("tempo", [0, -10])
def test_non_positive_tempo_is_rejected(tempo: int) -> None:
    with pytest.raises(InvalidPatternError):
        step_interval_ms(tempo)


def test_start_fires_step_zero_synchronously() -> None:
    sequencer, _, timers, recorder = _make(Pattern(tracks={"kick": _grid(0)}))
    sequencer.start()
    assert sequencer.is_playing
    assert sequencer.cursor == 0
    assert recorder.steps == [(0, 0.0)]
    assert recorder.hits == [("kick", 0, 0.0)]
    assert timers.pending == 1


def test_start_while_running_is_a_no_op() -> None:
    sequencer, _, timers, recorder = _make(Pattern())
    sequencer.start()
    sequencer.start()
    assert recorder.steps == [(0, 0.0)]
    assert timers.pending == 1


def test_cursor_wraps_after_sixteen_steps() -> None:
    sequencer, _, timers, recorder = _make(Pattern(tempo=120))
    sequencer.start()
    timers.advance(0.125 * 16)
    assert [step for step, _ in recorder.steps] == list(range(16)) + [0]
    assert sequencer.cursor == 0
    assert all(0 <= step <= 15 for step, _ in recorder.steps)


def test_steps_are_stamped_on_the_scheduler_timeline() -> None:
    sequencer, _, timers, recorder = _make(Pattern(tempo=120), lookahead=0.025)
    sequencer.start()
    timers.advance(0.125 * 4)
    times = [time for _, time in recorder.steps]
    assert times == pytest.approx([0.025 + 0.125 * index for index in range(5)])


def test_tracks_in_one_step_share_the_timestamp() -> None:
    pattern = Pattern(tempo=120, tracks={"kick": _grid(2), "snare": _grid(2), "clave": _grid(2)})
    sequencer, _, timers, recorder = _make(pattern)
    sequencer.start()
    timers.advance(0.125 * 2)
    assert [track for track, _, _ in recorder.hits] == ["kick", "snare", "clave"]
    assert len({time for _, _, time in recorder.hits}) == 1


def test_kick_at_90_bpm_fires_three_times_in_one_cycle() -> None:
    pattern = Pattern(tempo=90, tracks={"kick": _grid(0, 6, 9)})
    sequencer, _, timers, recorder = _make(pattern)
    interval = step_interval(90)
    assert interval * 16 == pytest.approx(2.6667, abs=1e-3)
    sequencer.start()
    timers.advance(interval * 15.5)
    assert [(track, step) for track, step, _ in recorder.hits] == [("kick", 0), ("kick", 6), ("kick", 9)]
    assert [time for _, _, time in recorder.hits] == pytest.approx([0.0, 6 * interval, 9 * interval])
    assert len(recorder.steps) == 16


def test_retime_keeps_cursor_and_uses_new_interval() -> None:
    sequencer, ref, timers, recorder = _make(Pattern(tempo=120))
    sequencer.start()
    timers.advance(0.125 * 5)
    assert sequencer.cursor == 5

    ref.update(lambda pattern: pattern.with_tempo(60))
    sequencer.retime()
    assert sequencer.cursor == 5
    assert sequencer.interval == pytest.approx(0.25)

    timers.advance(0.2)
    assert sequencer.cursor == 5
    timers.advance(0.05)
    assert sequencer.cursor == 6
    assert recorder.steps[-1] == (6, pytest.approx(0.625 + 0.25))


def test_tempo_is_read_fresh_on_every_tick() -> None:
    sequencer, ref, timers, recorder = _make(Pattern(tempo=120))
    sequencer.start()
    ref.update(lambda pattern: pattern.with_tempo(60))
    timers.advance(0.125)
    assert recorder.steps[-1] == (1, pytest.approx(0.125))
    assert sequencer.interval == pytest.approx(0.25)
    timers.advance(0.25)
    assert recorder.steps[-1] == (2, pytest.approx(0.375))


def test_faster_tempo_keeps_stamps_on_the_host_clock() -> None:
    timers = ManualTimers()
    ref = PatternRef(Pattern(tempo=60))
    stamps: list[tuple[int, float, float]] = []
    sequencer = Sequencer(
        ref,
        lambda track, params, time, step: None,
        clock=timers.clock,
        timer_factory=timers,
        on_step=lambda step, time: stamps.append((step, time, timers.now)),
    )
    sequencer.start()
    ref.update(lambda pattern: pattern.with_tempo(120))
    timers.advance(2.0)

    assert stamps[1] == (1, pytest.approx(0.25), pytest.approx(0.25))
    assert sequencer.interval == pytest.approx(0.125)
    assert len(stamps) == 1 + 1 + 14
    for _, stamp, host in stamps:
        assert stamp == pytest.approx(host)



def test_stop_cancels_ticks_and_resets_cursor() -> None:
    sequencer, _, timers, recorder = _make(Pattern(tracks={"kick": [True] * 16}))
    sequencer.start()
    timers.advance(0.125 * 3)
    sequencer.stop()
    assert not sequencer.is_playing
    assert sequencer.cursor == NO_STEP
    hits = len(recorder.hits)
    timers.advance(1.0)
    assert len(recorder.hits) == hits
    assert timers.pending == 0
    sequencer.stop()
    assert sequencer.state == "stopped"


def test_stop_then_start_restarts_at_step_zero() -> None:
    sequencer, _, timers, recorder = _make(Pattern())
    transitions: list[bool] = []
    for _ in range(2):
        sequencer.start()
        transitions.append(sequencer.is_playing)
        timers.advance(0.125 * 2)
        sequencer.stop()
        transitions.append(sequencer.is_playing)
    assert [step for step, _ in recorder.steps] == [0, 1, 2, 0, 1, 2]
    assert transitions == [True, False, True, False]


def test_manual_tick_while_stopped_does_nothing() -> None:
    sequencer, _, _, recorder = _make(Pattern(tracks={"kick": [True] * 16}))
    sequencer.tick()
    assert recorder.hits == []
    assert sequencer.cursor == NO_STEP


def test_failing_trigger_does_not_stop_the_step() -> None:
    timers = ManualTimers()
    hits: list[str] = []

    def _trigger(track: str, params: TrackParams, time: float, step: int) -> None:
        if track == "kick":
            raise RuntimeError("voice exploded")
        hits.append(track)

    pattern = Pattern(tracks={"kick": _grid(0, 1), "snare": _grid(0, 1)})
    sequencer = Sequencer(PatternRef(pattern), _trigger, clock=timers.clock, timer_factory=timers)
    sequencer.start()
    timers.advance(0.125)
    assert hits == ["snare", "snare"]
    assert sequencer.cursor == 1


def test_failing_step_observer_is_contained() -> None:
    timers = ManualTimers()
    hits: list[str] = []

    def _bad_observer(step: int, time: float) -> None:
        raise ValueError("observer")

    sequencer = Sequencer(
        PatternRef(Pattern(tracks={"clap": _grid(0)})),
        lambda track, params, time, step: hits.append(track),
        clock=timers.clock,
        timer_factory=timers,
        on_step=_bad_observer,
    )
    sequencer.start()
    assert hits == ["clap"]


def test_trigger_receives_current_params() -> None:
    timers = ManualTimers()
    seen: list[TrackParams] = []
    pattern = Pattern(tracks={"snare": _grid(0)}).with_param("snare", "tune", 5).with_param("snare", "level", 40)
    sequencer = Sequencer(
        PatternRef(pattern),
        lambda track, params, time, step: seen.append(params),
        clock=timers.clock,
        timer_factory=timers,
    )
    sequencer.start()
    assert seen == [TrackParams(level=40, tune=5, decay=30)]


def test_stop_returns_while_a_trigger_is_stuck() -> None:
    entered = threading.Event()
    release = threading.Event()

    def _slow_trigger(track: str, params: TrackParams, time: float, step: int) -> None:
        if step == 0:
            return
        entered.set()
        release.wait(5.0)

    sequencer = Sequencer(PatternRef(Pattern(tempo=200, tracks={"crash": [True] * 16})), _slow_trigger)
    sequencer.start()
    try:
        assert entered.wait(2.0)
        stopper = threading.Thread(target=sequencer.stop, daemon=True)
        stopper.start()
        stopper.join(1.0)
        assert not stopper.is_alive()
        assert not sequencer.is_playing
        assert sequencer.cursor == NO_STEP
    finally:
        release.set()
        sequencer.stop()
