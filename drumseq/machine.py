"""
`DrumMachine`: the external interface of the sequencer core.

It owns the current pattern (through `PatternRef`), the decoded buffer cache
and its bindings, the scheduler and the two renderers (sample player and
synthesized voices). Observers get a `TriggerEvent` for every sound placed on
the audio graph.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict

from .audio import FloatArray, ensure_audio_contract
from .clock import ManualTimers, TimerFactory
from .config import (
    GENERATED_NAME,
    STEP_COUNT,
    Pattern,
    PatternRef,
    TrackParams,
    is_instrument,
    validate_pattern,
)
from .errors import InvalidPatternError, RenderError
from .generate import normalize_tracks
from .graph import AudioGraph, Mixer
from .logging_utils import debug_enabled
from .playback import SamplePlayer
from .samples import EMPTY_CACHE, BufferCache, RawSource, build_buffer_cache, resolve_bindings
from .scheduler import Sequencer, default_timer, step_interval
from .settings import EngineSettings
from .voices import Hit, VoiceBank, trigger_voice

_LOGGER = logging.getLogger("drumseq.machine")

TriggerSource = Literal["sample", "synth"]


class TriggerEvent(BaseModel):
    track: str
    time: float
    source: TriggerSource
    sample: str | None = None
    step: int | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class TriggerHooks(BaseModel):
    on_trigger: Callable[[TriggerEvent], None] | None = None
    on_step: Callable[[int, float], None] | None = None
    on_error: Callable[[Exception], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


@dataclass(frozen=True, slots=True)
class PlaybackState:
    """Buffer cache and the bindings derived from it, swapped as one value."""

    cache: BufferCache = EMPTY_CACHE
    bindings: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


def _call_hook(name: str, hook: Callable[..., None] | None, *args: Any) -> None:
    if hook is None:
        return
    try:
        hook(*args)
    except Exception as exc:
        _LOGGER.warning("%s hook failed: %s", name, exc, exc_info=debug_enabled())


class DrumMachine:
    def __init__(
        self,
        graph: AudioGraph | None = None,
        *,
        settings: EngineSettings | None = None,
        pattern: Pattern | None = None,
        hooks: TriggerHooks | None = None,
        clock: Callable[[], float] | None = None,
        timer_factory: TimerFactory = default_timer,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._graph: AudioGraph = graph if graph is not None else Mixer(self._settings.sample_rate)
        self._hooks = hooks or TriggerHooks()
        self._rng = rng if rng is not None else np.random.default_rng()
        self._pattern = PatternRef(pattern)
        self._player = SamplePlayer(self._graph)
        self._pattern_sources: dict[str, RawSource] = {}
        self._library_sources: dict[str, RawSource] = {}
        self._playback = PlaybackState()
        self._playback_lock = threading.Lock()
        self._voices = VoiceBank(self._graph.sample_rate, self._rng)
        graph_ref = self._graph
        self._sequencer = Sequencer(
            self._pattern,
            self._trigger_step,
            clock=clock if clock is not None else (lambda: graph_ref.current_time),
            timer_factory=timer_factory,
            lookahead=self._settings.lookahead,
            on_step=self._emit_step,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def pattern(self) -> Pattern:
        return self._pattern.get()

    @property
    def graph(self) -> AudioGraph:
        return self._graph

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def is_playing(self) -> bool:
        return self._sequencer.is_playing

    @property
    def current_step(self) -> int:
        return self._sequencer.cursor

    @property
    def bindings(self) -> Mapping[str, str]:
        return self._playback.bindings

    @property
    def buffers(self) -> BufferCache:
        return self._playback.cache

    @property
    def pattern_sources(self) -> Mapping[str, RawSource]:
        return MappingProxyType(self._pattern_sources)

    @property
    def library_sources(self) -> Mapping[str, RawSource]:
        return MappingProxyType(self._library_sources)

    # ------------------------------------------------------------------
    # Whole-pattern operations
    # ------------------------------------------------------------------

    def load_pattern(self, pattern: Pattern | Mapping[str, Any]) -> Pattern:
        """Replace the current pattern; a mapping is read as a stored document."""

        loaded = pattern if isinstance(pattern, Pattern) else Pattern.from_document(pattern)
        if self.is_playing:
            self._warm_voices(loaded)
        previous = self._pattern.get()
        self._pattern.replace(loaded)
        self._after_edit(previous, loaded)
        _LOGGER.info("Loaded pattern %r at %d BPM", loaded.name, loaded.tempo)
        return loaded

    def new_pattern(self) -> Pattern:
        return self.load_pattern(Pattern())

    def apply_generated(
        self,
        tracks: Mapping[str, Sequence[object]],
        description: str | None = None,
    ) -> Pattern:
        """Replace the step grids with a generated track map (normalized to 16 steps)."""

        grids = normalize_tracks(tracks)

        def _apply(current: Pattern) -> Pattern:
            changes: dict[str, Any] = {"tracks": grids, "name": GENERATED_NAME}
            if description is not None:
                changes["description"] = description
            return current.with_updates(**changes)

        return self._edit(_apply)

    # ------------------------------------------------------------------
    # Mutators; invalid input raises InvalidPatternError and changes nothing
    # ------------------------------------------------------------------

    def set_step(self, track: str, index: int, active: bool) -> Pattern:
        return self._edit(lambda current: current.with_step(track, index, active))

    def toggle_step(self, track: str, index: int, *, preview: bool = True) -> bool:
        """Flip one step; a newly active step is auditioned while stopped."""

        updated = self._edit(
            lambda current: current.with_step(track, index, not current.is_active(track, index))
        )
        active = updated.is_active(track, index)
        if preview and active and not self.is_playing:
            self.preview_step(track)
        return active

    def clear_track(self, track: str) -> Pattern:
        return self._edit(lambda current: current.cleared(track))

    def set_param(self, track: str, kind: str, value: int) -> Pattern:
        return self._edit(lambda current: current.with_param(track, kind, value))

    def set_tempo(self, bpm: int) -> Pattern:
        return self._edit(lambda current: current.with_tempo(bpm))

    def set_name(self, name: str) -> Pattern:
        return self._edit(lambda current: current.with_updates(name=name))

    def set_track_sample_binding(self, track: str, sample_id: str | None) -> Pattern:
        return self._edit(lambda current: current.with_sample_assignment(track, sample_id))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def start(self) -> None:
        if not self.is_playing:
            self._warm_voices(self._pattern.get())
        self._sequencer.start()

    def stop(self) -> None:
        self._sequencer.stop()

    def preview_step(self, track: str) -> bool:
        """Play one hit of `track` right away, outside the sequence."""

        if not is_instrument(track):
            raise InvalidPatternError(f"unknown track {track!r}")
        snapshot = self._pattern.get()
        when = self._graph.current_time + self._settings.lookahead
        return self._trigger(track, snapshot.params(track), when, None)

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def on_buffer_set_changed(
        self,
        *,
        pattern: Mapping[str, RawSource] | None = None,
        library: Mapping[str, RawSource] | None = None,
    ) -> PlaybackState:
        """Decode the new raw source sets and swap in the rebuilt cache.

        A side passed as None keeps its previous sources. Decoding finishes,
        per source success or failure, before anything is swapped.
        """

        if pattern is not None:
            self._pattern_sources = dict(pattern)
        if library is not None:
            self._library_sources = dict(library)
        cache = build_buffer_cache(self._pattern_sources, self._library_sources)
        return self._rebind(cache)

    def attach_track_sample(self, track: str, source: RawSource) -> PlaybackState:
        """Add a pattern-local sample named after `track`, which then binds to it."""

        if not is_instrument(track):
            raise InvalidPatternError(f"unknown track {track!r}")
        return self.on_buffer_set_changed(pattern={**self._pattern_sources, track: source})

    def remove_track_sample(self, track: str) -> PlaybackState:
        """Drop the pattern-local sample named after `track`; resolution runs again."""

        sources = dict(self._pattern_sources)
        if sources.pop(track, None) is None:
            _LOGGER.info("No pattern sample for %r to remove", track)
        return self.on_buffer_set_changed(pattern=sources)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _edit(self, edit: Callable[[Pattern], Pattern]) -> Pattern:
        def _apply(current: Pattern) -> Pattern:
            edited = edit(current)
            # the running sequencer must find every hit of the new pattern rendered
            if self.is_playing:
                self._warm_voices(edited)
            return edited

        previous = self._pattern.get()
        updated = self._pattern.update(_apply)
        self._after_edit(previous, updated)
        return updated

    def _after_edit(self, previous: Pattern, updated: Pattern) -> None:
        if previous.sample_assignments != updated.sample_assignments:
            self._rebind()
        if previous.tempo != updated.tempo and self.is_playing:
            self._sequencer.retime()

    def _rebind(self, cache: BufferCache | None = None) -> PlaybackState:
        """Resolve bindings against `cache` (default: the current one) and swap both in."""

        with self._playback_lock:
            current = cache if cache is not None else self._playback.cache
            bindings = resolve_bindings(current, self._pattern.get().sample_assignments)
            state = PlaybackState(current, MappingProxyType(bindings))
            self._playback = state
        _LOGGER.debug("Bindings: %s", bindings)
        return state

    def _warm_voices(self, pattern: Pattern) -> None:
        hits: list[Hit] = []
        for track in pattern.tracks:
            if is_instrument(track) and any(pattern.steps(track)):
                params = pattern.params(track)
                hits.append((track, params.velocity, params.tune, params.decay))
        self._voices.warm(hits)

    def _emit_step(self, step: int, time: float) -> None:
        _call_hook("on_step", self._hooks.on_step, step, time)

    def _trigger_step(self, track: str, params: TrackParams, time: float, step: int) -> None:
        self._trigger(track, params, time, step)

    def _trigger(self, track: str, params: TrackParams, time: float, step: int | None) -> bool:
        state = self._playback
        sample_id = state.bindings.get(track)
        sample = state.cache.get(sample_id) if sample_id is not None else None
        if sample is not None:
            if not self._player.play(sample, time, params.velocity, params.tune, params.decay):
                self._report(RenderError(f"sample {sample.name!r} for {track!r} failed to play"))
                return False
            self._emit_trigger(TriggerEvent(track=track, time=time, source="sample", sample=sample.name, step=step))
            return True
        try:
            played = trigger_voice(
                self._graph, track, time, params.velocity, params.tune, params.decay, voices=self._voices
            )
        except Exception as exc:
            _LOGGER.warning("Voice %r failed: %s", track, exc, exc_info=debug_enabled())
            self._report(exc)
            return False
        if played:
            self._emit_trigger(TriggerEvent(track=track, time=time, source="synth", step=step))
        return played

    def _emit_trigger(self, event: TriggerEvent) -> None:
        _call_hook("on_trigger", self._hooks.on_trigger, event)

    def _report(self, exc: Exception) -> None:
        _call_hook("on_error", self._hooks.on_error, exc)


# =============================================================================
# OFFLINE BOUNCE
# =============================================================================


def bounce(
    pattern: Pattern | Mapping[str, Any],
    bars: int = 1,
    *,
    settings: EngineSettings | None = None,
    pattern_sources: Mapping[str, RawSource] | None = None,
    library_sources: Mapping[str, RawSource] | None = None,
    tail: float = 2.0,
    hooks: TriggerHooks | None = None,
    rng: np.random.Generator | None = None,
) -> FloatArray:
    """Render `bars` passes of a pattern through a machine on manual timers.

    The sequencer stops after the last step; `tail` seconds are appended so
    the final hits ring out.
    """

    if bars < 1:
        raise ValueError(f"bars must be at least 1, got {bars}")
    base = settings or EngineSettings()
    offline = base.model_copy(update={"lookahead": 0.0})
    timers = ManualTimers()
    mixer = Mixer(offline.sample_rate)
    loaded = validate_pattern(pattern) if isinstance(pattern, Pattern) else Pattern.from_document(pattern)
    machine = DrumMachine(
        mixer,
        settings=offline,
        pattern=loaded,
        hooks=hooks,
        clock=timers.clock,
        timer_factory=timers,
        rng=rng,
    )
    if pattern_sources or library_sources:
        machine.on_buffer_set_changed(pattern=pattern_sources or {}, library=library_sources or {})

    interval = step_interval(loaded.tempo)
    sequence_length = bars * STEP_COUNT * interval
    stop_at = sequence_length - interval / 2
    total_frames = int(math.ceil((sequence_length + max(tail, 0.0)) * offline.sample_rate))
    block_size = offline.block_size

    chunks: list[FloatArray] = []
    rendered = 0
    machine.start()
    while rendered < total_frames:
        block = min(block_size, total_frames - rendered)
        block_end = (rendered + block) / offline.sample_rate
        if machine.is_playing:
            if block_end >= stop_at:
                timers.advance(stop_at - timers.now)
                machine.stop()
            else:
                timers.advance(block_end - timers.now)
        chunks.append(mixer.render(block))
        rendered += block
    _LOGGER.info("Bounced %r: %d bars, %.2fs", loaded.name, bars, total_frames / offline.sample_rate)
    return ensure_audio_contract(np.concatenate(chunks), check_peak=False)
