"""
Synthesis voice bank.

Each of the eight instruments is a pure function returning a `VoiceSpec`: a
description of oscillators, noise sources, filters and envelopes. The spec is
turned into samples by `render_voice` and placed on an audio graph by
`trigger_voice`. Keeping the description separate from the rendering keeps
the synthesis math testable without any audio backend.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, TypeAlias

import numpy as np

from .audio import SAMPLE_RATE
from .config import InstrumentId
from .errors import RenderError
from .synth import (
    OSC_FUNCTIONS,
    SILENCE_FLOOR,
    FilterKind,
    FloatArray,
    Waveform,
    add_note,
    apply_filter,
    exponential_envelope,
    generate_noise,
    generate_swept,
    semitone_ratio,
)

if TYPE_CHECKING:
    from .graph import AudioGraph

_LOGGER = logging.getLogger("drumseq.voices")

# Shortest rendered layer, whatever the decay setting
MIN_VOICE_DURATION = 0.1
# Shortest exponential ramp, keeps decay=1 on short voices finite
MIN_RAMP = 0.001
# Distinct (instrument, level, tune, decay) hits kept rendered per bank
VOICE_CACHE_SIZE = 64


@dataclass(frozen=True, slots=True)
class Oscillator:
    waveform: Waveform
    freq: float
    end_freq: float | None = None
    sweep_time: float = 0.0


@dataclass(frozen=True, slots=True)
class Noise:
    """White noise; `length` limits the burst, None lasts the whole layer."""

    length: float | None = None


@dataclass(frozen=True, slots=True)
class Filter:
    kind: FilterKind
    cutoff: float
    q: float = 1.0


@dataclass(frozen=True, slots=True)
class Envelope:
    """Exponential decay from `peak` to the silence floor over `ramp`, rendered for `length`."""

    peak: float
    ramp: float
    length: float


Source: TypeAlias = Oscillator | Noise


@dataclass(frozen=True, slots=True)
class Layer:
    sources: tuple[Source, ...]
    envelope: Envelope
    filter: Filter | None = None
    offset: float = 0.0

    @property
    def end(self) -> float:
        return self.offset + self.envelope.length


@dataclass(frozen=True, slots=True)
class VoiceSpec:
    instrument: InstrumentId
    layers: tuple[Layer, ...]

    @property
    def duration(self) -> float:
        return max((layer.end for layer in self.layers), default=0.0)


VoiceFn: TypeAlias = Callable[[float, float, float], VoiceSpec]


def voice_ramp(ceiling: float, decay: float) -> float:
    """Decay-scaled ramp time for a voice whose ceiling is reached at decay=100."""
    ramp = ceiling * decay / 100.0
    if not math.isfinite(ramp):
        return MIN_RAMP
    return max(ramp, MIN_RAMP)


def _envelope(peak: float, ceiling: float, decay: float) -> Envelope:
    ramp = voice_ramp(ceiling, decay)
    return Envelope(peak=max(peak, 0.0), ramp=ramp, length=max(ramp, MIN_VOICE_DURATION))


# =============================================================================
# VOICES
# =============================================================================


def kick(velocity: float, tune: float, decay: float) -> VoiceSpec:
    """Sine plus triangle an octave down, both swept down, through a low-pass."""
    base = 60.0 * semitone_ratio(tune)
    sources = (
        Oscillator("sine", base, end_freq=base * 0.1, sweep_time=0.1),
        Oscillator("triangle", base * 0.5, end_freq=base * 0.05, sweep_time=0.1),
    )
    layer = Layer(sources, _envelope(velocity, 1.5, decay), Filter("lowpass", 200.0, 1.0))
    return VoiceSpec("kick", (layer,))


def snare(velocity: float, tune: float, decay: float) -> VoiceSpec:
    """High-passed noise for the crack, band-passed triangle for the body."""
    noise = Layer(
        (Noise(length=0.2),),
        _envelope(velocity * 0.8, 0.3, decay),
        Filter("highpass", 1000.0),
    )
    body = Layer(
        (Oscillator("triangle", 200.0 * semitone_ratio(tune)),),
        _envelope(velocity * 0.4, 0.6, decay),
        Filter("bandpass", 200.0, 5.0),
    )
    return VoiceSpec("snare", (noise, body))


def _metallic(
    instrument: InstrumentId,
    waveform: Waveform,
    freqs: tuple[float, ...],
    gain: float,
    falloff: float,
    ceiling: float,
    velocity: float,
    tune: float,
    decay: float,
) -> VoiceSpec:
    ratio = semitone_ratio(tune)
    layers = tuple(
        Layer(
            (Oscillator(waveform, freq * ratio),),
            _envelope(velocity * gain * (1 - index * falloff), ceiling, decay),
        )
        for index, freq in enumerate(freqs)
    )
    return VoiceSpec(instrument, layers)


def open_hat(velocity: float, tune: float, decay: float) -> VoiceSpec:
    return _metallic(
        "openhat", "square", (8372.0, 9956.0, 11850.0, 14134.0), 0.1, 0.1, 0.8, velocity, tune, decay
    )


def closed_hat(velocity: float, tune: float, decay: float) -> VoiceSpec:
    return _metallic(
        "closedhat", "square", (10000.0, 12000.0, 14000.0, 16000.0), 0.05, 0.1, 0.1, velocity, tune, decay
    )


def crash(velocity: float, tune: float, decay: float) -> VoiceSpec:
    return _metallic(
        "crash",
        "sawtooth",
        (4186.0, 5274.0, 6645.0, 8372.0, 10548.0),
        0.08,
        0.15,
        2.0,
        velocity,
        tune,
        decay,
    )


CLAP_OFFSETS = (0.0, 0.01, 0.02, 0.04)


def clap(velocity: float, tune: float, decay: float) -> VoiceSpec:
    """Four short band-passed noise bursts a few milliseconds apart."""
    center = 1000.0 * semitone_ratio(tune)
    layers = tuple(
        Layer(
            (Noise(length=0.05),),
            _envelope(velocity * 0.6, 0.2, decay),
            Filter("bandpass", center, 3.0),
            offset=offset,
        )
        for offset in CLAP_OFFSETS
    )
    return VoiceSpec("clap", layers)


def cowbell(velocity: float, tune: float, decay: float) -> VoiceSpec:
    ratio = semitone_ratio(tune)
    sources = (Oscillator("triangle", 562.0 * ratio), Oscillator("triangle", 845.0 * ratio))
    return VoiceSpec("cowbell", (Layer(sources, _envelope(velocity * 0.6, 0.4, decay)),))


def clave(velocity: float, tune: float, decay: float) -> VoiceSpec:
    freq = 2500.0 * semitone_ratio(tune)
    layer = Layer(
        (Oscillator("triangle", freq),),
        _envelope(velocity * 0.8, 0.15, decay),
        Filter("bandpass", freq, 10.0),
    )
    return VoiceSpec("clave", (layer,))


VOICES: Mapping[InstrumentId, VoiceFn] = MappingProxyType(
    {
        "kick": kick,
        "snare": snare,
        "openhat": open_hat,
        "closedhat": closed_hat,
        "clap": clap,
        "crash": crash,
        "cowbell": cowbell,
        "clave": clave,
    }
)


def voice_spec(instrument: str, velocity: float, tune: float, decay: float) -> VoiceSpec | None:
    voice = VOICES.get(instrument)  # type: ignore[call-overload]
    if voice is None:
        return None
    return voice(velocity, tune, decay)


# =============================================================================
# RENDERING
# =============================================================================


def _render_source(
    source: Source,
    duration: float,
    sr: int,
    rng: np.random.Generator,
) -> FloatArray:
    match source:
        case Oscillator(waveform=waveform, freq=freq, end_freq=None):
            return OSC_FUNCTIONS[waveform](freq, duration, sr, 1.0)
        case Oscillator(waveform=waveform, freq=freq, end_freq=end_freq, sweep_time=sweep_time):
            assert end_freq is not None
            return generate_swept(waveform, freq, end_freq, sweep_time, duration, sr)
        case Noise(length=length):
            signal = np.zeros(int(round(sr * duration)))
            burst_length = duration if length is None else min(length, duration)
            add_note(signal, generate_noise(burst_length, sr, 1.0, rng), 0)
            return signal
        case _:
            raise RenderError(f"unsupported source {source!r}")


def render_layer(layer: Layer, sr: int = SAMPLE_RATE, rng: np.random.Generator | None = None) -> FloatArray:
    generator = rng if rng is not None else np.random.default_rng()
    length = layer.envelope.length
    num_samples = int(round(sr * length))
    mix = np.zeros(num_samples)
    for source in layer.sources:
        add_note(mix, _render_source(source, length, sr, generator), 0)
    if layer.filter is not None:
        mix = apply_filter(mix, layer.filter.kind, layer.filter.cutoff, layer.filter.q, sr)
    envelope = exponential_envelope(layer.envelope.peak, layer.envelope.ramp, length, sr, SILENCE_FLOOR)
    return mix * envelope[: len(mix)]


def render_voice(spec: VoiceSpec, sr: int = SAMPLE_RATE, rng: np.random.Generator | None = None) -> FloatArray:
    """Render every layer of `spec` into one buffer starting at the trigger time."""

    generator = rng if rng is not None else np.random.default_rng()
    signal = np.zeros(int(round(sr * spec.duration)))
    for layer in spec.layers:
        add_note(signal, render_layer(layer, sr, generator), int(round(sr * layer.offset)))
    if not np.all(np.isfinite(signal)):
        raise RenderError(f"{spec.instrument} rendered non-finite samples")
    return signal


Hit: TypeAlias = tuple[str, float, float, float]


class VoiceBank:
    """Rendered hits keyed on (instrument, velocity, tune, decay).

    A hit already in the bank is a lookup, so triggering it costs no
    synthesis. `warm` renders hits ahead of the step that plays them. Noise
    is drawn once per key: repeated hits with the same settings are
    identical, as with a sample-based machine.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        rng: np.random.Generator | None = None,
        maxsize: int = VOICE_CACHE_SIZE,
    ) -> None:
        self._sample_rate = sample_rate
        self._rng = rng if rng is not None else np.random.default_rng()
        # one render at a time draws from the shared generator
        self._rng_lock = threading.Lock()
        self._render = lru_cache(maxsize=maxsize)(self._render_hit)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def _render_hit(self, instrument: str, velocity: float, tune: float, decay: float) -> FloatArray | None:
        spec = voice_spec(instrument, velocity, tune, decay)
        if spec is None:
            return None
        with self._rng_lock:
            audio = render_voice(spec, self._sample_rate, self._rng)
        audio.setflags(write=False)
        return audio

    def get(self, instrument: str, velocity: float, tune: float, decay: float) -> FloatArray | None:
        """The rendered hit, or None when `instrument` has no voice."""
        return self._render(instrument, float(velocity), float(tune), float(decay))

    def warm(self, hits: Iterable[Hit]) -> int:
        """Render `hits` now; failures are logged and left for the trigger to report."""

        rendered = 0
        for instrument, velocity, tune, decay in hits:
            try:
                if self.get(instrument, velocity, tune, decay) is not None:
                    rendered += 1
            except (RenderError, ValueError) as exc:
                _LOGGER.warning("Could not pre-render %r: %s", instrument, exc)
        return rendered

    def cached(self) -> int:
        return self._render.cache_info().currsize

    def clear(self) -> None:
        self._render.cache_clear()


def trigger_voice(
    graph: AudioGraph,
    instrument: str,
    time: float,
    velocity: float,
    tune: float,
    decay: float,
    rng: np.random.Generator | None = None,
    *,
    voices: VoiceBank | None = None,
) -> bool:
    """Schedule a synthesized hit on `graph` at `time`.

    With a `voices` bank at the graph's rate the hit is looked up there;
    otherwise it is rendered on the spot. Returns False (after logging) for
    an unknown instrument.
    """

    if voices is not None and voices.sample_rate == graph.sample_rate:
        audio = voices.get(instrument, velocity, tune, decay)
    else:
        spec = voice_spec(instrument, velocity, tune, decay)
        audio = None if spec is None else render_voice(spec, graph.sample_rate, rng)
    if audio is None:
        _LOGGER.warning("No synthesized voice for track %r; skipping", instrument)
        return False
    graph.schedule(audio, time)
    return True
