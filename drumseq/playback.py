from __future__ import annotations

import logging
import math

import numpy as np

from .audio import SAMPLE_RATE, to_mono
from .errors import RenderError
from .graph import AudioGraph
from .logging_utils import debug_enabled
from .samples import DecodedSample
from .synth import SILENCE_FLOOR, FloatArray, exponential_envelope, semitone_ratio

_LOGGER = logging.getLogger("drumseq.playback")

MIN_SAMPLE_DURATION = 0.1
MAX_SAMPLE_DURATION = 3.0
# Headroom against clipping when several tracks hit together
SAMPLE_GAIN = 0.8


def sample_duration(decay: float) -> float:
    """Playback length in seconds for a decay percentage."""
    return min(max(decay / 100.0 * MAX_SAMPLE_DURATION, MIN_SAMPLE_DURATION), MAX_SAMPLE_DURATION)


def playback_rate(tune: float, source_rate: int, output_rate: int) -> float:
    """Source frames advanced per output frame; pitch and length shift together."""
    return semitone_ratio(tune) * source_rate / output_rate


def render_sample(
    sample: DecodedSample,
    velocity: float,
    tune: float,
    decay: float,
    sample_rate: int = SAMPLE_RATE,
) -> FloatArray:
    """Render a decoded sample with rate-scaling pitch shift and exponential decay.

    The result never outlasts `sample_duration(decay)`, however long the
    source is. It ends earlier when the resampled source runs out.
    """

    mono = to_mono(sample.frames).astype(np.float64)
    if mono.size == 0:
        raise RenderError(f"{sample.name}: empty sample")
    rate = playback_rate(tune, sample.sample_rate, sample_rate)
    if not math.isfinite(rate) or rate <= 0:
        raise RenderError(f"{sample.name}: invalid playback rate {rate}")

    duration = sample_duration(decay)
    max_frames = int(round(duration * sample_rate))
    source_frames = int(math.floor((mono.size - 1) / rate)) + 1
    num_frames = min(max_frames, source_frames)

    positions = np.arange(num_frames) * rate
    resampled = np.interp(positions, np.arange(mono.size), mono, right=0.0)
    envelope = exponential_envelope(velocity * SAMPLE_GAIN, duration, duration, sample_rate, SILENCE_FLOOR)
    return resampled * envelope[:num_frames]


class SamplePlayer:
    """Schedules decoded samples on an audio graph.

    Failures are contained here: a sample that cannot be rendered or
    scheduled is logged and reported as False so the caller keeps going.
    """

    def __init__(self, graph: AudioGraph) -> None:
        self._graph = graph

    @property
    def graph(self) -> AudioGraph:
        return self._graph

    def play(
        self,
        sample: DecodedSample,
        time: float,
        velocity: float,
        tune: float,
        decay: float,
    ) -> bool:
        try:
            rendered = render_sample(sample, velocity, tune, decay, self._graph.sample_rate)
            self._graph.schedule(rendered, time)
        except Exception as exc:
            _LOGGER.warning("Sample %r failed to play: %s", sample.name, exc, exc_info=debug_enabled())
            return False
        return True
