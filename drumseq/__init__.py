from __future__ import annotations

from .audio import SAMPLE_RATE, decode_audio, write_wav
from .clock import ManualTimers, RepeatingTimer
from .config import (
    DEFAULT_DECAY,
    DEFAULT_LEVELS,
    DEFAULT_TUNE,
    INSTRUMENTS,
    PARAM_KINDS,
    STEP_COUNT,
    InstrumentId,
    ParamKind,
    Pattern,
    PatternRef,
    TrackParams,
    validate_pattern,
)
from .errors import (
    DrumseqError,
    InvalidPatternError,
    PatternNotFoundError,
    PlaybackError,
    RenderError,
    SampleDecodeError,
)
from .generate import EuclideanGenerator, PatternGenerator, euclidean_steps, normalize_tracks
from .graph import AudioGraph, Mixer
from .logging_utils import configure_logging as _configure_logging
from .machine import DrumMachine, PlaybackState, TriggerEvent, TriggerHooks, bounce
from .playback import SamplePlayer, render_sample, sample_duration
from .samples import (
    BufferCache,
    DecodedSample,
    PendingSample,
    build_buffer_cache,
    decode_sample,
    resolve_bindings,
)
from .scheduler import Sequencer, step_interval, step_interval_ms
from .settings import EngineSettings
from .store import DEMO_PATTERNS, InMemoryPatternStore, PatternStore, listing, seed_demo_patterns
from .voices import VOICES, VoiceBank, VoiceSpec, render_voice, trigger_voice

__all__ = [
    "SAMPLE_RATE",
    "AudioGraph",
    "BufferCache",
    "DEFAULT_DECAY",
    "DEFAULT_LEVELS",
    "DEFAULT_TUNE",
    "DEMO_PATTERNS",
    "DecodedSample",
    "DrumMachine",
    "DrumseqError",
    "EngineSettings",
    "EuclideanGenerator",
    "INSTRUMENTS",
    "InMemoryPatternStore",
    "InstrumentId",
    "InvalidPatternError",
    "ManualTimers",
    "Mixer",
    "PARAM_KINDS",
    "ParamKind",
    "Pattern",
    "PatternGenerator",
    "PatternNotFoundError",
    "PatternRef",
    "PatternStore",
    "PendingSample",
    "PlaybackError",
    "PlaybackState",
    "RenderError",
    "RepeatingTimer",
    "STEP_COUNT",
    "SampleDecodeError",
    "SamplePlayer",
    "Sequencer",
    "TrackParams",
    "TriggerEvent",
    "TriggerHooks",
    "VOICES",
    "VoiceBank",
    "VoiceSpec",
    "bounce",
    "build_buffer_cache",
    "decode_audio",
    "decode_sample",
    "euclidean_steps",
    "listing",
    "normalize_tracks",
    "render_sample",
    "render_voice",
    "resolve_bindings",
    "sample_duration",
    "seed_demo_patterns",
    "step_interval",
    "step_interval_ms",
    "trigger_voice",
    "validate_pattern",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
