# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false

"""
Synthesis primitives: oscillators, noise, biquad filters and the exponential
envelope shared by every drum voice.

All functions are pure: they allocate and return a new float64 array and keep
no state between calls.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Literal, TypeAlias, cast

import numpy as np
from numpy.typing import NDArray
from scipy.signal import butter, decimate, iirpeak, lfilter  # type: ignore[import]

from .audio import SAMPLE_RATE

FloatArray: TypeAlias = NDArray[np.float64]
Waveform = Literal["sine", "triangle", "square", "sawtooth"]
FilterKind = Literal["lowpass", "highpass", "bandpass"]
OscFn: TypeAlias = Callable[[float, float, int, float], FloatArray]

# Terminal value of every exponential ramp; exact zero is unreachable
SILENCE_FLOOR = 0.001
# Oscillators are kept below this fraction of the sample rate
MAX_FREQ_RATIO = 0.45


def semitone_ratio(semitones: float) -> float:
    """Frequency multiplier for a shift of `semitones`."""
    return float(2.0 ** (semitones / 12.0))


def _num_samples(duration: float, sr: int) -> int:
    return max(0, int(round(sr * duration)))


def _clamp_freq(freq: float, sr: int) -> float:
    return min(max(freq, 0.0), sr * MAX_FREQ_RATIO)


# =============================================================================
# OSCILLATORS
# =============================================================================


def generate_sine(freq: float, duration: float, sr: int = SAMPLE_RATE, amp: float = 1.0) -> FloatArray:
    """Generate sine wave."""
    t = np.arange(_num_samples(duration, sr)) / sr
    return amp * np.sin(2 * np.pi * _clamp_freq(freq, sr) * t)


def generate_triangle(freq: float, duration: float, sr: int = SAMPLE_RATE, amp: float = 1.0) -> FloatArray:
    """Generate triangle wave."""
    t = np.arange(_num_samples(duration, sr)) / sr
    return amp * _triangle_from_phase(t * _clamp_freq(freq, sr))


def _blep_residual(phase: FloatArray, dt: float) -> FloatArray:
    """4-point PolyBLEP residual for a unit step at phase 0."""

    residual = np.zeros_like(phase)

    m1 = phase < dt
    t1 = phase[m1] / dt
    residual[m1] = t1 * t1 * (2 * t1 - 3) + 1

    m2 = (phase >= dt) & (phase < 2 * dt)
    t2 = phase[m2] / dt - 1
    residual[m2] = t2 * t2 * (2 * t2 - 3)

    m3 = (phase > 1 - 2 * dt) & (phase <= 1 - dt)
    t3 = (phase[m3] - 1) / dt + 1
    residual[m3] = t3 * t3 * (2 * t3 + 3)

    m4 = phase > 1 - dt
    t4 = (phase[m4] - 1) / dt
    residual[m4] = t4 * t4 * (2 * t4 + 3) + 1
    return residual


def _decimate_to(signal_high: FloatArray, oversample: int, num_samples: int) -> FloatArray:
    signal = decimate(signal_high, oversample, ftype="fir", zero_phase=True)
    if len(signal) > num_samples:
        signal = signal[:num_samples]
    elif len(signal) < num_samples:
        signal = np.pad(signal, (0, num_samples - len(signal)))
    return cast(FloatArray, np.asarray(signal, dtype=np.float64))


def generate_sawtooth(
    freq: float, duration: float, sr: int = SAMPLE_RATE, amp: float = 1.0, oversample: int = 2
) -> FloatArray:
    """Generate anti-aliased sawtooth using 4-point PolyBLEP + oversampling."""

    num_samples = _num_samples(duration, sr)
    if num_samples == 0:
        return np.zeros(0)
    freq = _clamp_freq(freq, sr)
    num_samples_high = num_samples * oversample
    dt = freq / (sr * oversample)

    phase = (np.arange(num_samples_high) * dt) % 1.0
    naive = 2.0 * phase - 1.0
    return amp * _decimate_to(naive - _blep_residual(phase, dt), oversample, num_samples)


def generate_square(
    freq: float, duration: float, sr: int = SAMPLE_RATE, amp: float = 1.0, oversample: int = 2
) -> FloatArray:
    """Generate anti-aliased square wave using 4-point PolyBLEP + oversampling."""

    num_samples = _num_samples(duration, sr)
    if num_samples == 0:
        return np.zeros(0)
    freq = _clamp_freq(freq, sr)
    num_samples_high = num_samples * oversample
    dt = freq / (sr * oversample)

    phase = (np.arange(num_samples_high) * dt) % 1.0
    naive = np.where(phase < 0.5, 1.0, -1.0)
    # Rising edge at phase 0, falling edge at phase 0.5
    correction = _blep_residual(phase, dt) - _blep_residual((phase + 0.5) % 1.0, dt)
    return amp * _decimate_to(naive + correction, oversample, num_samples)


OSC_FUNCTIONS: Mapping[Waveform, OscFn] = MappingProxyType(
    {
        "sine": generate_sine,
        "triangle": generate_triangle,
        "sawtooth": generate_sawtooth,
        "square": generate_square,
    }
)


def _triangle_from_phase(phase: FloatArray) -> FloatArray:
    return 2 * np.abs(2 * (phase - np.floor(phase + 0.5))) - 1


def swept_phase(
    start_freq: float,
    end_freq: float,
    sweep_time: float,
    duration: float,
    sr: int = SAMPLE_RATE,
) -> FloatArray:
    """Accumulated phase (in cycles) of an exponential pitch sweep.

    The frequency glides from `start_freq` to `end_freq` over `sweep_time`
    seconds and holds `end_freq` afterwards.
    """

    num_samples = _num_samples(duration, sr)
    t = np.arange(num_samples) / sr
    start = max(_clamp_freq(start_freq, sr), 1e-3)
    end = max(_clamp_freq(end_freq, sr), 1e-3)
    if sweep_time <= 0:
        freqs = np.full(num_samples, end)
    else:
        progress = np.minimum(t / sweep_time, 1.0)
        freqs = start * (end / start) ** progress
    # Phase of sample n is the integral up to (not including) n
    return np.concatenate(([0.0], np.cumsum(freqs)[:-1])) / sr if num_samples else freqs


def generate_swept(
    waveform: Waveform,
    start_freq: float,
    end_freq: float,
    sweep_time: float,
    duration: float,
    sr: int = SAMPLE_RATE,
    amp: float = 1.0,
) -> FloatArray:
    """Naive oscillator following an exponential frequency sweep."""

    phase = swept_phase(start_freq, end_freq, sweep_time, duration, sr)
    match waveform:
        case "sine":
            wave = np.sin(2 * np.pi * phase)
        case "triangle":
            wave = _triangle_from_phase(phase)
        case "square":
            wave = np.where(phase % 1.0 < 0.5, 1.0, -1.0)
        case "sawtooth":
            wave = 2.0 * (phase % 1.0) - 1.0
        case _:
            raise ValueError(f"Unknown waveform: {waveform}")
    return amp * wave


def generate_noise(
    duration: float,
    sr: int = SAMPLE_RATE,
    amp: float = 1.0,
    rng: np.random.Generator | None = None,
) -> FloatArray:
    """Generate uniform white noise in [-amp, amp]."""
    generator = rng if rng is not None else np.random.default_rng()
    return amp * generator.uniform(-1.0, 1.0, _num_samples(duration, sr))


# =============================================================================
# FILTERS
# =============================================================================


def _quantize(value: float, step: float = 0.0001) -> float:
    return round(value / step) * step


# Q of a second-order Butterworth section
BUTTERWORTH_Q = 0.7071


@lru_cache(maxsize=512)
def _butter_cached(
    kind: str, normalized_cutoff: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    coeffs = butter(2, normalized_cutoff, btype=kind, output="ba")
    assert isinstance(coeffs, tuple)
    assert len(coeffs) == 2
    b_raw, a_raw = coeffs
    assert isinstance(b_raw, np.ndarray)
    assert isinstance(a_raw, np.ndarray)
    return b_raw, a_raw


@lru_cache(maxsize=512)
def _peak_cached(normalized_center: float, q: float) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Band-pass resonator with unity gain at the centre and bandwidth centre / q."""
    b_raw, a_raw = iirpeak(normalized_center, q)
    return np.asarray(b_raw, dtype=np.float64), np.asarray(a_raw, dtype=np.float64)


@lru_cache(maxsize=512)
def _resonant_lowpass_cached(
    normalized_cutoff: float, q: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Second-order low-pass with an arbitrary Q (audio EQ cookbook form).

    scipy has no Q-parameterized low-pass design; at Q = 0.7071 this is the
    Butterworth section `_butter_cached` returns.
    """

    w0 = math.pi * normalized_cutoff
    cos_w0 = math.cos(w0)
    alpha = math.sin(w0) / (2.0 * q)
    b = np.array([(1 - cos_w0) / 2, 1 - cos_w0, (1 - cos_w0) / 2], dtype=np.float64)
    a = np.array([1 + alpha, -2 * cos_w0, 1 - alpha], dtype=np.float64)
    return b / a[0], a / a[0]


def filter_coefficients(
    kind: FilterKind, normalized_freq: float, q: float = BUTTERWORTH_Q
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """(b, a) for a second-order section; `normalized_freq` is relative to Nyquist.

    The high-pass is always Butterworth, `q` shapes the low-pass resonance
    and the band-pass width.
    """

    freq = _quantize(min(max(normalized_freq, 0.0001), 0.99))
    match kind:
        case "lowpass":
            if abs(q - BUTTERWORTH_Q) < 1e-3:
                return _butter_cached("low", freq)
            return _resonant_lowpass_cached(freq, _quantize(max(q, 0.01)))
        case "highpass":
            return _butter_cached("high", freq)
        case "bandpass":
            return _peak_cached(freq, _quantize(max(q, 0.01)))
        case _:
            raise ValueError(f"Unknown filter kind: {kind}")


def apply_filter(
    signal: FloatArray,
    kind: FilterKind,
    cutoff: float,
    q: float = BUTTERWORTH_Q,
    sr: int = SAMPLE_RATE,
) -> FloatArray:
    """Apply a causal low-pass, high-pass or band-pass filter."""
    if signal.size == 0:
        return signal
    b, a = filter_coefficients(kind, cutoff / (sr / 2), q)
    filtered = lfilter(b, a, signal)
    return np.asarray(filtered, dtype=np.float64)



# =============================================================================
# ENVELOPES
# =============================================================================


def exponential_envelope(
    peak: float,
    ramp: float,
    length: float,
    sr: int = SAMPLE_RATE,
    floor: float = SILENCE_FLOOR,
) -> FloatArray:
    """Exponential decay from `peak` to `floor` over `ramp` seconds, then hold.

    The envelope spans `length` seconds. A non-positive peak is silence.
    """

    num_samples = _num_samples(length, sr)
    if peak <= 0 or num_samples == 0:
        return np.zeros(num_samples)
    if peak <= floor:
        return np.full(num_samples, peak)
    t = np.arange(num_samples) / sr
    progress = np.minimum(t / max(ramp, 1.0 / sr), 1.0)
    return peak * (floor / peak) ** progress


def add_note(signal: FloatArray, note: FloatArray, start_index: int) -> None:
    """Mix `note` into `signal` at `start_index`, dropping what does not fit."""
    if start_index >= len(signal) or note.size == 0:
        return
    end_index = min(start_index + len(note), len(signal))
    signal[start_index:end_index] += note[: end_index - start_index]
