from __future__ import annotations

import io
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import SampleDecodeError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100


def ensure_audio_contract(
    audio: AudioNumbers,
    *,
    check_peak: bool = True,
) -> FloatArray:
    """Normalize dtype/range/shape to the mono float32 audio contract."""

    mono: FloatArray = np.asarray(audio, dtype=np.float32).reshape(-1)
    if mono.size == 0 or not check_peak:
        return mono
    peak = float(np.max(np.abs(mono)))
    if peak > 1.0:
        mono = mono / peak
    return mono


def to_mono(frames: NDArray[np.floating[Any]]) -> FloatArray:
    """Average channels of a (frames, channels) array into one channel."""

    array = np.asarray(frames, dtype=np.float32)
    if array.ndim == 1:
        return array
    if array.ndim != 2:
        raise ValueError(f"expected (frames, channels) audio, got shape {array.shape}")
    return array.mean(axis=1, dtype=np.float32)


def decode_audio(source: bytes | str | Path) -> tuple[FloatArray, int]:
    """Decode raw bytes or a file into (frames, channels) float32 and its sample rate."""

    handle: Any = io.BytesIO(source) if isinstance(source, bytes) else Path(source)
    try:
        frames, sample_rate = sf.read(handle, dtype="float32", always_2d=True)
    except Exception as exc:
        raise SampleDecodeError(f"could not decode audio: {exc}") from exc
    decoded = np.asarray(frames, dtype=np.float32)
    if decoded.shape[0] == 0:
        raise SampleDecodeError("decoded audio has no frames")
    if not np.all(np.isfinite(decoded)):
        raise SampleDecodeError("decoded audio contains non-finite values")
    return decoded, int(sample_rate)


def write_wav(
    path: str | Path,
    audio: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write mono audio to a wav file, scaling down if it would clip."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    normalized = ensure_audio_contract(audio)
    sf.write(target, normalized, sample_rate, subtype="FLOAT")
    return target
