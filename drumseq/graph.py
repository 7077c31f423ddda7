"""
The host audio graph.

`Mixer` accepts "play these frames starting at time T" from any thread and
is pulled block by block, either by a live output callback or by an offline
bounce loop. Times are in seconds on the mixer's own frame clock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from .audio import SAMPLE_RATE, AudioNumbers

_LOGGER = logging.getLogger("drumseq.graph")


@runtime_checkable
class AudioGraph(Protocol):
    @property
    def sample_rate(self) -> int: ...

    @property
    def current_time(self) -> float: ...

    def schedule(self, samples: AudioNumbers, time: float) -> None: ...


@dataclass(slots=True)
class _ScheduledSound:
    start_frame: int
    samples: NDArray[np.float32]

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)


class Mixer:
    """Thread-safe summing mixer with a frame clock."""

    def __init__(self, sample_rate: int = SAMPLE_RATE) -> None:
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        self._sample_rate = sample_rate
        self._frame = 0
        self._sounds: list[_ScheduledSound] = []
        self._lock = threading.Lock()

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def current_frame(self) -> int:
        with self._lock:
            return self._frame

    @property
    def current_time(self) -> float:
        return self.current_frame / self._sample_rate

    @property
    def active_voices(self) -> int:
        with self._lock:
            return len(self._sounds)

    def schedule(self, samples: AudioNumbers, time: float) -> None:
        data = np.asarray(samples, dtype=np.float32).reshape(-1)
        if data.size == 0:
            return
        start_frame = int(round(time * self._sample_rate))
        with self._lock:
            if start_frame < self._frame:
                _LOGGER.debug("Late sound by %d frames; starting at next block", self._frame - start_frame)
                start_frame = self._frame
            self._sounds.append(_ScheduledSound(start_frame, data))

    def render(self, frames: int) -> NDArray[np.float32]:
        """Mix the next `frames` frames, clip to [-1, 1] and advance the clock."""

        out = np.zeros(frames, dtype=np.float32)
        if frames <= 0:
            return out
        with self._lock:
            block_start = self._frame
            block_end = block_start + frames
            remaining: list[_ScheduledSound] = []
            for sound in self._sounds:
                if sound.start_frame < block_end:
                    src_from = max(block_start - sound.start_frame, 0)
                    dst_from = max(sound.start_frame - block_start, 0)
                    count = min(len(sound.samples) - src_from, frames - dst_from)
                    if count > 0:
                        out[dst_from : dst_from + count] += sound.samples[src_from : src_from + count]
                if sound.end_frame > block_end:
                    remaining.append(sound)
            self._sounds = remaining
            self._frame = block_end
        np.clip(out, -1.0, 1.0, out=out)
        return out

    def reset(self) -> None:
        with self._lock:
            self._sounds.clear()
            self._frame = 0
