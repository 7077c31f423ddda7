"""
Sample sources, the decoded buffer cache and the track to sample resolver.

A source is either pending (raw bytes or a file not yet decoded) or decoded
(frames plus sample rate). The cache is rebuilt wholesale from the raw
sources; nothing patches it in place. Bindings are a pure function of the
cache and the pattern's explicit assignments.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TypeAlias

import numpy as np

from .audio import FloatArray, decode_audio
from .config import INSTRUMENTS
from .errors import SampleDecodeError
from .logging_utils import debug_enabled

_LOGGER = logging.getLogger("drumseq.samples")


@dataclass(frozen=True, slots=True)
class PendingSample:
    """Raw, undecoded audio: encoded bytes or a path to an audio file."""

    name: str
    data: bytes | Path


@dataclass(frozen=True, slots=True, eq=False)
class DecodedSample:
    """Playable audio as (frames, channels) float32 at `sample_rate`."""

    name: str
    frames: FloatArray
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.frames.shape[1]) if self.frames.ndim == 2 else 1

    @property
    def duration(self) -> float:
        return self.frames.shape[0] / self.sample_rate


SampleSource: TypeAlias = PendingSample | DecodedSample
RawSource: TypeAlias = PendingSample | DecodedSample | bytes | str | Path


def as_source(name: str, raw: RawSource) -> SampleSource:
    """Wrap bare bytes or paths as pending; pass tagged sources through."""

    match raw:
        case PendingSample() | DecodedSample():
            return raw
        case bytes():
            return PendingSample(name, raw)
        case str() | Path():
            return PendingSample(name, Path(raw))
        case _:
            raise TypeError(f"unsupported sample source for {name!r}: {type(raw).__name__}")


def decode_sample(source: SampleSource) -> DecodedSample:
    """Decode a pending source; already decoded samples are returned unchanged.

    Raises SampleDecodeError when the data is not playable audio.
    """

    match source:
        case DecodedSample():
            return source
        case PendingSample(name=name, data=data):
            frames, sample_rate = decode_audio(data)
            if sample_rate <= 0:
                raise SampleDecodeError(f"{name}: invalid sample rate {sample_rate}")
            return DecodedSample(name, frames, sample_rate)


def _check_decoded(sample: DecodedSample) -> DecodedSample:
    try:
        frames = np.asarray(sample.frames, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise SampleDecodeError(f"{sample.name}: frames are not numeric audio") from exc
    if frames.ndim == 1:
        frames = frames.reshape(-1, 1)
    if frames.ndim != 2 or frames.shape[0] == 0:
        raise SampleDecodeError(f"{sample.name}: no frames")
    if sample.sample_rate <= 0:
        raise SampleDecodeError(f"{sample.name}: invalid sample rate {sample.sample_rate}")
    if not np.all(np.isfinite(frames)):
        raise SampleDecodeError(f"{sample.name}: non-finite frames")
    if frames is sample.frames:
        return sample
    return DecodedSample(sample.name, frames, sample.sample_rate)


@dataclass(frozen=True, slots=True)
class BufferCache:
    """Every successfully decoded sample, keyed by identifier.

    `pattern_ids` and `library_ids` keep definition order for the resolver's
    substring scans. Failed identifiers are only listed in `failed`.
    """

    buffers: Mapping[str, DecodedSample] = field(default_factory=lambda: MappingProxyType({}))
    pattern_ids: tuple[str, ...] = ()
    library_ids: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()

    def __contains__(self, sample_id: object) -> bool:
        return sample_id in self.buffers

    def get(self, sample_id: str) -> DecodedSample | None:
        return self.buffers.get(sample_id)


EMPTY_CACHE = BufferCache()


def _decode_all(sources: Mapping[str, RawSource]) -> tuple[dict[str, DecodedSample], list[str]]:
    decoded: dict[str, DecodedSample] = {}
    failed: list[str] = []
    for name, raw in sources.items():
        try:
            decoded[name] = _check_decoded(decode_sample(as_source(name, raw)))
        except (SampleDecodeError, TypeError) as exc:
            _LOGGER.warning("Skipping sample %r: %s", name, exc, exc_info=debug_enabled())
            failed.append(name)
    return decoded, failed


def build_buffer_cache(
    pattern_sources: Mapping[str, RawSource] | None = None,
    library_sources: Mapping[str, RawSource] | None = None,
) -> BufferCache:
    """Decode every source to completion and return a fresh cache.

    Pattern-local buffers win when an identifier exists in both sets.
    """

    pattern_decoded, pattern_failed = _decode_all(pattern_sources or {})
    library_decoded, library_failed = _decode_all(library_sources or {})
    merged = {**library_decoded, **pattern_decoded}
    _LOGGER.info(
        "Decoded %d pattern and %d library samples (%d failed)",
        len(pattern_decoded),
        len(library_decoded),
        len(pattern_failed) + len(library_failed),
    )
    return BufferCache(
        buffers=MappingProxyType(merged),
        pattern_ids=tuple(pattern_decoded),
        library_ids=tuple(library_decoded),
        failed=tuple(dict.fromkeys(pattern_failed + library_failed)),
    )


def _first_containing(track: str, candidates: Iterable[str], cache: BufferCache) -> str | None:
    needle = track.lower()
    for sample_id in candidates:
        if needle in sample_id.lower() and sample_id in cache:
            return sample_id
    return None


def resolve_track(
    track: str,
    cache: BufferCache,
    assignments: Mapping[str, str] | None = None,
) -> str | None:
    """Sample identifier bound to `track`, or None for the synthesized voice."""

    assigned = (assignments or {}).get(track)
    if assigned is not None and assigned in cache:
        return assigned
    if track in cache.pattern_ids:
        return track
    return _first_containing(track, cache.pattern_ids, cache) or _first_containing(
        track, cache.library_ids, cache
    )


def resolve_bindings(
    cache: BufferCache,
    assignments: Mapping[str, str] | None = None,
    tracks: Iterable[str] = INSTRUMENTS,
) -> dict[str, str]:
    """Bind every track that has a usable sample; unbound tracks are omitted."""

    bindings: dict[str, str] = {}
    for track in tracks:
        sample_id = resolve_track(track, cache, assignments)
        if sample_id is not None:
            bindings[track] = sample_id
    return bindings
