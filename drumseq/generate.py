from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol

from .config import INSTRUMENTS, STEP_COUNT, normalize_steps
from .errors import InvalidPatternError

_LOGGER = logging.getLogger("drumseq.generate")

TrackMap = Mapping[str, Sequence[bool]]


class PatternGenerator(Protocol):
    """Anything that produces an 8 x 16 track map (an AI service, a rule set)."""

    def generate(self) -> TrackMap: ...


def normalize_tracks(raw: Mapping[str, object]) -> dict[str, tuple[bool, ...]]:
    """Truncate or pad every grid to 16 steps and fill in missing instruments."""

    if not isinstance(raw, Mapping):
        raise InvalidPatternError("generated tracks must map track ids to step grids")
    tracks: dict[str, tuple[bool, ...]] = {track: normalize_steps(None) for track in INSTRUMENTS}
    for track, steps in raw.items():
        if steps is not None and (isinstance(steps, (str, bytes, Mapping)) or not isinstance(steps, Sequence)):
            raise InvalidPatternError(f"steps for {track!r} must be a sequence of booleans")
        if steps is not None and len(steps) != STEP_COUNT:
            _LOGGER.info("Normalizing %r from %d to %d steps", track, len(steps), STEP_COUNT)
        tracks[str(track)] = normalize_steps(steps)  # type: ignore[arg-type]
    return tracks


def euclidean_steps(pulses: int, steps: int = STEP_COUNT, rotation: int = 0) -> tuple[bool, ...]:
    """Spread `pulses` hits as evenly as possible over `steps` (Bjorklund).

    The first hit lands on step 0; `rotation` shifts the whole grid later.
    """

    if steps <= 0:
        raise ValueError(f"steps must be positive, got {steps}")
    if not 0 <= pulses <= steps:
        raise ValueError(f"pulses must be within [0, {steps}], got {pulses}")
    if pulses == 0:
        return (False,) * steps

    groups: list[list[bool]] = [[True] for _ in range(pulses)]
    remainder: list[list[bool]] = [[False] for _ in range(steps - pulses)]
    while len(remainder) > 1:
        pairs = min(len(groups), len(remainder))
        merged = [groups[index] + remainder[index] for index in range(pairs)]
        remainder = groups[pairs:] or remainder[pairs:]
        groups = merged
    grid = [step for group in groups + remainder for step in group]

    shift = rotation % steps
    if shift:
        grid = grid[-shift:] + grid[:-shift]
    return tuple(grid)


DEFAULT_EUCLIDEAN: Mapping[str, tuple[int, int]] = MappingProxyType(
    {
        "kick": (4, 0),
        "snare": (2, 4),
        "closedhat": (8, 1),
        "openhat": (2, 6),
        "clave": (5, 0),
        "cowbell": (3, 2),
    }
)


@dataclass(frozen=True, slots=True)
class EuclideanGenerator:
    """Builds a track map from (pulses, rotation) per track."""

    layout: Mapping[str, tuple[int, int]] = field(default_factory=lambda: DEFAULT_EUCLIDEAN)
    description: str = "Euclidean rhythm"

    def generate(self) -> dict[str, tuple[bool, ...]]:
        raw = {
            track: euclidean_steps(pulses, STEP_COUNT, rotation)
            for track, (pulses, rotation) in self.layout.items()
        }
        return normalize_tracks(raw)
