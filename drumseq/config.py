from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal, TypeGuard, get_args

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .errors import InvalidPatternError

_LOGGER = logging.getLogger("drumseq.config")

InstrumentId = Literal[
    "kick",
    "snare",
    "openhat",
    "closedhat",
    "clap",
    "crash",
    "cowbell",
    "clave",
]
INSTRUMENTS: tuple[InstrumentId, ...] = get_args(InstrumentId)

ParamKind = Literal["level", "tune", "decay"]
PARAM_KINDS: tuple[ParamKind, ...] = get_args(ParamKind)

STEP_COUNT = 16
TEMPO_MIN = 60
TEMPO_MAX = 200
DEFAULT_TEMPO = 120
DEFAULT_NAME = "New Pattern"
GENERATED_NAME = "Generated Pattern"

PARAM_RANGES: Mapping[ParamKind, tuple[int, int]] = MappingProxyType(
    {
        "level": (0, 100),
        "tune": (-12, 12),
        "decay": (1, 100),
    }
)

# Pattern field holding each parameter kind
_PARAM_FIELDS: Mapping[ParamKind, str] = MappingProxyType(
    {"level": "levels", "tune": "tune", "decay": "decay"}
)
_FIELD_KINDS: Mapping[str, ParamKind] = MappingProxyType(
    {field: kind for kind, field in _PARAM_FIELDS.items()}
)

DEFAULT_LEVELS: Mapping[InstrumentId, int] = MappingProxyType(
    {
        "kick": 80,
        "snare": 70,
        "openhat": 60,
        "closedhat": 55,
        "clap": 65,
        "crash": 70,
        "cowbell": 50,
        "clave": 45,
    }
)
DEFAULT_TUNE: Mapping[InstrumentId, int] = MappingProxyType(
    {track: 0 for track in INSTRUMENTS}
)
DEFAULT_DECAY: Mapping[InstrumentId, int] = MappingProxyType(
    {
        "kick": 50,
        "snare": 30,
        "openhat": 70,
        "closedhat": 20,
        "clap": 40,
        "crash": 80,
        "cowbell": 30,
        "clave": 15,
    }
)
_DEFAULTS: Mapping[ParamKind, Mapping[InstrumentId, int]] = MappingProxyType(
    {"level": DEFAULT_LEVELS, "tune": DEFAULT_TUNE, "decay": DEFAULT_DECAY}
)

# Used for tracks outside the fixed instrument set
FALLBACK_PARAMS: Mapping[ParamKind, int] = MappingProxyType(
    {"level": 70, "tune": 0, "decay": 50}
)


def is_instrument(track: object) -> TypeGuard[InstrumentId]:
    return track in INSTRUMENTS


def empty_steps() -> tuple[bool, ...]:
    return (False,) * STEP_COUNT


def normalize_steps(steps: Iterable[object] | None) -> tuple[bool, ...]:
    """Coerce a step grid to exactly 16 booleans (truncate or pad with False)."""

    if steps is None:
        return empty_steps()
    values = tuple(bool(step) for step in list(steps)[:STEP_COUNT])
    return values + (False,) * (STEP_COUNT - len(values))


@dataclass(frozen=True, slots=True)
class TrackParams:
    """Level, tune and decay of one track as read at trigger time."""

    level: int
    tune: int
    decay: int

    @property
    def velocity(self) -> float:
        return self.level / 100.0


class Pattern(BaseModel):
    """One 16-step pattern: grids, per-track parameters, tempo and sample bindings."""

    name: str = DEFAULT_NAME
    description: str | None = None
    tempo: int = Field(default=DEFAULT_TEMPO, ge=TEMPO_MIN, le=TEMPO_MAX)
    tracks: dict[str, tuple[bool, ...]] = Field(default_factory=dict, validate_default=True)
    levels: dict[str, int] = Field(default_factory=dict, validate_default=True)
    tune: dict[str, int] = Field(default_factory=dict, validate_default=True)
    decay: dict[str, int] = Field(default_factory=dict, validate_default=True)
    sample_assignments: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("tracks", mode="before")
    @classmethod
    def _normalize_tracks(cls, value: object) -> dict[str, tuple[bool, ...]]:
        if value is None:
            value = {}
        if not isinstance(value, Mapping):
            raise ValueError("tracks must map track ids to step grids")
        tracks: dict[str, tuple[bool, ...]] = {track: empty_steps() for track in INSTRUMENTS}
        for track, steps in value.items():
            match steps:
                case None:
                    tracks[str(track)] = empty_steps()
                case str() | bytes() | Mapping():
                    raise ValueError(f"steps for {track!r} must be a sequence of booleans")
                case Iterable():
                    tracks[str(track)] = normalize_steps(steps)
                case _:
                    raise ValueError(f"steps for {track!r} must be a sequence of booleans")
        return tracks

    @field_validator("levels", "tune", "decay", mode="before")
    @classmethod
    def _fill_param_defaults(cls, value: object, info: ValidationInfo) -> dict[str, object]:
        kind = _FIELD_KINDS[info.field_name or ""]
        if value is None:
            value = {}
        if not isinstance(value, Mapping):
            raise ValueError(f"{info.field_name} must map track ids to integers")
        merged: dict[str, object] = dict(_DEFAULTS[kind])
        merged.update({str(track): amount for track, amount in value.items()})
        return merged

    @field_validator("levels", "tune", "decay")
    @classmethod
    def _check_param_ranges(cls, value: dict[str, int], info: ValidationInfo) -> dict[str, int]:
        kind = _FIELD_KINDS[info.field_name or ""]
        low, high = PARAM_RANGES[kind]
        for track, amount in value.items():
            if not low <= amount <= high:
                raise ValueError(f"{kind} for {track!r} must be within [{low}, {high}], got {amount}")
        return value

    @field_validator("sample_assignments")
    @classmethod
    def _check_assignments(cls, value: dict[str, str]) -> dict[str, str]:
        for track, sample_id in value.items():
            if not is_instrument(track):
                raise ValueError(f"unknown track {track!r} in sample assignments")
            if not sample_id:
                raise ValueError(f"empty sample identifier for {track!r}")
        return value

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def steps(self, track: str) -> tuple[bool, ...]:
        return self.tracks.get(track, empty_steps())

    def is_active(self, track: str, step: int) -> bool:
        steps = self.tracks.get(track)
        if steps is None or not 0 <= step < len(steps):
            return False
        return steps[step]

    def params(self, track: str) -> TrackParams:
        def _lookup(kind: ParamKind) -> int:
            values: dict[str, int] = getattr(self, _PARAM_FIELDS[kind])
            return values.get(track, FALLBACK_PARAMS[kind])

        return TrackParams(level=_lookup("level"), tune=_lookup("tune"), decay=_lookup("decay"))

    # ------------------------------------------------------------------
    # Copy-on-write edits; every result is revalidated
    # ------------------------------------------------------------------

    def with_updates(self, **changes: Any) -> Pattern:
        data = self.model_dump()
        data.update(changes)
        return validate_pattern(data)

    def with_step(self, track: str, index: int, active: bool) -> Pattern:
        _require_instrument(track)
        if not 0 <= index < STEP_COUNT:
            raise InvalidPatternError(f"step index must be within [0, {STEP_COUNT - 1}], got {index}")
        steps = list(self.steps(track))
        steps[index] = bool(active)
        return self.with_updates(tracks={**self.tracks, track: tuple(steps)})

    def cleared(self, track: str) -> Pattern:
        _require_instrument(track)
        return self.with_updates(tracks={**self.tracks, track: empty_steps()})

    def with_param(self, track: str, kind: str, value: int) -> Pattern:
        _require_instrument(track)
        if kind not in PARAM_KINDS:
            raise InvalidPatternError(f"unknown parameter {kind!r}; expected one of {PARAM_KINDS}")
        field = _PARAM_FIELDS[kind]  # type: ignore[index]
        current: dict[str, int] = getattr(self, field)
        return self.with_updates(**{field: {**current, track: value}})

    def with_tempo(self, tempo: int) -> Pattern:
        return self.with_updates(tempo=tempo)

    def with_sample_assignment(self, track: str, sample_id: str | None) -> Pattern:
        _require_instrument(track)
        assignments = dict(self.sample_assignments)
        if sample_id is None:
            assignments.pop(track, None)
        else:
            assignments[track] = sample_id
        return self.with_updates(sample_assignments=assignments)

    # ------------------------------------------------------------------
    # Persisted document shape
    # ------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "tempo": self.tempo,
            "tracks": {track: list(steps) for track, steps in self.tracks.items()},
            "levels": dict(self.levels),
            "tune": dict(self.tune),
            "decay": dict(self.decay),
            "sampleAssignments": dict(self.sample_assignments),
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> Pattern:
        """Build a pattern from a stored document, ignoring store bookkeeping keys."""

        data: dict[str, Any] = {}
        for key in ("name", "description", "tempo", "tracks", "levels", "tune", "decay"):
            if document.get(key) is not None:
                data[key] = document[key]
        assignments = document.get("sampleAssignments", document.get("sample_assignments"))
        if assignments is not None:
            data["sample_assignments"] = assignments
        return validate_pattern(data)


def _require_instrument(track: str) -> None:
    if not is_instrument(track):
        raise InvalidPatternError(f"unknown track {track!r}; expected one of {INSTRUMENTS}")


def validate_pattern(data: Mapping[str, Any] | Pattern) -> Pattern:
    """Validate pattern data, raising InvalidPatternError instead of pydantic errors."""

    if isinstance(data, Pattern):
        return data
    try:
        return Pattern.model_validate(dict(data))
    except ValidationError as exc:
        _LOGGER.info("Rejected pattern: %s", exc)
        raise InvalidPatternError(str(exc)) from exc


class PatternRef:
    """Single owner of the current pattern.

    Readers take one immutable snapshot with `get()`; writers swap the whole
    reference, so a reader never sees half of an edit.
    """

    def __init__(self, pattern: Pattern | None = None) -> None:
        self._pattern = pattern if pattern is not None else Pattern()
        self._lock = threading.Lock()

    def get(self) -> Pattern:
        return self._pattern

    def replace(self, pattern: Pattern) -> Pattern:
        with self._lock:
            self._pattern = pattern
        return pattern

    def update(self, edit: Callable[[Pattern], Pattern]) -> Pattern:
        with self._lock:
            updated = edit(self._pattern)
            self._pattern = updated
        return updated
