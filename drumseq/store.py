"""
Pattern persistence interface and an in-memory implementation.

Real backends (document stores, file attachments) live outside this package;
they only need to satisfy `PatternStore`. Documents use the shape produced by
`Pattern.to_document()`.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol

from .config import Pattern
from .errors import PatternNotFoundError

_LOGGER = logging.getLogger("drumseq.store")


@dataclass(frozen=True, slots=True)
class StoredPattern:
    id: str
    pattern: Pattern


class PatternStore(Protocol):
    def load_pattern(self, pattern_id: str) -> Pattern: ...

    def list_patterns(self) -> list[StoredPattern]: ...

    def save_pattern(self, pattern: Pattern, pattern_id: str | None = None) -> str: ...

    def attach_file(self, pattern_id: str, name: str, data: bytes) -> None: ...

    def files(self, pattern_id: str) -> Mapping[str, bytes]: ...


class InMemoryPatternStore:
    """Dictionary-backed store with per-pattern attachments and a global sample library."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._files: dict[str, dict[str, bytes]] = {}
        self._library: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def load_pattern(self, pattern_id: str) -> Pattern:
        with self._lock:
            document = self._documents.get(pattern_id)
        if document is None:
            raise PatternNotFoundError(pattern_id)
        return Pattern.from_document(document)

    def list_patterns(self) -> list[StoredPattern]:
        with self._lock:
            documents = list(self._documents.items())
        return [StoredPattern(pattern_id, Pattern.from_document(doc)) for pattern_id, doc in documents]

    def save_pattern(self, pattern: Pattern, pattern_id: str | None = None) -> str:
        key = pattern_id or uuid.uuid4().hex
        document = {"_id": key, **pattern.to_document()}
        with self._lock:
            self._documents[key] = document
            self._files.setdefault(key, {})
        _LOGGER.debug("Saved pattern %r as %s", pattern.name, key)
        return key

    def delete_pattern(self, pattern_id: str) -> None:
        with self._lock:
            if self._documents.pop(pattern_id, None) is None:
                raise PatternNotFoundError(pattern_id)
            self._files.pop(pattern_id, None)

    def attach_file(self, pattern_id: str, name: str, data: bytes) -> None:
        with self._lock:
            if pattern_id not in self._documents:
                raise PatternNotFoundError(pattern_id)
            self._files[pattern_id][name] = bytes(data)

    def detach_file(self, pattern_id: str, name: str) -> None:
        with self._lock:
            self._files.get(pattern_id, {}).pop(name, None)

    def files(self, pattern_id: str) -> Mapping[str, bytes]:
        with self._lock:
            if pattern_id not in self._documents:
                raise PatternNotFoundError(pattern_id)
            return MappingProxyType(dict(self._files[pattern_id]))

    def add_library_file(self, name: str, data: bytes) -> None:
        with self._lock:
            self._library[name] = bytes(data)

    def remove_library_file(self, name: str) -> None:
        with self._lock:
            self._library.pop(name, None)

    def library_files(self) -> Mapping[str, bytes]:
        with self._lock:
            return MappingProxyType(dict(self._library))


def _grid(*active: int) -> list[bool]:
    return [step in active for step in range(16)]


DEMO_PATTERNS: tuple[Pattern, ...] = (
    Pattern(
        name="Classic Hip-Hop",
        tempo=90,
        tracks={
            "kick": _grid(0, 6, 9),
            "snare": _grid(4, 12),
            "openhat": _grid(2, 10),
            "closedhat": _grid(1, 3, 5, 7, 9, 11, 13, 15),
            "crash": _grid(0),
        },
    ),
    Pattern(
        name="Electro Funk",
        tempo=120,
        tracks={
            "kick": _grid(0, 3, 6, 8),
            "snare": _grid(4, 7, 12),
            "openhat": _grid(14),
            "closedhat": _grid(1, 2, 5, 9, 10, 13, 15),
            "cowbell": _grid(2, 10),
            "clave": _grid(0, 3, 5, 8, 11, 13),
        },
    ),
)


def listing(patterns: Iterable[StoredPattern]) -> list[StoredPattern]:
    """Patterns for display, hiding later entries that repeat a (name, tempo) pair.

    This is a presentation filter only; every entry keeps its own store id.
    """

    seen: set[tuple[str, int]] = set()
    unique: list[StoredPattern] = []
    for entry in patterns:
        key = (entry.pattern.name, entry.pattern.tempo)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique


def seed_demo_patterns(store: PatternStore) -> list[str]:
    """Save every demo pattern whose (name, tempo) is not stored yet; return new ids."""

    existing = {(entry.pattern.name, entry.pattern.tempo) for entry in store.list_patterns()}
    added: list[str] = []
    for pattern in DEMO_PATTERNS:
        if (pattern.name, pattern.tempo) in existing:
            _LOGGER.info("Demo pattern %r already stored; skipping", pattern.name)
            continue
        added.append(store.save_pattern(pattern))
    return added


def find_demo_pattern(name: str) -> Pattern:
    """Look up a demo pattern by name, case-insensitively."""

    for pattern in DEMO_PATTERNS:
        if pattern.name.lower() == name.lower():
            return pattern
    raise PatternNotFoundError(name)
