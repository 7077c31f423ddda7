import io
import logging
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from drumseq.errors import SampleDecodeError
from drumseq.samples import (
    DecodedSample,
    PendingSample,
    as_source,
    build_buffer_cache,
    decode_sample,
    resolve_bindings,
    resolve_track,
)


def _wav_bytes(seconds: float = 0.05, sample_rate: int = 8_000, channels: int = 1) -> bytes:
    frames = int(seconds * sample_rate)
    data = np.full((frames, channels), 0.25, dtype=np.float32)
    buffer = io.BytesIO()
    sf.write(buffer, data, sample_rate, format="WAV", subtype="FLOAT")
    return buffer.getvalue()


def test_as_source_wraps_raw_inputs(tmp_path: Path) -> None:
    assert as_source("a", b"123") == PendingSample("a", b"123")
    assert as_source("b", str(tmp_path / "b.wav")) == PendingSample("b", tmp_path / "b.wav")
    decoded = DecodedSample("c", np.zeros((4, 1), dtype=np.float32), 8_000)
    assert as_source("c", decoded) is decoded
    with pytest.raises(TypeError):
        as_source("d", 42)  # type: ignore[arg-type]


def test_decode_sample_from_bytes_and_path(tmp_path: Path) -> None:
    decoded = decode_sample(PendingSample("kick.wav", _wav_bytes(channels=2)))
    assert decoded.frames.shape == (400, 2)
    assert decoded.sample_rate == 8_000
    assert decoded.channels == 2
    assert decoded.duration == pytest.approx(0.05)

    path = tmp_path / "snare.wav"
    path.write_bytes(_wav_bytes())
    assert decode_sample(PendingSample("snare.wav", path)).frames.shape == (400, 1)


def test_decode_sample_rejects_garbage() -> None:
    with pytest.raises(SampleDecodeError):
        decode_sample(PendingSample("bad.wav", b"not audio at all"))


def test_cache_excludes_failed_sources(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="drumseq.samples"):
        cache = build_buffer_cache({"good.wav": _wav_bytes(), "bad.wav": b"junk"}, {})
    assert "good.wav" in cache
    assert "bad.wav" not in cache
    assert cache.failed == ("bad.wav",)
    assert "bad.wav" in caplog.text


def test_cache_pattern_sources_win_on_collision() -> None:
    cache = build_buffer_cache(
        {"shared.wav": _wav_bytes(sample_rate=16_000)},
        {"shared.wav": _wav_bytes(sample_rate=8_000)},
    )
    sample = cache.get("shared.wav")
    assert sample is not None
    assert sample.sample_rate == 16_000
    assert cache.pattern_ids == ("shared.wav",)
    assert cache.library_ids == ("shared.wav",)


def test_exact_pattern_match_beats_library_substring() -> None:
    cache = build_buffer_cache({"kick": _wav_bytes()}, {"kick_alt.wav": _wav_bytes()})
    assert resolve_bindings(cache) == {"kick": "kick"}


def test_explicit_assignment_wins() -> None:
    cache = build_buffer_cache({"kick": _wav_bytes()}, {"boom.wav": _wav_bytes()})
    assert resolve_track("kick", cache, {"kick": "boom.wav"}) == "boom.wav"


def test_assignment_without_buffer_falls_through() -> None:
    cache = build_buffer_cache({}, {"kick_909.wav": _wav_bytes()})
    assert resolve_track("kick", cache, {"kick": "missing.wav"}) == "kick_909.wav"


def test_adding_similar_sample_does_not_steal_exact_binding() -> None:
    sources = {"kick": _wav_bytes()}
    before = resolve_bindings(build_buffer_cache(sources, {}))
    after = resolve_bindings(build_buffer_cache({**sources, "kick_v2.wav": _wav_bytes()}, {}))
    assert before["kick"] == after["kick"] == "kick"


def test_substring_scan_is_case_insensitive_and_ordered() -> None:
    cache = build_buffer_cache({"My_SNARE_b.WAV": _wav_bytes(), "snare_a.wav": _wav_bytes()}, {})
    assert resolve_track("snare", cache) == "My_SNARE_b.WAV"


def test_pattern_substring_beats_library_substring() -> None:
    cache = build_buffer_cache({"clap_room.wav": _wav_bytes()}, {"clap_dry.wav": _wav_bytes()})
    assert resolve_track("clap", cache) == "clap_room.wav"


def test_library_sample_binds_and_unbinds() -> None:
    with_sample = build_buffer_cache({}, {"snare_tight.wav": _wav_bytes()})
    assert resolve_bindings(with_sample) == {"snare": "snare_tight.wav"}
    without = build_buffer_cache({}, {})
    assert resolve_bindings(without) == {}


def test_failed_candidate_falls_back() -> None:
    cache = build_buffer_cache({"clap.wav": b"junk"}, {"clap2.wav": _wav_bytes()})
    assert resolve_track("clap", cache) == "clap2.wav"
    only_bad = build_buffer_cache({"clap.wav": b"junk"}, {})
    assert resolve_track("clap", only_bad) is None


def test_resolution_is_idempotent() -> None:
    cache = build_buffer_cache(
        {"kick": _wav_bytes(), "hat_closedhat.wav": _wav_bytes()},
        {"snare_tight.wav": _wav_bytes(), "cowbell.aiff.wav": _wav_bytes()},
    )
    assignments = {"clave": "snare_tight.wav"}
    first = resolve_bindings(cache, assignments)
    assert first == resolve_bindings(cache, assignments)
    assert first == {
        "kick": "kick",
        "snare": "snare_tight.wav",
        "closedhat": "hat_closedhat.wav",
        "cowbell": "cowbell.aiff.wav",
        "clave": "snare_tight.wav",
    }


def test_decoded_samples_pass_through_the_cache() -> None:
    decoded = DecodedSample("crash", np.full((10, 1), 0.1, dtype=np.float32), 8_000)
    cache = build_buffer_cache({"crash": decoded}, {})
    assert cache.get("crash") is decoded


def test_invalid_decoded_samples_are_rejected() -> None:
    empty = DecodedSample("crash", np.zeros((0, 1), dtype=np.float32), 8_000)
    bad_rate = DecodedSample("clave", np.zeros((10, 1), dtype=np.float32), 0)
    cache = build_buffer_cache({"crash": empty, "clave": bad_rate}, {})
    assert cache.buffers == {}
    assert set(cache.failed) == {"crash", "clave"}


def test_non_numeric_decoded_frames_are_excluded(caplog) -> None:
    garbled = DecodedSample("kick", ["thump", "thud"], 8_000)  # type: ignore[arg-type]
    good = DecodedSample("snare", np.full((10, 1), 0.1, dtype=np.float32), 8_000)
    with caplog.at_level(logging.WARNING, logger="drumseq.samples"):
        cache = build_buffer_cache({"kick": garbled, "snare": good}, {})
    assert list(cache.buffers) == ["snare"]
    assert cache.failed == ("kick",)
    assert "not numeric audio" in caplog.text
