import logging

import numpy as np
import pytest

from drumseq.errors import RenderError
from drumseq.graph import Mixer
from drumseq.playback import (
    SAMPLE_GAIN,
    SamplePlayer,
    playback_rate,
    render_sample,
    sample_duration,
)
from drumseq.samples import DecodedSample

SR = 8_000


def _sample(seconds: float, *, sample_rate: int = SR, value: float = 1.0, channels: int = 1) -> DecodedSample:
    frames = np.full((int(seconds * sample_rate), channels), value, dtype=np.float32)
    return DecodedSample("test.wav", frames, sample_rate)


class _BrokenGraph:
    sample_rate = SR
    current_time = 0.0

    def schedule(self, samples, time) -> None:
        raise RuntimeError("graph refused")


@pytest.mark.parametrize(("decay", "expected"), [(1, 0.1), (2, 0.1), (10, 0.3), (50, 1.5), (100, 3.0)])
def test_sample_duration_clamps(decay: int, expected: float) -> None:
    assert sample_duration(decay) == pytest.approx(expected)


def test_sample_duration_range_holds_for_all_decays() -> None:
    for decay in range(1, 101):
        assert 0.1 <= sample_duration(decay) <= 3.0


def test_playback_rate_combines_tune_and_sample_rates() -> None:
    assert playback_rate(0, SR, SR) == 1.0
    assert playback_rate(12, SR, SR) == pytest.approx(2.0)
    assert playback_rate(0, 16_000, SR) == pytest.approx(2.0)


def test_long_sample_is_truncated_at_decay_duration() -> None:
    audio = render_sample(_sample(5.0), 1.0, 0, 10, SR)
    assert len(audio) == int(round(0.3 * SR))


def test_short_sample_ends_with_its_source() -> None:
    audio = render_sample(_sample(0.05), 1.0, 0, 100, SR)
    assert len(audio) == 400


def test_pitch_up_shortens_playback() -> None:
    audio = render_sample(_sample(1.0), 1.0, 12, 100, SR)
    assert len(audio) == 4_000


def test_envelope_starts_at_attenuated_velocity() -> None:
    audio = render_sample(_sample(1.0), 0.5, 0, 100, SR)
    assert audio[0] == pytest.approx(0.5 * SAMPLE_GAIN)
    assert np.all(np.diff(audio) <= 1e-12)


def test_zero_velocity_is_silent() -> None:
    assert not np.any(render_sample(_sample(0.5), 0.0, 0, 50, SR))


def test_stereo_sources_are_mixed_to_mono() -> None:
    frames = np.column_stack([np.ones(800), -np.ones(800)]).astype(np.float32)
    audio = render_sample(DecodedSample("wide.wav", frames, SR), 1.0, 0, 50, SR)
    assert np.allclose(audio, 0.0)


def test_empty_sample_raises_render_error() -> None:
    with pytest.raises(RenderError):
        render_sample(DecodedSample("empty.wav", np.zeros((0, 1), dtype=np.float32), SR), 1.0, 0, 50, SR)


def test_player_schedules_on_graph() -> None:
    mixer = Mixer(SR)
    player = SamplePlayer(mixer)
    assert player.play(_sample(0.2), 0.0, 1.0, 0, 50)
    assert mixer.active_voices == 1


def test_player_contains_graph_failures(caplog) -> None:
    player = SamplePlayer(_BrokenGraph())
    with caplog.at_level(logging.WARNING, logger="drumseq.playback"):
        assert not player.play(_sample(0.2), 0.0, 1.0, 0, 50)
    assert "graph refused" in caplog.text
