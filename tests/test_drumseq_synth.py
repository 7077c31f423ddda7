import numpy as np
import pytest
from scipy.signal import butter, iirpeak

from drumseq.synth import (
    BUTTERWORTH_Q,
    SILENCE_FLOOR,
    _resonant_lowpass_cached,
    add_note,
    apply_filter,
    exponential_envelope,
    filter_coefficients,
    generate_noise,
    generate_sawtooth,
    generate_sine,
    generate_square,
    generate_swept,
    generate_triangle,
    semitone_ratio,
    swept_phase,
)

SR = 22_050


def _rms(signal: np.ndarray) -> float:
    return float(np.sqrt(np.mean(signal**2)))


def test_semitone_ratio_octaves() -> None:
    assert semitone_ratio(0) == 1.0
    assert semitone_ratio(12) == pytest.approx(2.0)
    assert semitone_ratio(-12) == pytest.approx(0.5)


@pytest.mark.parametrize("osc", [generate_sine, generate_triangle, generate_sawtooth, generate_square])
def test_oscillators_have_expected_length_and_range(osc) -> None:
    signal = osc(440.0, 0.25, SR, 0.5)
    assert signal.shape == (int(round(SR * 0.25)),)
    assert np.all(np.isfinite(signal))
    assert np.max(np.abs(signal)) <= 0.5 * 1.2


def test_oscillators_above_nyquist_stay_finite() -> None:
    signal = generate_square(30_000.0, 0.1, SR)
    assert np.all(np.isfinite(signal))


def test_zero_duration_is_empty() -> None:
    assert generate_square(440.0, 0.0, SR).size == 0
    assert generate_noise(0.0, SR).size == 0


def test_noise_is_seeded_and_bounded() -> None:
    first = generate_noise(0.1, SR, 0.5, np.random.default_rng(3))
    second = generate_noise(0.1, SR, 0.5, np.random.default_rng(3))
    assert np.array_equal(first, second)
    assert np.max(np.abs(first)) <= 0.5


def test_swept_phase_starts_at_start_frequency_and_ends_at_end() -> None:
    phase = swept_phase(60.0, 6.0, 0.1, 0.5, SR)
    assert phase[0] == 0.0
    assert (phase[1] - phase[0]) * SR == pytest.approx(60.0)
    assert (phase[-1] - phase[-2]) * SR == pytest.approx(6.0)


def test_generate_swept_waveforms() -> None:
    for waveform in ("sine", "triangle", "square", "sawtooth"):
        signal = generate_swept(waveform, 200.0, 50.0, 0.1, 0.2, SR)
        assert signal.shape == (int(round(SR * 0.2)),)
    with pytest.raises(ValueError):
        generate_swept("pulse", 200.0, 50.0, 0.1, 0.2, SR)  # type: ignore[arg-type]


def test_filter_coefficients_are_cached() -> None:
    b1, a1 = filter_coefficients("lowpass", 0.5, 1.0)
    b2, a2 = filter_coefficients("lowpass", 0.5, 1.0)
    assert b1 is b2
    assert a1 is a2


def test_highpass_and_bandpass_use_scipy_designs() -> None:
    b, a = filter_coefficients("highpass", 0.25, 1.0)
    expected_b, expected_a = butter(2, 0.25, btype="high")
    assert np.allclose(b, expected_b)
    assert np.allclose(a, expected_a)

    b, a = filter_coefficients("bandpass", 0.1, 5.0)
    expected_b, expected_a = iirpeak(0.1, 5.0)
    assert np.allclose(b, expected_b)
    assert np.allclose(a, expected_a)


def test_resonant_lowpass_matches_butterworth_at_its_q() -> None:
    b, a = filter_coefficients("lowpass", 0.25, BUTTERWORTH_Q)
    expected_b, expected_a = butter(2, 0.25, btype="low")
    assert np.allclose(b, expected_b)
    assert np.allclose(a, expected_a)
    resonant_b, resonant_a = _resonant_lowpass_cached(0.25, 0.70710678)
    assert np.allclose(resonant_b, expected_b, atol=1e-4)
    assert np.allclose(resonant_a, expected_a, atol=1e-4)


def test_unknown_filter_kind_is_rejected() -> None:
    with pytest.raises(ValueError):
        filter_coefficients("notch", 0.25)  # type: ignore[arg-type]


def test_lowpass_and_highpass_attenuate_the_other_band() -> None:
    high = generate_sine(8000.0, 0.5, SR)
    low = generate_sine(100.0, 0.5, SR)
    assert _rms(apply_filter(high, "lowpass", 200.0, 1.0, SR)) < 0.05 * _rms(high)
    assert _rms(apply_filter(low, "highpass", 2000.0, BUTTERWORTH_Q, SR)) < 0.05 * _rms(low)


def test_bandpass_passes_its_center() -> None:
    center = generate_sine(1000.0, 0.5, SR)
    far = generate_sine(8000.0, 0.5, SR)
    passed = _rms(apply_filter(center, "bandpass", 1000.0, 3.0, SR)[SR // 10 :])
    rejected = _rms(apply_filter(far, "bandpass", 1000.0, 3.0, SR)[SR // 10 :])
    assert passed > 0.5 * _rms(center)
    assert rejected < 0.2 * _rms(far)


def test_filter_leaves_empty_signal_alone() -> None:
    empty = np.zeros(0)
    assert apply_filter(empty, "bandpass", 1000.0, 3.0, SR).size == 0



def test_exponential_envelope_decays_to_floor_and_holds() -> None:
    env = exponential_envelope(0.8, 0.1, 0.3, SR)
    assert env[0] == pytest.approx(0.8)
    ramp_end = int(0.1 * SR)
    assert env[ramp_end] == pytest.approx(SILENCE_FLOOR, rel=1e-2)
    assert np.allclose(env[ramp_end + 10 :], SILENCE_FLOOR)
    assert np.all(np.diff(env) <= 1e-12)
    assert np.all(env > 0)


def test_exponential_envelope_non_positive_peak_is_silent() -> None:
    assert not np.any(exponential_envelope(0.0, 0.1, 0.2, SR))
    assert not np.any(exponential_envelope(-1.0, 0.1, 0.2, SR))


def test_add_note_clips_at_signal_end() -> None:
    signal = np.zeros(10)
    add_note(signal, np.ones(5), 8)
    assert signal.tolist() == [0.0] * 8 + [1.0, 1.0]
    add_note(signal, np.ones(5), 20)
    assert signal.sum() == 2.0
