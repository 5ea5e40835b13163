from __future__ import annotations

import math

import numpy as np

from analysis.fourier import NO_PEAK, FrequencyBin, fft_transform, find_peak_in_range, next_power_of_two


def _sine(freq_hz: float, rate_hz: float, seconds: float) -> list:
    t = np.arange(int(rate_hz * seconds)) / rate_hz
    return list(np.sin(2 * math.pi * freq_hz * t))


def test_next_power_of_two():
    assert next_power_of_two(1) == 1
    assert next_power_of_two(5) == 8
    assert next_power_of_two(900) == 1024
    assert next_power_of_two(1024) == 1024


def test_fft_empty_signal():
    assert fft_transform([]) == []


def test_fft_bins_cover_half_of_padded_length():
    bins = fft_transform([1.0, 0.0, 1.0, 0.0, 1.0], sampling_rate=16.0)
    # padded to 8 -> 4 bins at 0, 2, 4, 6 Hz
    assert len(bins) == 4
    assert [b.frequency for b in bins] == [0.0, 2.0, 4.0, 6.0]
    # DC bin is the plain sum
    assert abs(bins[0].magnitude - 3.0) < 1e-9


def test_sine_peak_within_one_bin():
    rate, seconds, freq = 15.0, 60.0, 0.25
    signal = _sine(freq, rate, seconds)
    bins = fft_transform(signal, rate)
    resolution = rate / next_power_of_two(len(signal))
    peak = find_peak_in_range(bins, 0.1, 0.5)
    assert abs(peak.frequency - freq) <= resolution
    assert peak.confidence > 0.5


def test_peak_in_range_empty_or_out_of_band():
    assert find_peak_in_range([], 0.1, 0.5) == NO_PEAK
    bins = [FrequencyBin(10.0, 1.0), FrequencyBin(5.0, 2.0)]
    peak = find_peak_in_range(bins, 0.1, 0.5)
    assert (peak.frequency, peak.magnitude, peak.confidence) == (0.0, 0.0, 0.0)


def test_peak_confidence_zero_for_negligible_magnitudes():
    bins = [FrequencyBin(1e-5, 0.2), FrequencyBin(2e-5, 0.3)]
    peak = find_peak_in_range(bins, 0.1, 0.5)
    assert peak.frequency == 0.3
    assert peak.confidence == 0.0


def test_peak_confidence_formula():
    bins = [FrequencyBin(1.0, 0.1), FrequencyBin(4.0, 0.2), FrequencyBin(1.0, 0.3)]
    peak = find_peak_in_range(bins, 0.1, 0.3)
    # mean 2, peak 4 -> (4 - 2) / 4
    assert abs(peak.confidence - 0.5) < 1e-12
