from __future__ import annotations

from dataclasses import dataclass
from typing import List, NamedTuple, Sequence

import numpy as np

from .utils import SAMPLING_RATE_HZ


class FrequencyBin(NamedTuple):
    magnitude: float
    frequency: float


@dataclass(frozen=True)
class Peak:
    frequency: float = 0.0
    magnitude: float = 0.0
    confidence: float = 0.0


NO_PEAK = Peak()

# Mean in-band magnitude below which the peak confidence is reported as 0
_MIN_MEAN_MAGNITUDE = 1e-3


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def fft_transform(signal: Sequence[float], sampling_rate: float = SAMPLING_RATE_HZ) -> List[FrequencyBin]:
    """
    Magnitude spectrum of a real signal.

    The signal is zero-padded to the next power of two, giving a frequency
    resolution of sampling_rate / padded_length. Only the first half of the
    padded spectrum (bins 0 .. padded/2 - 1, DC up to just below Nyquist) is
    returned, each bin paired with its frequency in Hz.
    """
    n = len(signal)
    if n == 0:
        return []
    padded_len = next_power_of_two(n)
    padded = np.zeros(padded_len, dtype=np.float64)
    padded[:n] = np.asarray(signal, dtype=np.float64)

    spectrum = np.fft.rfft(padded)
    magnitudes = np.abs(spectrum)
    resolution = float(sampling_rate) / padded_len

    half = padded_len // 2
    return [FrequencyBin(float(magnitudes[k]), k * resolution) for k in range(half)]


def find_peak_in_range(bins: Sequence[FrequencyBin], freq_min: float, freq_max: float) -> Peak:
    """
    Strongest bin with freq_min <= frequency <= freq_max.

    confidence = (peak - mean) / peak over the in-range bins, clamped to [0, 1];
    0 when the in-range mean is negligible.
    """
    in_range = [b for b in bins if freq_min <= b.frequency <= freq_max]
    if not in_range:
        return NO_PEAK

    peak = max(in_range, key=lambda b: b.magnitude)
    mean_mag = float(np.mean([b.magnitude for b in in_range]))
    if mean_mag > _MIN_MEAN_MAGNITUDE and peak.magnitude > 0.0:
        confidence = (peak.magnitude - mean_mag) / peak.magnitude
    else:
        confidence = 0.0
    confidence = max(0.0, min(1.0, confidence))
    return Peak(frequency=peak.frequency, magnitude=peak.magnitude, confidence=confidence)
