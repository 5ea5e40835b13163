from __future__ import annotations

from typing import List, Sequence

import numpy as np


def moving_average(signal: Sequence[float], window: int = 5) -> List[float]:
    """
    Centered moving average over a 1D signal.

    - Output has the same length as the input
    - Near the edges the window is truncated (asymmetric), not zero-padded
    - window <= 1 returns the signal unchanged
    """
    if window < 0:
        raise ValueError("window must be non-negative")
    values = np.asarray(signal, dtype=np.float64)
    n = values.size
    if n == 0:
        return []
    if window <= 1:
        return [float(v) for v in values]

    half = int(window) // 2
    # Prefix sums give each truncated window sum in O(1)
    csum = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(n)
    start = np.maximum(0, idx - half)
    end = np.minimum(n, idx + half + 1)
    smoothed = (csum[end] - csum[start]) / (end - start)
    return [float(v) for v in smoothed]
