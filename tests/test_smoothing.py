from __future__ import annotations

import pytest

from pose.smoothing import moving_average


def test_moving_average_centered_with_truncated_edges():
    out = moving_average([1.0, 2.0, 3.0, 4.0, 5.0], window=3)
    assert len(out) == 5
    # first window is [1, 2], last is [4, 5]
    assert abs(out[0] - 1.5) < 1e-12
    assert abs(out[2] - 3.0) < 1e-12
    assert abs(out[4] - 4.5) < 1e-12


def test_moving_average_flat_signal_unchanged():
    out = moving_average([0.2] * 10, window=5)
    assert all(abs(v - 0.2) < 1e-12 for v in out)


def test_moving_average_small_window_is_identity():
    assert moving_average([1.0, 5.0, 2.0], window=1) == [1.0, 5.0, 2.0]
    assert moving_average([], window=5) == []


def test_moving_average_rejects_negative_window():
    with pytest.raises(ValueError):
        moving_average([1.0], window=-1)
