from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from analysis.breathing import BreathingAnalysisResult
from analysis.posture import PostureAnalysisResult
from analysis.session import AnalyzedSession, metric_at
from analysis.trends import (
    TrendDirection,
    classify_slope,
    compute_trend,
    compute_trend_analysis,
    fit_linear_regression,
)

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _session(i: int, rate=None, depth=0.6, score=None, fhp=None) -> AnalyzedSession:
    breathing = None
    if rate is not None:
        breathing = BreathingAnalysisResult(rate_bpm=rate, frequency_hz=rate / 60.0, confidence=0.9, depth_score=depth)
    posture = None
    if score is not None:
        posture = PostureAnalysisResult(
            head_forward_cm=fhp, shoulder_imbalance_deg=1.0, spine_alignment=None, overall_score=score
        )
    return AnalyzedSession(session_id=f"s{i}", created_at=T0 + timedelta(days=i), breathing=breathing, posture=posture)


def test_regression_exact_line():
    reg = fit_linear_regression([1, 3, 5, 7, 9])
    assert abs(reg.slope - 2.0) < 1e-9
    assert abs(reg.intercept - 1.0) < 1e-9
    assert abs(reg.r_squared - 1.0) < 1e-9


def test_regression_constant_signal():
    reg = fit_linear_regression([5, 5, 5, 5, 5])
    assert abs(reg.slope) < 1e-9
    assert abs(reg.intercept - 5.0) < 1e-9
    assert reg.r_squared == 1.0


def test_regression_single_point_and_empty():
    reg = fit_linear_regression([4.2])
    assert reg.slope == 0.0
    assert abs(reg.intercept - 4.2) < 1e-12
    assert all(math.isfinite(v) for v in (reg.slope, reg.intercept, reg.r_squared))
    assert fit_linear_regression([]) is None


def test_regression_with_explicit_x():
    reg = fit_linear_regression([2.0, 6.0], xs=[1, 3])
    assert abs(reg.slope - 2.0) < 1e-12
    assert abs(reg.intercept - 0.0) < 1e-12


def test_classify_slope_band():
    assert classify_slope(0.06) is TrendDirection.INCREASING
    assert classify_slope(-0.06) is TrendDirection.DECREASING
    assert classify_slope(0.05) is TrendDirection.STABLE
    assert classify_slope(-0.01) is TrendDirection.STABLE


def test_metric_at_walks_attributes_and_dicts():
    s = _session(0, rate=18.0)
    assert metric_at(s, ("breathing", "rate_bpm")) == 18.0
    assert metric_at(s, ("posture", "overall_score")) is None
    assert metric_at({"a": {"b": 2}}, ("a", "b")) == 2.0
    assert metric_at({"a": {"b": "x"}}, ("a", "b")) is None


def test_compute_trend_keeps_missing_values_aligned():
    sessions = [_session(0, rate=20.0), _session(1), _session(2, rate=22.0), _session(3, rate=23.0)]
    trend = compute_trend(sessions, ("breathing", "rate_bpm"))
    assert trend.values == [20.0, None, 22.0, 23.0]
    assert len(trend.timestamps) == 4
    # fit over x = 0, 2, 3
    assert trend.slope > 0.05
    assert trend.direction is TrendDirection.INCREASING
    assert trend.metric_name == "rate_bpm"


def test_compute_trend_none_when_metric_absent():
    assert compute_trend([_session(0), _session(1)], ("breathing", "rate_bpm")) is None
    assert compute_trend([], ("breathing", "rate_bpm")) is None


def test_direction_is_slope_sign_only():
    # forward head rising is bad for the user but still reads as increasing
    sessions = [_session(i, score=0.8, fhp=2.0 + i) for i in range(4)]
    trend = compute_trend(sessions, ("posture", "head_forward_cm"))
    assert trend.direction is TrendDirection.INCREASING


def test_trend_analysis_overview():
    assert compute_trend_analysis([]) is None
    sessions = [_session(i, rate=20.0 - i, depth=0.6, score=0.7 + 0.01 * i, fhp=3.0) for i in range(5)]
    overview = compute_trend_analysis(sessions)
    assert overview.session_count == 5
    assert overview.start_date == T0 and overview.end_date == T0 + timedelta(days=4)
    assert set(overview.trends) == {"breathing_rate", "breathing_depth", "posture_score", "forward_head"}
    assert overview.trends["breathing_rate"].direction is TrendDirection.DECREASING
    assert overview.trends["breathing_depth"].direction is TrendDirection.STABLE
    assert overview.trends["posture_score"].direction is TrendDirection.STABLE
