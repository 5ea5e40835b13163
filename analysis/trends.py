from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .logger import get_logger
from .session import AnalyzedSession, metric_at
from .utils import TREND_STABILITY_BAND


log = get_logger("trends")


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class Regression:
    slope: float
    intercept: float
    r_squared: float


@dataclass(frozen=True)
class TrendResult:
    metric_name: str
    values: List[Optional[float]]
    timestamps: List[datetime]
    slope: float
    intercept: float
    r_squared: float
    direction: TrendDirection


@dataclass(frozen=True)
class TrendOverview:
    session_count: int
    start_date: datetime
    end_date: datetime
    trends: Dict[str, TrendResult] = field(default_factory=dict)


# overview key -> path into an AnalyzedSession
TREND_METRICS: Dict[str, Tuple[str, ...]] = {
    "breathing_rate": ("breathing", "rate_bpm"),
    "breathing_depth": ("breathing", "depth_score"),
    "posture_score": ("posture", "overall_score"),
    "forward_head": ("posture", "head_forward_cm"),
}


def fit_linear_regression(values: Sequence[float], xs: Optional[Sequence[float]] = None) -> Optional[Regression]:
    """
    Ordinary least squares fit y = slope * x + intercept.

    x defaults to 0..n-1. With no spread in x (a single point) the slope is 0
    and the intercept is the mean of y. With no spread in y, R^2 is 1.0.
    Returns None for empty input.
    """
    if len(values) == 0:
        return None
    y = np.asarray(values, dtype=np.float64)
    x = np.arange(y.size, dtype=np.float64) if xs is None else np.asarray(xs, dtype=np.float64)
    if x.size != y.size:
        raise ValueError("xs and values must have the same length")

    n = float(y.size)
    sum_x = float(x.sum())
    sum_y = float(y.sum())
    denom = n * float(np.dot(x, x)) - sum_x * sum_x
    if abs(denom) < 1e-12:
        slope = 0.0
    else:
        slope = (n * float(np.dot(x, y)) - sum_x * sum_y) / denom
    intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_tot = float(np.sum((y - mean_y) ** 2))
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    r_squared = 1.0 if ss_tot == 0.0 else 1.0 - ss_res / ss_tot
    return Regression(slope=slope, intercept=intercept, r_squared=r_squared)


def classify_slope(slope: float, band: float = TREND_STABILITY_BAND) -> TrendDirection:
    # sign of the slope only; whether up is good depends on the metric
    if slope > band:
        return TrendDirection.INCREASING
    if slope < -band:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def compute_trend(
    sessions: Sequence[AnalyzedSession],
    metric_path: Sequence[str],
    metric_name: Optional[str] = None,
    band: float = TREND_STABILITY_BAND,
) -> Optional[TrendResult]:
    """
    Trend of one metric across sessions ordered oldest to newest.

    `values` stays aligned with `sessions`: a session without the metric
    contributes None and the regression runs over the present values at their
    session index. None when no session carries the metric.
    """
    if not sessions:
        return None
    values = [metric_at(s, metric_path) for s in sessions]
    present = [(i, v) for i, v in enumerate(values) if v is not None]
    if not present:
        return None

    reg = fit_linear_regression([v for _, v in present], [i for i, _ in present])
    return TrendResult(
        metric_name=metric_name or str(metric_path[-1]),
        values=values,
        timestamps=[s.created_at for s in sessions],
        slope=reg.slope,
        intercept=reg.intercept,
        r_squared=reg.r_squared,
        direction=classify_slope(reg.slope, band),
    )


def compute_trend_analysis(sessions: Sequence[AnalyzedSession]) -> Optional[TrendOverview]:
    if not sessions:
        return None
    trends: Dict[str, TrendResult] = {}
    for name, path in TREND_METRICS.items():
        trend = compute_trend(sessions, path, metric_name=name)
        if trend is not None:
            trends[name] = trend
    log.debug("trend analysis over %d sessions: %s", len(sessions), sorted(trends))
    return TrendOverview(
        session_count=len(sessions),
        start_date=sessions[0].created_at,
        end_date=sessions[-1].created_at,
        trends=trends,
    )
