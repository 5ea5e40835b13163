from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .breathing import BreathingAnalysisResult
from .posture import PostureAnalysisResult
from .session import AnalyzedSession
from .utils import COMPARISON_UNCHANGED_PCT


class ChangeDirection(str, Enum):
    INCREASED = "increased"
    DECREASED = "decreased"
    UNCHANGED = "unchanged"


class OverallChange(str, Enum):
    SIGNIFICANT_IMPROVEMENT = "significant-improvement"
    SLIGHT_IMPROVEMENT = "slight-improvement"
    STABLE = "stable"
    SLIGHT_DECLINE = "slight-decline"
    SIGNIFICANT_DECLINE = "significant-decline"


@dataclass(frozen=True)
class MetricComparison:
    metric_a: Optional[float]
    metric_b: Optional[float]
    delta: float
    pct_change: float
    direction: ChangeDirection
    improvement: bool


@dataclass(frozen=True)
class FatigueComparison:
    count_a: int
    count_b: int
    delta: int
    improvement: bool


@dataclass(frozen=True)
class BreathingComparison:
    rate: MetricComparison
    depth: MetricComparison
    fatigue: FatigueComparison


@dataclass(frozen=True)
class PostureComparison:
    overall_score: MetricComparison
    forward_head: MetricComparison
    shoulder_imbalance: MetricComparison


@dataclass(frozen=True)
class ComparisonInsight:
    title: str
    description: str
    positive: bool


@dataclass(frozen=True)
class SessionComparison:
    session_a_id: str
    session_b_id: str
    breathing: Optional[BreathingComparison]
    posture: Optional[PostureComparison]
    overall: OverallChange
    insights: List[ComparisonInsight] = field(default_factory=list)


def compare_metric(
    a: Optional[float],
    b: Optional[float],
    higher_is_better: bool,
    unchanged_pct: float = COMPARISON_UNCHANGED_PCT,
) -> MetricComparison:
    """
    Change from a to b. Within +-unchanged_pct percent the metric is unchanged.

    A missing side, or a zero baseline, gives a 0% change.
    """
    if a is None or b is None:
        return MetricComparison(a, b, 0.0, 0.0, ChangeDirection.UNCHANGED, False)
    delta = b - a
    pct = 0.0 if a == 0 else 100.0 * delta / a
    if pct > unchanged_pct:
        direction = ChangeDirection.INCREASED
        improvement = higher_is_better
    elif pct < -unchanged_pct:
        direction = ChangeDirection.DECREASED
        improvement = not higher_is_better
    else:
        direction = ChangeDirection.UNCHANGED
        improvement = False
    return MetricComparison(a, b, delta, pct, direction, improvement)


def compare_breathing(
    a: Optional[BreathingAnalysisResult], b: Optional[BreathingAnalysisResult]
) -> Optional[BreathingComparison]:
    if a is None or b is None:
        return None
    count_a = len(a.fatigue_windows)
    count_b = len(b.fatigue_windows)
    return BreathingComparison(
        rate=compare_metric(a.rate_bpm, b.rate_bpm, higher_is_better=True),
        depth=compare_metric(a.depth_score, b.depth_score, higher_is_better=True),
        fatigue=FatigueComparison(count_a, count_b, count_b - count_a, count_b < count_a),
    )


def compare_posture(
    a: Optional[PostureAnalysisResult], b: Optional[PostureAnalysisResult]
) -> Optional[PostureComparison]:
    if a is None or b is None:
        return None

    def _abs(v: Optional[float]) -> Optional[float]:
        return None if v is None else abs(v)

    return PostureComparison(
        overall_score=compare_metric(a.overall_score, b.overall_score, higher_is_better=True),
        forward_head=compare_metric(a.head_forward_cm, b.head_forward_cm, higher_is_better=False),
        shoulder_imbalance=compare_metric(
            _abs(a.shoulder_imbalance_deg), _abs(b.shoulder_imbalance_deg), higher_is_better=False
        ),
    )


def assess_overall_change(
    breathing: Optional[BreathingComparison], posture: Optional[PostureComparison]
) -> OverallChange:
    """Count improvement flags over the six tracked metrics; a missing comparison counts as not improved."""
    flags = []
    if breathing is not None:
        flags += [breathing.rate.improvement, breathing.depth.improvement, breathing.fatigue.improvement]
    if posture is not None:
        flags += [
            posture.overall_score.improvement,
            posture.forward_head.improvement,
            posture.shoulder_imbalance.improvement,
        ]
    improved = sum(1 for f in flags if f)
    declined = 6 - improved

    if improved >= 5:
        return OverallChange.SIGNIFICANT_IMPROVEMENT
    if improved >= 4:
        return OverallChange.SLIGHT_IMPROVEMENT
    if declined >= 5:
        return OverallChange.SIGNIFICANT_DECLINE
    if declined >= 4:
        return OverallChange.SLIGHT_DECLINE
    return OverallChange.STABLE


def generate_comparison_insights(
    breathing: Optional[BreathingComparison], posture: Optional[PostureComparison]
) -> List[ComparisonInsight]:
    out: List[ComparisonInsight] = []

    if breathing is not None:
        rate = breathing.rate
        if rate.improvement:
            out.append(ComparisonInsight(
                "Breathing rate improved",
                f"Rate increased by {abs(rate.pct_change):.1f}% (from {rate.metric_a:.1f} to {rate.metric_b:.1f} bpm)",
                True,
            ))
        elif rate.direction is ChangeDirection.DECREASED:
            out.append(ComparisonInsight(
                "Breathing rate declined",
                f"Rate decreased by {abs(rate.pct_change):.1f}% (from {rate.metric_a:.1f} to {rate.metric_b:.1f} bpm)",
                False,
            ))
        if breathing.depth.improvement:
            out.append(ComparisonInsight(
                "Breathing depth improved",
                f"Depth score increased by {abs(breathing.depth.pct_change):.1f}%",
                True,
            ))
        fatigue = breathing.fatigue
        if fatigue.improvement:
            out.append(ComparisonInsight(
                "Fewer fatigue windows",
                f"Reduced from {fatigue.count_a} to {fatigue.count_b} fatigue episodes",
                True,
            ))
        elif fatigue.delta > 0:
            out.append(ComparisonInsight(
                "More fatigue windows",
                f"Increased from {fatigue.count_a} to {fatigue.count_b} fatigue episodes",
                False,
            ))

    if posture is not None:
        score = posture.overall_score
        if score.improvement:
            out.append(ComparisonInsight(
                "Overall posture improved",
                f"Score increased by {abs(score.pct_change):.1f}% "
                f"(from {score.metric_a * 100:.0f}% to {score.metric_b * 100:.0f}%)",
                True,
            ))
        head = posture.forward_head
        if head.improvement:
            out.append(ComparisonInsight(
                "Forward head posture improved",
                f"Reduced by {abs(head.delta):.1f} cm (from {head.metric_a:.1f} to {head.metric_b:.1f} cm)",
                True,
            ))
        elif head.direction is ChangeDirection.INCREASED:
            out.append(ComparisonInsight(
                "Forward head posture declined",
                f"Increased by {abs(head.delta):.1f} cm",
                False,
            ))
        shoulders = posture.shoulder_imbalance
        if shoulders.improvement:
            out.append(ComparisonInsight(
                "Shoulder balance improved",
                f"Imbalance reduced by {abs(shoulders.delta):.1f}°",
                True,
            ))
        elif shoulders.direction is ChangeDirection.INCREASED:
            out.append(ComparisonInsight(
                "Shoulder imbalance increased",
                f"Imbalance increased by {abs(shoulders.delta):.1f}°",
                False,
            ))
    return out


def compare_sessions(a: AnalyzedSession, b: AnalyzedSession) -> SessionComparison:
    """Compare session b against the earlier session a."""
    breathing = compare_breathing(a.breathing, b.breathing)
    posture = compare_posture(a.posture, b.posture)
    return SessionComparison(
        session_a_id=a.session_id,
        session_b_id=b.session_id,
        breathing=breathing,
        posture=posture,
        overall=assess_overall_change(breathing, posture),
        insights=generate_comparison_insights(breathing, posture),
    )
