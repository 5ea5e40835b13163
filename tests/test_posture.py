from __future__ import annotations

import uuid

from analysis.features import AveragedLandmark, extract_features
from analysis.insights import Severity
from analysis.posture import (
    FALLBACK_CM_PER_UNIT,
    SpineAlignment,
    analyze,
    assess_spine_alignment,
    cm_per_unit,
    compute_overall_score,
    generate_insights,
    measure_forward_head,
    measure_shoulder_imbalance,
)
from calibration.schema import new_user_profile
from pose.landmarks import Frame, Landmark, LandmarkId, Pose

L = LandmarkId


def _avg(x: float, y: float, z: float = 0.0) -> AveragedLandmark:
    return AveragedLandmark(x=x, y=y, z=z, confidence=1.0)


def _upright(nose_x: float = 0.5, left_shoulder_y: float = 0.3):
    return {
        L.NOSE: _avg(nose_x, 0.1),
        L.LEFT_SHOULDER: _avg(0.4, left_shoulder_y),
        L.RIGHT_SHOULDER: _avg(0.6, 0.3),
        L.LEFT_HIP: _avg(0.45, 0.55),
        L.RIGHT_HIP: _avg(0.55, 0.55),
        L.LEFT_KNEE: _avg(0.45, 0.75),
        L.RIGHT_KNEE: _avg(0.55, 0.75),
        L.LEFT_ANKLE: _avg(0.45, 0.95),
        L.RIGHT_ANKLE: _avg(0.55, 0.95),
    }


def _timeline(lms, frames: int = 5):
    pose = Pose(landmarks=tuple(Landmark(k, v.x, v.y, v.z, 1.0) for k, v in lms.items()))
    return [Frame(index=i, timestamp_ms=i * 66, pose=pose) for i in range(frames)]


def test_cm_per_unit_from_nose_to_ankle_span():
    lms = _upright()
    assert abs(cm_per_unit(lms, 170.0) - 170.0 / 0.85) < 1e-9
    assert cm_per_unit({}, 170.0) == FALLBACK_CM_PER_UNIT


def test_forward_head_in_cm():
    lms = _upright(nose_x=0.52)
    fhp = measure_forward_head(lms, 170.0)
    assert abs(fhp - 0.02 * 170.0 / 0.85) < 1e-9
    assert measure_forward_head({}, 170.0) is None


def test_shoulder_imbalance_level_and_tilted():
    assert abs(measure_shoulder_imbalance(_upright())) < 1e-9
    tilted = measure_shoulder_imbalance(_upright(left_shoulder_y=0.32))
    # right shoulder higher in the image (smaller y) -> negative atan2(dy, dx)
    assert tilted < 0.0
    assert -90.0 <= tilted <= 90.0


def test_shoulder_imbalance_folded_into_range():
    lms = {L.LEFT_SHOULDER: _avg(0.6, 0.3), L.RIGHT_SHOULDER: _avg(0.4, 0.31)}
    angle = measure_shoulder_imbalance(lms)
    assert -90.0 <= angle <= 90.0


def test_spine_alignment_classes():
    assert assess_spine_alignment(_upright()) is SpineAlignment.NEUTRAL
    hunched = dict(_upright())
    hunched[L.LEFT_SHOULDER] = _avg(0.30, 0.3)
    hunched[L.RIGHT_SHOULDER] = _avg(0.50, 0.3)
    assert assess_spine_alignment(hunched) is SpineAlignment.KYPHOTIC
    sway = dict(_upright())
    sway[L.LEFT_SHOULDER] = _avg(0.55, 0.3)
    sway[L.RIGHT_SHOULDER] = _avg(0.75, 0.3)
    assert assess_spine_alignment(sway) is SpineAlignment.LORDOTIC
    assert assess_spine_alignment({}) is None


def test_overall_score_weights():
    assert abs(compute_overall_score(0.0, 0.0, SpineAlignment.NEUTRAL) - 1.0) < 1e-12
    assert abs(compute_overall_score(10.0, 15.0, SpineAlignment.KYPHOTIC) - 0.21) < 1e-12
    assert abs(compute_overall_score(None, None, None) - 0.5) < 1e-12


def test_insights_for_poor_posture():
    insights = generate_insights(9.0, 6.0, SpineAlignment.KYPHOTIC, 0.4)
    titles = [i.title for i in insights]
    assert "Forward head posture detected" in titles
    assert "Shoulder imbalance detected" in titles
    assert "Kyphotic posture detected" in titles
    assert "Posture needs significant improvement" in titles
    assert insights[0].severity is Severity.HIGH


def test_insights_for_good_posture():
    insights = generate_insights(1.0, 1.0, SpineAlignment.NEUTRAL, 0.95)
    assert [i.title for i in insights] == ["Good posture!"]


def test_analyze_timeline_and_bundle_agree():
    timeline = _timeline(_upright(nose_x=0.52))
    from_timeline = analyze(timeline, height_cm=170.0)
    from_bundle = analyze(extract_features(timeline), height_cm=170.0)
    assert from_timeline.error is None
    assert abs(from_timeline.head_forward_cm - from_bundle.head_forward_cm) < 1e-9
    assert from_timeline.spine_alignment is SpineAlignment.NEUTRAL
    assert from_timeline.source_frames == [0, 1, 2, 3, 4]


def test_analyze_uses_profile_thresholds():
    # 0.02 units forward on a 200 cm user -> ~4.7 cm, under the generic 5 cm alert
    timeline = _timeline(_upright(nose_x=0.52))
    generic = analyze(timeline, height_cm=200.0)
    assert "Forward head posture detected" not in [i.title for i in generic.insights]

    profile = new_user_profile(uuid.uuid4(), 200.0)
    strict = profile.model_copy(update={
        "learned_thresholds": profile.learned_thresholds.model_copy(update={
            "posture": profile.learned_thresholds.posture.model_copy(update={"forward_head_alert_cm": 3.0}),
        }),
    })
    personal = analyze(timeline, profile=strict)
    assert "Forward head posture detected" in [i.title for i in personal.insights]


def test_analyze_without_shoulders_reports_error():
    timeline = _timeline({L.NOSE: _avg(0.5, 0.1)})
    result = analyze(timeline)
    assert result.overall_score is None
    assert result.error is not None
