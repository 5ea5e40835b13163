from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from calibration import personalization
from calibration.errors import CalibrationError, ProfileValidationError
from calibration.personalization import (
    compute_balance_thresholds,
    compute_breathing_thresholds,
    compute_posture_thresholds,
    create_user_profile,
    select_latest_sessions,
    update_user_profile,
)
from calibration.schema import BreathingBaseline, is_valid_user_profile
from pose.landmarks import CalibrationSession, CalibrationType, Frame, Landmark, LandmarkId, Pose

L = LandmarkId
T0 = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)

T_POSE = {
    L.NOSE: (0.5, 0.1),
    L.LEFT_SHOULDER: (0.4, 0.3),
    L.RIGHT_SHOULDER: (0.6, 0.3),
    L.LEFT_ELBOW: (0.3, 0.3),
    L.RIGHT_ELBOW: (0.7, 0.3),
    L.LEFT_WRIST: (0.2, 0.3),
    L.RIGHT_WRIST: (0.8, 0.3),
    L.LEFT_HIP: (0.45, 0.6),
    L.RIGHT_HIP: (0.55, 0.6),
    L.LEFT_KNEE: (0.45, 0.78),
    L.RIGHT_KNEE: (0.55, 0.78),
    L.LEFT_ANKLE: (0.45, 0.95),
    L.RIGHT_ANKLE: (0.55, 0.95),
}


def _frame(i: int, points) -> Frame:
    lms = tuple(Landmark(k, x, y, 0.0, 1.0) for k, (x, y) in points.items())
    return Frame(index=i, timestamp_ms=int(i * 1000 / 15), pose=Pose(landmarks=lms))


def _t_pose_frames(points=T_POSE, n: int = 10):
    return [_frame(i, points) for i in range(n)]


def _breathing_frames(seconds: float = 60.0):
    frames = []
    for i in range(int(seconds * 15)):
        dy = 0.01 * math.sin(2 * math.pi * 0.15 * i / 15.0)
        points = dict(T_POSE)
        for lm_id in (L.LEFT_SHOULDER, L.RIGHT_SHOULDER):
            x, y = T_POSE[lm_id]
            points[lm_id] = (x, y + dy)
        frames.append(_frame(i, points))
    return frames


def _movement_frames():
    bent = dict(T_POSE)
    bent[L.LEFT_WRIST] = (0.3, 0.4)
    return [_frame(i, bent if i % 2 else T_POSE) for i in range(6)]


def _sessions(at: datetime = T0, t_pose=None, breathing=None):
    return [
        CalibrationSession(CalibrationType.T_POSE, t_pose or _t_pose_frames(), created_at=at),
        CalibrationSession(CalibrationType.BREATHING, breathing or _breathing_frames(), created_at=at),
        CalibrationSession(CalibrationType.MOVEMENT, _movement_frames(), created_at=at),
    ]


def test_breathing_thresholds():
    th = compute_breathing_thresholds({"typical_rate_bpm": 21.5, "typical_depth": 0.82})
    assert abs(th["fatigue_threshold"] - 0.574) < 1e-6
    assert abs(th["rate_alert_threshold"] - 5.375) < 1e-6


def test_breathing_thresholds_from_record_and_missing_values():
    th = compute_breathing_thresholds(
        BreathingBaseline(typical_rate_bpm=12.0, typical_depth=0.5, typical_rhythm_regularity=0.9)
    )
    assert abs(th["fatigue_threshold"] - 0.35) < 1e-12
    assert abs(th["rate_alert_threshold"] - 3.0) < 1e-12
    assert compute_breathing_thresholds(None) == {"fatigue_threshold": None, "rate_alert_threshold": None}


def test_posture_thresholds():
    th = compute_posture_thresholds(200.0, {"typical_forward_head_cm": 2.0, "typical_shoulder_imbalance_deg": 0.5})
    assert abs(th["forward_head_alert_cm"] - 6.0) < 1e-9
    assert abs(th["shoulder_imbalance_alert_deg"] - 5.0) < 1e-9

    slouched = compute_posture_thresholds(160.0, {"typical_forward_head_cm": 7.0, "typical_shoulder_imbalance_deg": -4.0})
    assert abs(slouched["forward_head_alert_cm"] - 9.0) < 1e-9
    assert abs(slouched["shoulder_imbalance_alert_deg"] - 6.0) < 1e-9

    generic = compute_posture_thresholds(170.0)
    assert abs(generic["forward_head_alert_cm"] - 5.1) < 1e-9
    assert generic["shoulder_imbalance_alert_deg"] == 5.0


def test_balance_thresholds_fixed():
    assert compute_balance_thresholds() == {"stability_alert_threshold": 0.6}


def test_missing_session_type_raises_before_analysis(monkeypatch):
    def _boom(*args, **kwargs):
        raise AssertionError("analysis must not run")

    monkeypatch.setattr(personalization, "analyze_t_pose_session", _boom)
    monkeypatch.setattr(personalization, "analyze_breathing_session", _boom)
    sessions = [s for s in _sessions() if s.calibration_type is not CalibrationType.MOVEMENT]
    with pytest.raises(CalibrationError) as exc_info:
        create_user_profile(uuid.uuid4(), sessions, 170.0)
    assert exc_info.value.missing == [CalibrationType.MOVEMENT]


def test_latest_duplicate_session_wins():
    older = CalibrationSession(CalibrationType.BREATHING, (), created_at=T0)
    newer = CalibrationSession(CalibrationType.BREATHING, (), created_at=T0 + timedelta(days=1))
    others = [s for s in _sessions() if s.calibration_type is not CalibrationType.BREATHING]
    latest = select_latest_sessions([newer, older] + others)
    assert latest[CalibrationType.BREATHING] is newer


def test_create_user_profile():
    uid = uuid.uuid4()
    profile = create_user_profile(uid, _sessions(), 170.0, now=T0)
    assert is_valid_user_profile(profile)
    assert profile.user_id == uid
    assert profile.calibration_count == 3
    assert profile.last_calibration_date == T0
    assert len(profile.baseline_pose.landmarks) == len(T_POSE)
    assert abs(profile.baseline_pose.joint_distances["arm_span_cm"] - 120.0) < 1e-6
    assert 6.0 <= profile.breathing_baseline.typical_rate_bpm <= 30.0
    assert abs(profile.posture_baseline.typical_forward_head_cm) < 1e-9
    assert abs(profile.learned_thresholds.posture.forward_head_alert_cm - 5.1) < 1e-9
    assert profile.learned_thresholds.balance.stability_alert_threshold == 0.6
    lo, hi = profile.rom_ranges["left_elbow"]
    assert lo < hi


def test_create_user_profile_rejects_unusable_breathing_session():
    sessions = _sessions(breathing=_breathing_frames(seconds=1))
    with pytest.raises(ProfileValidationError) as exc_info:
        create_user_profile(uuid.uuid4(), sessions, 170.0, now=T0)
    locations = {v.location for v in exc_info.value.violations}
    assert "breathing_baseline.typical_rate_bpm" in locations


def test_update_user_profile_merges_and_counts():
    uid = uuid.uuid4()
    existing = create_user_profile(uid, _sessions(), 170.0, now=T0)
    later = T0 + timedelta(days=7)
    updated = update_user_profile(existing, _sessions(at=later), 170.0, now=later)
    assert updated.user_id == uid
    assert updated.calibration_count == 6
    assert updated.last_calibration_date == later
    assert is_valid_user_profile(updated)


def test_update_keeps_existing_records_not_rebuilt():
    existing = create_user_profile(uuid.uuid4(), _sessions(), 170.0, now=T0)
    # no nose in the new T-pose: forward head cannot be measured
    headless = {k: v for k, v in T_POSE.items() if k is not L.NOSE}
    later = T0 + timedelta(days=1)
    updated = update_user_profile(existing, _sessions(at=later, t_pose=_t_pose_frames(headless)), 170.0, now=later)
    assert updated.posture_baseline == existing.posture_baseline
    assert updated.calibration_count == 6


def test_update_recomputes_thresholds_from_kept_baseline():
    forward = dict(T_POSE)
    forward[L.NOSE] = (0.54, 0.1)
    existing = create_user_profile(uuid.uuid4(), _sessions(t_pose=_t_pose_frames(forward)), 170.0, now=T0)
    assert abs(existing.posture_baseline.typical_forward_head_cm - 8.0) < 1e-6
    assert abs(existing.learned_thresholds.posture.forward_head_alert_cm - 10.0) < 1e-6

    headless = {k: v for k, v in T_POSE.items() if k is not L.NOSE}
    later = T0 + timedelta(days=1)
    updated = update_user_profile(existing, _sessions(at=later, t_pose=_t_pose_frames(headless)), 170.0, now=later)
    assert updated.posture_baseline == existing.posture_baseline
    assert abs(updated.learned_thresholds.posture.forward_head_alert_cm - 10.0) < 1e-6
    expected = compute_breathing_thresholds(updated.breathing_baseline)
    assert abs(updated.learned_thresholds.breathing.fatigue_threshold - expected["fatigue_threshold"]) < 1e-12
