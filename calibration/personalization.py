"""
Personalized profiles from calibration sessions.

Threshold heuristics:

- breathing fatigue: 70% of typical depth (a 30% drop suggests fatigue)
- breathing rate alert: 25% of typical rate, as an absolute bpm deviation
- forward head alert: max(typical + 2 cm, 3% of height)
- shoulder imbalance alert: max(|typical| + 2 deg, 5 deg)
- balance stability alert: fixed 0.6, there is no balance calibration yet
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from analysis.logger import get_logger
from pose.landmarks import CalibrationSession, CalibrationType
from .errors import CalibrationError, ProfileValidationError
from .schema import UserProfile, missing_calibration_types, validate_user_profile
from .sessions import analyze_breathing_session, analyze_movement_session, analyze_t_pose_session


log = get_logger("personalization")

BALANCE_STABILITY_ALERT = 0.6


def _field(record: Any, name: str) -> Any:
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def compute_breathing_thresholds(baseline: Any) -> Dict[str, Optional[float]]:
    """`baseline` is any record with typical_rate_bpm and typical_depth."""
    rate = _field(baseline, "typical_rate_bpm")
    depth = _field(baseline, "typical_depth")
    return {
        "fatigue_threshold": None if depth is None else 0.7 * depth,
        "rate_alert_threshold": None if rate is None else 0.25 * rate,
    }


def compute_posture_thresholds(height_cm: float, baseline: Any = None) -> Dict[str, float]:
    """`baseline` is an optional record with typical_forward_head_cm and typical_shoulder_imbalance_deg."""
    generic_fhp = 0.03 * height_cm
    typical_fhp = _field(baseline, "typical_forward_head_cm")
    typical_imbalance = _field(baseline, "typical_shoulder_imbalance_deg")

    fhp_alert = generic_fhp if typical_fhp is None else max(typical_fhp + 2.0, generic_fhp)
    shoulder_alert = 5.0 if typical_imbalance is None else max(abs(typical_imbalance) + 2.0, 5.0)
    return {
        "forward_head_alert_cm": fhp_alert,
        "shoulder_imbalance_alert_deg": shoulder_alert,
    }


def compute_balance_thresholds(baseline: Any = None) -> Dict[str, float]:
    return {"stability_alert_threshold": BALANCE_STABILITY_ALERT}


def select_latest_sessions(sessions: Sequence[CalibrationSession]) -> Dict[CalibrationType, CalibrationSession]:
    """
    Most recent session of each required type.

    Raises CalibrationError, before anything is analyzed, when a type is missing.
    Duplicates of a type are resolved by created_at, never merged.
    """
    missing = missing_calibration_types(sessions)
    if missing:
        raise CalibrationError(missing)
    latest: Dict[CalibrationType, CalibrationSession] = {}
    for session in sessions:
        current = latest.get(session.calibration_type)
        if current is None or session.created_at >= current.created_at:
            latest[session.calibration_type] = session
    return latest


def _validated(data: Mapping[str, Any], context: str) -> UserProfile:
    result = validate_user_profile(data)
    if not result.ok:
        log.warning("%s: %d violation(s)", context, len(result.violations))
        raise ProfileValidationError(result.violations, context)
    return result.profile


def create_user_profile(
    user_id: Union[str, uuid.UUID],
    sessions: Sequence[CalibrationSession],
    height_cm: float,
    now: Optional[datetime] = None,
) -> UserProfile:
    """
    Build a complete profile from T-pose, breathing and movement calibration sessions.

    The whole profile is validated once assembled; an invalid result raises
    ProfileValidationError and nothing is returned.
    """
    latest = select_latest_sessions(sessions)

    t_pose = analyze_t_pose_session(latest[CalibrationType.T_POSE].timeline, height_cm)
    breathing = analyze_breathing_session(latest[CalibrationType.BREATHING].timeline)
    movement = analyze_movement_session(latest[CalibrationType.MOVEMENT].timeline)

    posture_baseline = None
    if t_pose.typical_forward_head_cm is not None and t_pose.typical_shoulder_imbalance_deg is not None:
        posture_baseline = {
            "typical_forward_head_cm": t_pose.typical_forward_head_cm,
            "typical_shoulder_imbalance_deg": t_pose.typical_shoulder_imbalance_deg,
        }

    profile = {
        "user_id": user_id,
        "height_cm": height_cm,
        "baseline_pose": {
            "landmarks": [
                {"id": lm.id, "x": lm.x, "y": lm.y, "z": lm.z, "confidence": lm.confidence}
                for lm in t_pose.baseline_pose.landmarks
            ],
            "joint_distances": t_pose.joint_distances,
        },
        "learned_thresholds": {
            "breathing": compute_breathing_thresholds(breathing),
            "posture": compute_posture_thresholds(height_cm, posture_baseline),
            "balance": compute_balance_thresholds(),
        },
        "last_calibration_date": now or datetime.now(timezone.utc),
        "calibration_count": len(sessions),
        "breathing_baseline": {
            "typical_rate_bpm": breathing.typical_rate_bpm,
            "typical_depth": breathing.typical_depth,
            "typical_rhythm_regularity": breathing.typical_rhythm_regularity,
        },
        "posture_baseline": posture_baseline,
        "rom_ranges": movement.rom_ranges,
    }
    created = _validated(profile, "profile validation failed")
    log.info("created profile %s from %d calibration sessions", created.user_id, len(sessions))
    return created


def update_user_profile(
    existing: UserProfile,
    new_sessions: Sequence[CalibrationSession],
    height_cm: float,
    now: Optional[datetime] = None,
) -> UserProfile:
    """
    Rebuild baselines and thresholds from new sessions and merge them over `existing`.

    Optional records the new sessions did not produce are kept from the
    existing profile, and the learned thresholds are recomputed from the
    merged baselines. The calibration count grows by len(new_sessions).
    """
    stamp = now or datetime.now(timezone.utc)
    rebuilt = create_user_profile(existing.user_id, new_sessions, height_cm, stamp)

    merged = existing.model_dump()
    merged.update(rebuilt.model_dump(exclude_none=True))
    # thresholds must follow the baselines actually stored after the merge
    thresholds = merged["learned_thresholds"]
    if merged.get("breathing_baseline") is not None:
        thresholds["breathing"] = compute_breathing_thresholds(merged["breathing_baseline"])
    thresholds["posture"] = compute_posture_thresholds(height_cm, merged.get("posture_baseline"))
    merged["calibration_count"] = existing.calibration_count + len(new_sessions)
    merged["last_calibration_date"] = stamp
    updated = _validated(merged, "updated profile validation failed")
    log.info("updated profile %s (calibration #%d)", updated.user_id, updated.calibration_count)
    return updated
