"""
User profile schema.

A profile is created from calibration sessions and afterwards only replaced
as a whole. Every model is frozen; `validate_user_profile` is the single
entry point that turns untrusted data into a typed `UserProfile`.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pose.landmarks import REQUIRED_CALIBRATION_TYPES, CalibrationSession, CalibrationType, LandmarkId
from .errors import ProfileViolation


PositiveFloat = Annotated[float, Field(gt=0.0)]
UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BaselineLandmark(_Frozen):
    id: LandmarkId
    x: float
    y: float
    z: float = 0.0
    confidence: UnitFloat = 0.0


class BaselinePose(_Frozen):
    landmarks: List[BaselineLandmark] = Field(default_factory=list)
    # e.g. {"shoulder_width_cm": 42.5, "arm_span_cm": 172.0}
    joint_distances: Dict[str, PositiveFloat] = Field(default_factory=dict)


class BreathingBaseline(_Frozen):
    typical_rate_bpm: PositiveFloat
    typical_depth: UnitFloat
    typical_rhythm_regularity: UnitFloat


class PostureBaseline(_Frozen):
    typical_forward_head_cm: float
    typical_shoulder_imbalance_deg: float


class BreathingThresholds(_Frozen):
    fatigue_threshold: PositiveFloat
    rate_alert_threshold: PositiveFloat


class PostureThresholds(_Frozen):
    forward_head_alert_cm: PositiveFloat
    shoulder_imbalance_alert_deg: PositiveFloat


class BalanceThresholds(_Frozen):
    stability_alert_threshold: UnitFloat


class LearnedThresholds(_Frozen):
    breathing: BreathingThresholds
    posture: PostureThresholds
    balance: BalanceThresholds


class UserProfile(_Frozen):
    user_id: uuid.UUID
    height_cm: PositiveFloat
    baseline_pose: BaselinePose
    learned_thresholds: LearnedThresholds
    last_calibration_date: datetime
    calibration_count: int = Field(ge=0)
    breathing_baseline: Optional[BreathingBaseline] = None
    posture_baseline: Optional[PostureBaseline] = None
    # joint name -> (min_deg, max_deg)
    rom_ranges: Optional[Dict[str, Tuple[float, float]]] = None

    @field_validator("rom_ranges")
    @classmethod
    def _ordered_ranges(cls, v: Optional[Dict[str, Tuple[float, float]]]):
        if v is None:
            return v
        for joint, (lo, hi) in v.items():
            if lo > hi:
                raise ValueError(f"range of motion for {joint} has min {lo} > max {hi}")
        return v


@dataclass(frozen=True)
class ProfileValidation:
    """Either a typed profile or the list of violations, never both."""
    profile: Optional[UserProfile] = None
    violations: List[ProfileViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.profile is not None


def _violations(exc: ValidationError) -> List[ProfileViolation]:
    out: List[ProfileViolation] = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        out.append(ProfileViolation(location=location, message=err.get("msg", "invalid value")))
    return out


def validate_user_profile(data: Union[UserProfile, Mapping[str, Any]]) -> ProfileValidation:
    """Validate a profile (or plain data) against the schema without raising."""
    if isinstance(data, UserProfile):
        data = data.model_dump()
    try:
        return ProfileValidation(profile=UserProfile.model_validate(data))
    except ValidationError as exc:
        return ProfileValidation(violations=_violations(exc))


def is_valid_user_profile(data: Union[UserProfile, Mapping[str, Any]]) -> bool:
    return validate_user_profile(data).ok


def explain_user_profile(data: Union[UserProfile, Mapping[str, Any]]) -> Optional[str]:
    """Human-readable list of violations, or None for a valid profile."""
    result = validate_user_profile(data)
    if result.ok:
        return None
    return "; ".join(str(v) for v in result.violations)


def missing_calibration_types(sessions: Iterable[CalibrationSession]) -> List[CalibrationType]:
    present = {s.calibration_type for s in sessions}
    return [t for t in REQUIRED_CALIBRATION_TYPES if t not in present]


def validate_calibration_sessions(sessions: Iterable[CalibrationSession]) -> bool:
    """True when at least one session of every required calibration type is present."""
    return not missing_calibration_types(sessions)


def new_user_profile(user_id: Union[str, uuid.UUID], height_cm: float, now: Optional[datetime] = None) -> UserProfile:
    """Uncalibrated profile with generic thresholds."""
    return UserProfile(
        user_id=user_id,
        height_cm=height_cm,
        baseline_pose=BaselinePose(),
        learned_thresholds=LearnedThresholds(
            breathing=BreathingThresholds(fatigue_threshold=0.3, rate_alert_threshold=5.0),
            posture=PostureThresholds(forward_head_alert_cm=0.03 * height_cm, shoulder_imbalance_alert_deg=5.0),
            balance=BalanceThresholds(stability_alert_threshold=0.6),
        ),
        last_calibration_date=now or datetime.now(timezone.utc),
        calibration_count=0,
    )
