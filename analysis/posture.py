from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from math import atan2, degrees
from typing import TYPE_CHECKING, List, Mapping, Optional, Union

from pose.geometry import Point3, angle_between, midpoint
from pose.landmarks import LandmarkId, Timeline
from .features import AveragedLandmark, FeatureBundle, averaged_landmarks
from .insights import Insight, Severity
from .logger import get_logger
from .utils import DEFAULT_HEIGHT_CM, DEFAULT_POSTURE_LIMITS, PostureLimits

if TYPE_CHECKING:
    from calibration.schema import UserProfile


log = get_logger("posture")

L = LandmarkId

POSTURE_LANDMARKS = (
    L.NOSE,
    L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
    L.LEFT_HIP, L.RIGHT_HIP,
    L.LEFT_KNEE, L.RIGHT_KNEE,
    L.LEFT_ANKLE, L.RIGHT_ANKLE,
)

# cm per normalized unit when the nose-to-ankle span collapses
FALLBACK_CM_PER_UNIT = 0.2


class SpineAlignment(str, Enum):
    NEUTRAL = "neutral"
    KYPHOTIC = "kyphotic"
    LORDOTIC = "lordotic"


@dataclass(frozen=True)
class PostureAnalysisResult:
    head_forward_cm: Optional[float]
    shoulder_imbalance_deg: Optional[float]
    spine_alignment: Optional[SpineAlignment]
    overall_score: Optional[float]
    insights: List[Insight] = field(default_factory=list)
    method: str = "geometric-2d"
    source_frames: List[int] = field(default_factory=list)
    error: Optional[str] = None


Landmarks = Mapping[LandmarkId, AveragedLandmark]


def cm_per_unit(landmarks: Landmarks, height_cm: float = DEFAULT_HEIGHT_CM) -> float:
    """User height over the nose-to-ankle span; a missing ankle is taken at the bottom of the frame."""
    nose = landmarks.get(L.NOSE)
    if nose is None:
        return FALLBACK_CM_PER_UNIT
    left = landmarks.get(L.LEFT_ANKLE)
    right = landmarks.get(L.RIGHT_ANKLE)
    ankle_y = ((left.y if left else 1.0) + (right.y if right else 1.0)) / 2.0
    span = abs(nose.y - ankle_y)
    if span > 0.0:
        return height_cm / span
    return FALLBACK_CM_PER_UNIT


def measure_forward_head(landmarks: Landmarks, height_cm: float = DEFAULT_HEIGHT_CM) -> Optional[float]:
    """Horizontal nose offset from the shoulder midpoint, in cm."""
    nose = landmarks.get(L.NOSE)
    ls = landmarks.get(L.LEFT_SHOULDER)
    rs = landmarks.get(L.RIGHT_SHOULDER)
    if nose is None or ls is None or rs is None:
        return None
    mid = midpoint(ls, rs)
    return abs(nose.x - mid.x) * cm_per_unit(landmarks, height_cm)


def measure_shoulder_imbalance(landmarks: Landmarks) -> Optional[float]:
    """
    Tilt of the left->right shoulder line against horizontal, in degrees within [-90, 90].

    0 is level; positive means the right shoulder is higher in image terms.
    """
    ls = landmarks.get(L.LEFT_SHOULDER)
    rs = landmarks.get(L.RIGHT_SHOULDER)
    if ls is None or rs is None:
        return None
    angle = degrees(atan2(rs.y - ls.y, rs.x - ls.x))
    if angle > 90.0:
        return angle - 180.0
    if angle < -90.0:
        return angle + 180.0
    return angle


def assess_spine_alignment(landmarks: Landmarks, limits: PostureLimits = DEFAULT_POSTURE_LIMITS) -> Optional[SpineAlignment]:
    """Classify the bend between the shoulder->hip and hip->knee segments."""
    needed = (L.LEFT_SHOULDER, L.RIGHT_SHOULDER, L.LEFT_HIP, L.RIGHT_HIP, L.LEFT_KNEE, L.RIGHT_KNEE)
    if any(lm_id not in landmarks for lm_id in needed):
        return None
    shoulders = midpoint(landmarks[L.LEFT_SHOULDER], landmarks[L.RIGHT_SHOULDER])
    hips = midpoint(landmarks[L.LEFT_HIP], landmarks[L.RIGHT_HIP])
    knees = midpoint(landmarks[L.LEFT_KNEE], landmarks[L.RIGHT_KNEE])

    upper = Point3(hips.x - shoulders.x, hips.y - shoulders.y, hips.z - shoulders.z)
    lower = Point3(knees.x - hips.x, knees.y - hips.y, knees.z - hips.z)
    bend = angle_between(upper, lower)

    if bend < limits.spine_bend_deg:
        return SpineAlignment.NEUTRAL
    if upper.x > limits.forward_lean:
        return SpineAlignment.KYPHOTIC
    return SpineAlignment.LORDOTIC


def compute_overall_score(
    head_forward_cm: Optional[float],
    shoulder_imbalance_deg: Optional[float],
    spine: Optional[SpineAlignment],
) -> float:
    """
    Weighted posture score in [0, 1]: 40% head, 30% shoulders, 30% spine.

    Head scores 1 at 0 cm down to 0 at 10 cm; shoulders 1 at 0 deg down to 0 at
    15 deg; spine 1.0 neutral, 0.7 kyphotic/lordotic, 0.5 unknown. A metric that
    could not be measured scores 0.5.
    """
    if head_forward_cm is None:
        head_score = 0.5
    else:
        head_score = max(0.0, min(1.0, 1.0 - head_forward_cm / 10.0))
    if shoulder_imbalance_deg is None:
        shoulder_score = 0.5
    else:
        shoulder_score = max(0.0, min(1.0, 1.0 - abs(shoulder_imbalance_deg) / 15.0))
    if spine is SpineAlignment.NEUTRAL:
        spine_score = 1.0
    elif spine in (SpineAlignment.KYPHOTIC, SpineAlignment.LORDOTIC):
        spine_score = 0.7
    else:
        spine_score = 0.5
    return 0.4 * head_score + 0.3 * shoulder_score + 0.3 * spine_score


_SPINE_TEXT = {
    SpineAlignment.KYPHOTIC: (
        "Your upper back shows excessive rounding (hunched posture).",
        "Practice chest opening exercises: doorway stretches, wall angels, and thoracic extensions. "
        "Strengthen mid-back muscles.",
    ),
    SpineAlignment.LORDOTIC: (
        "Your lower back shows excessive curvature (swayback).",
        "Strengthen your core: planks, dead bugs, and pelvic tilts. Stretch hip flexors and hamstrings.",
    ),
}


def generate_insights(
    head_forward_cm: Optional[float],
    shoulder_imbalance_deg: Optional[float],
    spine: Optional[SpineAlignment],
    overall_score: float,
    limits: PostureLimits = DEFAULT_POSTURE_LIMITS,
) -> List[Insight]:
    insights: List[Insight] = []

    if head_forward_cm is not None and head_forward_cm > limits.forward_head_alert_cm:
        insights.append(Insight(
            title="Forward head posture detected",
            description=(
                f"Your head is {head_forward_cm:.1f} cm forward of your shoulders. "
                "This can lead to neck strain and headaches."
            ),
            severity=Severity.HIGH if head_forward_cm > limits.forward_head_high_cm else Severity.MEDIUM,
            recommendation=(
                "Practice chin tucks: gently pull your chin back toward your neck, keeping eyes level. "
                "Hold for 5 seconds, repeat 10 times, 3 times daily."
            ),
        ))

    if shoulder_imbalance_deg is not None and abs(shoulder_imbalance_deg) > limits.shoulder_imbalance_alert_deg:
        higher, lower = ("right", "left") if shoulder_imbalance_deg > 0 else ("left", "right")
        insights.append(Insight(
            title="Shoulder imbalance detected",
            description=(
                f"Your {higher} shoulder is {abs(shoulder_imbalance_deg):.1f}° higher than your {lower} shoulder."
            ),
            severity=Severity.MEDIUM,
            recommendation=(
                f"Stretch your {higher} side regularly: side bend away from the higher shoulder, "
                f"holding 20-30 seconds. Strengthen the {lower} side with targeted exercises."
            ),
        ))

    if spine in _SPINE_TEXT:
        description, recommendation = _SPINE_TEXT[spine]
        insights.append(Insight(
            title=f"{spine.value.capitalize()} posture detected",
            description=description,
            severity=Severity.MEDIUM,
            recommendation=recommendation,
        ))

    score_pct = round(overall_score * 100)
    if overall_score < 0.6:
        insights.append(Insight(
            title="Posture needs significant improvement",
            description=f"Overall posture score: {score_pct}/100. Multiple postural issues detected.",
            severity=Severity.HIGH,
            recommendation=(
                "Consider consulting a physical therapist or posture specialist for a comprehensive assessment."
            ),
        ))
    elif overall_score < 0.8:
        insights.append(Insight(
            title="Room for posture improvement",
            description=f"Overall posture score: {score_pct}/100. Some postural habits to address.",
            severity=Severity.LOW,
            recommendation="Set reminders to check your posture throughout the day.",
        ))
    else:
        insights.append(Insight(
            title="Good posture!",
            description=f"Overall posture score: {score_pct}/100. Your posture is well-aligned.",
            severity=Severity.LOW,
            recommendation="Maintain your current awareness. Continue regular movement and stretching.",
        ))
    return insights


def _limits_for(profile: Optional["UserProfile"], limits: PostureLimits) -> PostureLimits:
    if profile is None:
        return limits
    thresholds = profile.learned_thresholds.posture
    return PostureLimits(
        forward_head_alert_cm=thresholds.forward_head_alert_cm,
        forward_head_high_cm=max(limits.forward_head_high_cm, thresholds.forward_head_alert_cm),
        shoulder_imbalance_alert_deg=thresholds.shoulder_imbalance_alert_deg,
        spine_bend_deg=limits.spine_bend_deg,
        forward_lean=limits.forward_lean,
    )


def analyze(
    source: Union[Timeline, FeatureBundle],
    profile: Optional["UserProfile"] = None,
    height_cm: Optional[float] = None,
    limits: PostureLimits = DEFAULT_POSTURE_LIMITS,
) -> PostureAnalysisResult:
    """
    Posture analysis of one session from a timeline or a precomputed FeatureBundle.

    Height comes from the profile when given, then from height_cm, then the
    170 cm default. Profile posture thresholds replace the alert limits.
    """
    if isinstance(source, FeatureBundle):
        landmarks: Landmarks = source.averaged_landmarks
        frames: List[int] = list(range(source.frame_count))
    else:
        landmarks = averaged_landmarks(source, POSTURE_LANDMARKS)
        frames = [frame.index for frame in source]

    if profile is not None:
        height = profile.height_cm
    elif height_cm is not None:
        height = height_cm
    else:
        height = DEFAULT_HEIGHT_CM
    active = _limits_for(profile, limits)

    fhp = measure_forward_head(landmarks, height)
    imbalance = measure_shoulder_imbalance(landmarks)
    if fhp is None or imbalance is None:
        log.warning("posture skipped: nose or shoulders not visible in %d frames", len(frames))
        return PostureAnalysisResult(
            head_forward_cm=None,
            shoulder_imbalance_deg=None,
            spine_alignment=None,
            overall_score=None,
            source_frames=frames,
            error="nose and both shoulders must be visible",
        )

    spine = assess_spine_alignment(landmarks, active)
    score = compute_overall_score(fhp, imbalance, spine)
    log.debug("posture: head %.2f cm, shoulders %.2f deg, spine %s, score %.2f",
              fhp, imbalance, spine.value if spine else None, score)
    return PostureAnalysisResult(
        head_forward_cm=fhp,
        shoulder_imbalance_deg=imbalance,
        spine_alignment=spine,
        overall_score=score,
        insights=generate_insights(fhp, imbalance, spine, score, active),
        source_frames=frames,
    )
