from __future__ import annotations

from dataclasses import dataclass, field
from math import sqrt
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pose.geometry import ORIGIN, Point3, is_visible, joint_angles_from_points, landmark_at
from pose.landmarks import Frame, LandmarkId, Timeline
from .logger import get_logger
from .utils import VISIBILITY_CUTOFF


log = get_logger("features")

L = LandmarkId

# Landmarks averaged over a timeline before geometric analysis
TRACKED_LANDMARKS: Tuple[LandmarkId, ...] = (
    L.NOSE,
    L.LEFT_EYE, L.RIGHT_EYE,
    L.LEFT_EAR, L.RIGHT_EAR,
    L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
    L.LEFT_ELBOW, L.RIGHT_ELBOW,
    L.LEFT_WRIST, L.RIGHT_WRIST,
    L.LEFT_HIP, L.RIGHT_HIP,
    L.LEFT_KNEE, L.RIGHT_KNEE,
    L.LEFT_ANKLE, L.RIGHT_ANKLE,
    L.LEFT_HEEL, L.RIGHT_HEEL,
    L.LEFT_FOOT_INDEX, L.RIGHT_FOOT_INDEX,
)

TORSO_LANDMARKS: Tuple[LandmarkId, ...] = (L.LEFT_SHOULDER, L.RIGHT_SHOULDER, L.LEFT_HIP, L.RIGHT_HIP)

VELOCITY_LANDMARKS: Tuple[LandmarkId, ...] = (
    L.NOSE, L.LEFT_SHOULDER, L.RIGHT_SHOULDER, L.LEFT_HIP, L.RIGHT_HIP, L.LEFT_KNEE, L.RIGHT_KNEE,
)

# Anthropometric segment weights (fraction of body mass)
HEAD_WEIGHT = 0.08
TORSO_WEIGHT = 0.50
ARM_WEIGHT = 0.05
LEG_WEIGHT = 0.16


@dataclass(frozen=True)
class AveragedLandmark:
    x: float
    y: float
    z: float
    confidence: float


@dataclass(frozen=True)
class Velocity:
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0


ZERO_VELOCITY = Velocity()


@dataclass(frozen=True)
class HeadShoulderAlignment:
    nose: AveragedLandmark
    shoulder_midpoint: Point3
    forward_head_distance: float
    shoulder_height_diff: float


@dataclass(frozen=True)
class FeatureBundle:
    averaged_landmarks: Dict[LandmarkId, AveragedLandmark]
    angles: Dict[str, float]
    velocities: Dict[LandmarkId, List[Velocity]]
    torso_motion: List[float]
    center_of_mass: Optional[Point3]
    support_polygon: List[AveragedLandmark]
    head_shoulder_alignment: Optional[HeadShoulderAlignment]
    frame_count: int


@dataclass(frozen=True)
class FeatureValidation:
    valid: bool
    warnings: List[str] = field(default_factory=list)


def averaged_landmarks(
    timeline: Timeline,
    landmark_ids: Iterable[LandmarkId] = TRACKED_LANDMARKS,
    min_confidence: float = VISIBILITY_CUTOFF,
) -> Dict[LandmarkId, AveragedLandmark]:
    """
    Average (x, y, z, confidence) of each landmark over the frames where it is visible.

    Landmarks with no qualifying sample are left out of the result.
    """
    out: Dict[LandmarkId, AveragedLandmark] = {}
    for lm_id in landmark_ids:
        sx = sy = sz = sc = 0.0
        n = 0
        for frame in timeline:
            lm = landmark_at(frame.pose, lm_id)
            if not is_visible(lm, min_confidence):
                continue
            sx += lm.x
            sy += lm.y
            sz += lm.z
            sc += lm.confidence
            n += 1
        if n > 0:
            out[lm_id] = AveragedLandmark(x=sx / n, y=sy / n, z=sz / n, confidence=sc / n)
    return out


def centroid(points: Sequence) -> Point3:
    if not points:
        return ORIGIN
    n = len(points)
    return Point3(
        x=sum(float(p.x) for p in points) / n,
        y=sum(float(p.y) for p in points) / n,
        z=sum(float(getattr(p, "z", 0.0)) for p in points) / n,
    )


def _torso_centroid(frame: Frame, min_confidence: float) -> Optional[Point3]:
    visible = []
    for lm_id in TORSO_LANDMARKS:
        lm = landmark_at(frame.pose, lm_id)
        if is_visible(lm, min_confidence):
            visible.append(lm)
    if not visible:
        return None
    return centroid(visible)


def torso_motion_signal(timeline: Timeline, min_confidence: float = VISIBILITY_CUTOFF) -> List[float]:
    """
    Frame-to-frame displacement of the torso centroid (shoulders + hips).

    One value per frame. The first frame has no predecessor and is 0; a frame
    pair where either side has no visible torso landmark also yields 0.
    """
    if not timeline:
        return []
    centroids = [_torso_centroid(frame, min_confidence) for frame in timeline]
    signal = [0.0]
    for prev, cur in zip(centroids, centroids[1:]):
        if prev is None or cur is None:
            signal.append(0.0)
            continue
        dx = cur.x - prev.x
        dy = cur.y - prev.y
        dz = cur.z - prev.z
        signal.append(sqrt(dx * dx + dy * dy + dz * dz))
    return signal


def velocities(
    timeline: Timeline, landmark_ids: Iterable[LandmarkId] = VELOCITY_LANDMARKS
) -> Dict[LandmarkId, List[Velocity]]:
    """Per-landmark frame-to-frame deltas; zero for the first frame and across gaps."""
    out: Dict[LandmarkId, List[Velocity]] = {}
    for lm_id in landmark_ids:
        positions = [landmark_at(frame.pose, lm_id) for frame in timeline]
        series: List[Velocity] = []
        if positions:
            series.append(ZERO_VELOCITY)
        for p1, p2 in zip(positions, positions[1:]):
            if p1 is None or p2 is None:
                series.append(ZERO_VELOCITY)
            else:
                series.append(Velocity(vx=p2.x - p1.x, vy=p2.y - p1.y, vz=p2.z - p1.z))
        out[lm_id] = series
    return out


def center_of_mass(landmarks: Mapping[LandmarkId, AveragedLandmark]) -> Optional[Point3]:
    """
    Weighted center of mass from the body segments that are available.

    Segment positions: head = nose, torso = centroid of shoulders and hips
    (all four required), arms = shoulders, legs = hip/knee midpoints.
    Weights are renormalized over the segments present.
    """
    nose = landmarks.get(L.NOSE)
    ls, rs = landmarks.get(L.LEFT_SHOULDER), landmarks.get(L.RIGHT_SHOULDER)
    lh, rh = landmarks.get(L.LEFT_HIP), landmarks.get(L.RIGHT_HIP)
    lk, rk = landmarks.get(L.LEFT_KNEE), landmarks.get(L.RIGHT_KNEE)

    segments: List[Tuple[object, float]] = []
    if nose is not None:
        segments.append((nose, HEAD_WEIGHT))
    if ls is not None and rs is not None and lh is not None and rh is not None:
        segments.append((centroid([ls, rs, lh, rh]), TORSO_WEIGHT))
    if ls is not None:
        segments.append((ls, ARM_WEIGHT))
    if rs is not None:
        segments.append((rs, ARM_WEIGHT))
    if lh is not None and lk is not None:
        segments.append((centroid([lh, lk]), LEG_WEIGHT))
    if rh is not None and rk is not None:
        segments.append((centroid([rh, rk]), LEG_WEIGHT))

    if not segments:
        return None
    total = sum(w for _, w in segments)
    return Point3(
        x=sum(p.x * w for p, w in segments) / total,
        y=sum(p.y * w for p, w in segments) / total,
        z=sum(p.z * w for p, w in segments) / total,
    )


def support_polygon(landmarks: Mapping[LandmarkId, AveragedLandmark]) -> List[AveragedLandmark]:
    feet = (L.LEFT_HEEL, L.RIGHT_HEEL, L.LEFT_FOOT_INDEX, L.RIGHT_FOOT_INDEX)
    return [landmarks[f] for f in feet if f in landmarks]


def head_shoulder_alignment(landmarks: Mapping[LandmarkId, AveragedLandmark]) -> Optional[HeadShoulderAlignment]:
    nose = landmarks.get(L.NOSE)
    ls = landmarks.get(L.LEFT_SHOULDER)
    rs = landmarks.get(L.RIGHT_SHOULDER)
    if nose is None or ls is None or rs is None:
        return None
    mid = centroid([ls, rs])
    return HeadShoulderAlignment(
        nose=nose,
        shoulder_midpoint=mid,
        # depth-axis offset of the nose from the shoulder midpoint
        forward_head_distance=nose.z - mid.z,
        shoulder_height_diff=ls.y - rs.y,
    )


def extract_features(timeline: Timeline, min_confidence: float = VISIBILITY_CUTOFF) -> Optional[FeatureBundle]:
    """
    Compute every timeline feature once so all analyzers can share it.

    Landmark averaging is the expensive step; everything else derives from it
    or from a single pass over the frames. Returns None for an empty timeline.
    """
    if not timeline:
        return None
    averaged = averaged_landmarks(timeline, min_confidence=min_confidence)
    bundle = FeatureBundle(
        averaged_landmarks=averaged,
        angles=joint_angles_from_points(averaged),
        velocities=velocities(timeline),
        torso_motion=torso_motion_signal(timeline, min_confidence=min_confidence),
        center_of_mass=center_of_mass(averaged),
        support_polygon=support_polygon(averaged),
        head_shoulder_alignment=head_shoulder_alignment(averaged),
        frame_count=len(timeline),
    )
    log.debug("extracted features: %d frames, %d landmarks, %d angles",
              bundle.frame_count, len(averaged), len(bundle.angles))
    return bundle


def validate_features(bundle: FeatureBundle) -> FeatureValidation:
    warnings: List[str] = []
    if len(bundle.averaged_landmarks) < 5:
        warnings.append("Very few landmarks detected (< 5)")
    for name, deg in bundle.angles.items():
        if deg < 0.0 or deg > 180.0:
            warnings.append(f"Angle {name} is out of range: {deg}")
    com = bundle.center_of_mass
    if com is not None and (com.y < 0.0 or com.y > 1.0):
        warnings.append("Center of mass y coordinate out of bounds")
    return FeatureValidation(valid=not warnings, warnings=warnings)
