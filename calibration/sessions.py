from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from analysis.breathing import breath_intervals, breathing_signal, detect_breathing_rate
from analysis.features import averaged_landmarks, centroid
from analysis.logger import get_logger
from analysis.posture import measure_forward_head, measure_shoulder_imbalance
from analysis.utils import DEFAULT_BREATHING_CONFIG, VISIBILITY_CUTOFF, BreathingConfig
from pose.geometry import JOINT_NAMES, all_joint_angles, distance, is_visible, landmark_at, vertical_span
from pose.landmarks import Landmark, LandmarkId, Pose, Timeline, landmarks_by_id


log = get_logger("calibration")

L = LandmarkId


@dataclass(frozen=True)
class TPoseCalibration:
    height_cm: float
    baseline_pose: Pose
    joint_distances: Dict[str, float]
    typical_forward_head_cm: Optional[float] = None
    typical_shoulder_imbalance_deg: Optional[float] = None


@dataclass(frozen=True)
class BreathingCalibration:
    typical_rate_bpm: Optional[float]
    typical_depth: float
    typical_rhythm_regularity: float
    confidence: float = 0.0


@dataclass(frozen=True)
class MovementCalibration:
    rom_ranges: Dict[str, Tuple[float, float]] = field(default_factory=dict)


def average_poses(poses: Sequence[Pose], min_confidence: float = VISIBILITY_CUTOFF) -> Pose:
    """
    Consensus pose: each landmark averaged over the poses where its confidence >= min_confidence.

    Landmarks never seen confidently are left out. The pose confidence is the
    mean over all input poses (0 for none).
    """
    indexed = [landmarks_by_id(p) for p in poses]
    averaged: List[Landmark] = []
    for lm_id in LandmarkId:
        samples = [
            lm for lm in (by_id.get(lm_id) for by_id in indexed)
            if is_visible(lm, min_confidence)
        ]
        if not samples:
            continue
        n = len(samples)
        averaged.append(Landmark(
            id=lm_id,
            x=sum(s.x for s in samples) / n,
            y=sum(s.y for s in samples) / n,
            z=sum(s.z for s in samples) / n,
            confidence=sum(s.confidence for s in samples) / n,
        ))
    confidence = sum(p.confidence for p in poses) / len(poses) if poses else 0.0
    return Pose.from_landmarks(averaged, confidence=confidence)


def scale_factor(pose: Pose, height_cm: float) -> float:
    """cm per normalized unit from the nose-to-ankle span; the height itself when the span is 0."""
    span = vertical_span(
        landmark_at(pose, L.NOSE),
        [landmark_at(pose, L.LEFT_ANKLE), landmark_at(pose, L.RIGHT_ANKLE)],
    )
    if span is None or span <= 0.0:
        return float(height_cm)
    return float(height_cm) / span


def rhythm_regularity(intervals: Sequence[float]) -> float:
    """
    Breath-to-breath consistency in [0, 1]: 1 - coefficient of variation.

    Population standard deviation over the intervals. Fewer than two intervals
    gives the neutral 0.5.
    """
    if len(intervals) < 2:
        return 0.5
    values = np.asarray(intervals, dtype=np.float64)
    mean = float(values.mean())
    cv = float(values.std()) / mean if mean > 0.0 else 0.0
    return max(0.0, min(1.0, 1.0 - cv))


def rom_ranges(timeline: Timeline) -> Dict[str, Tuple[float, float]]:
    """(min, max) of every joint angle seen in the timeline; joints never measured are omitted."""
    lows: Dict[str, float] = {}
    highs: Dict[str, float] = {}
    for frame in timeline:
        for name, deg in all_joint_angles(frame.pose).items():
            if name in lows:
                lows[name] = min(lows[name], deg)
                highs[name] = max(highs[name], deg)
            else:
                lows[name] = highs[name] = deg
    return {name: (lows[name], highs[name]) for name in JOINT_NAMES if name in lows}


def _mean_pair(pairs: Iterable[Tuple[Optional[Landmark], Optional[Landmark]]]) -> Optional[float]:
    lengths = [distance(a, b) for a, b in pairs if a is not None and b is not None]
    if not lengths:
        return None
    return sum(lengths) / len(lengths)


def joint_distances(pose: Pose, scale: float) -> Dict[str, float]:
    """Body segment lengths in cm; segments whose landmarks are missing are left out."""
    lm = {lm_id: landmark_at(pose, lm_id) for lm_id in (
        L.LEFT_SHOULDER, L.RIGHT_SHOULDER, L.LEFT_ELBOW, L.RIGHT_ELBOW,
        L.LEFT_WRIST, L.RIGHT_WRIST, L.LEFT_HIP, L.RIGHT_HIP,
    )}
    out: Dict[str, Optional[float]] = {
        "shoulder_width_cm": _mean_pair([(lm[L.LEFT_SHOULDER], lm[L.RIGHT_SHOULDER])]),
        "arm_span_cm": _mean_pair([(lm[L.LEFT_WRIST], lm[L.RIGHT_WRIST])]),
        "upper_arm_length_cm": _mean_pair([
            (lm[L.LEFT_SHOULDER], lm[L.LEFT_ELBOW]), (lm[L.RIGHT_SHOULDER], lm[L.RIGHT_ELBOW]),
        ]),
        "forearm_length_cm": _mean_pair([
            (lm[L.LEFT_ELBOW], lm[L.LEFT_WRIST]), (lm[L.RIGHT_ELBOW], lm[L.RIGHT_WRIST]),
        ]),
    }
    shoulders = [lm[L.LEFT_SHOULDER], lm[L.RIGHT_SHOULDER]]
    hips = [lm[L.LEFT_HIP], lm[L.RIGHT_HIP]]
    if all(p is not None for p in shoulders + hips):
        out["torso_length_cm"] = distance(centroid(shoulders), centroid(hips))
    return {name: d * scale for name, d in out.items() if d is not None}


def analyze_t_pose_session(timeline: Timeline, height_cm: float) -> TPoseCalibration:
    """Body proportions from a T-pose: baseline pose, segment lengths and resting posture."""
    baseline = average_poses([frame.pose for frame in timeline])
    scale = scale_factor(baseline, height_cm)
    distances = joint_distances(baseline, scale)

    averaged = averaged_landmarks(timeline)
    fhp = measure_forward_head(averaged, height_cm)
    imbalance = measure_shoulder_imbalance(averaged)
    log.debug("t-pose: %d landmarks, scale %.1f cm/unit, %d distances",
              len(baseline.landmarks), scale, len(distances))
    return TPoseCalibration(
        height_cm=float(height_cm),
        baseline_pose=baseline,
        joint_distances=distances,
        typical_forward_head_cm=fhp,
        typical_shoulder_imbalance_deg=imbalance,
    )


def analyze_breathing_session(timeline: Timeline, config: BreathingConfig = DEFAULT_BREATHING_CONFIG) -> BreathingCalibration:
    """Resting breathing baseline: rate, depth and rhythm regularity."""
    signal = breathing_signal(timeline, config)
    rate = detect_breathing_rate(signal, config)
    intervals = breath_intervals(signal, config.sampling_rate_hz, config.freq_max_hz)
    if rate.rate_bpm is None:
        log.warning("breathing calibration produced no rate: %s", rate.error)
    return BreathingCalibration(
        typical_rate_bpm=rate.rate_bpm,
        typical_depth=rate.depth_score,
        typical_rhythm_regularity=rhythm_regularity(intervals),
        confidence=rate.confidence,
    )


def analyze_movement_session(timeline: Timeline) -> MovementCalibration:
    return MovementCalibration(rom_ranges=rom_ranges(timeline))
