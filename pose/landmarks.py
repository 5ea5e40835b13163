from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple


class LandmarkId(str, Enum):
    """MediaPipe BlazePose keypoints, in model output order (index 0..32)."""

    NOSE = "nose"
    LEFT_EYE_INNER = "left_eye_inner"
    LEFT_EYE = "left_eye"
    LEFT_EYE_OUTER = "left_eye_outer"
    RIGHT_EYE_INNER = "right_eye_inner"
    RIGHT_EYE = "right_eye"
    RIGHT_EYE_OUTER = "right_eye_outer"
    LEFT_EAR = "left_ear"
    RIGHT_EAR = "right_ear"
    MOUTH_LEFT = "mouth_left"
    MOUTH_RIGHT = "mouth_right"
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"
    LEFT_ELBOW = "left_elbow"
    RIGHT_ELBOW = "right_elbow"
    LEFT_WRIST = "left_wrist"
    RIGHT_WRIST = "right_wrist"
    LEFT_PINKY = "left_pinky"
    RIGHT_PINKY = "right_pinky"
    LEFT_INDEX = "left_index"
    RIGHT_INDEX = "right_index"
    LEFT_THUMB = "left_thumb"
    RIGHT_THUMB = "right_thumb"
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"
    LEFT_KNEE = "left_knee"
    RIGHT_KNEE = "right_knee"
    LEFT_ANKLE = "left_ankle"
    RIGHT_ANKLE = "right_ankle"
    LEFT_HEEL = "left_heel"
    RIGHT_HEEL = "right_heel"
    LEFT_FOOT_INDEX = "left_foot_index"
    RIGHT_FOOT_INDEX = "right_foot_index"

    @classmethod
    def parse(cls, value: Any) -> "LandmarkId":
        """Accept enum members, names, values, kebab-case names or model indices."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            members = list(cls)
            if not 0 <= value < len(members):
                raise ValueError(f"landmark index out of range: {value}")
            return members[value]
        key = str(value).strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown landmark id: {value!r}") from None


NUM_LANDMARKS = len(LandmarkId)


@dataclass(frozen=True)
class Landmark:
    id: LandmarkId
    x: float
    y: float
    z: float
    confidence: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Landmark":
        """
        Build a landmark from a plain mapping.

        Some producers call the 0-1 score "visibility" and others "confidence";
        both are read into `confidence`. At least one is required, and when
        both are present they must agree.
        """
        conf = data.get("confidence")
        vis = data.get("visibility")
        if conf is None and vis is None:
            raise ValueError(f"landmark {data.get('id')!r} has neither confidence nor visibility")
        elif conf is None:
            score = float(vis)
        elif vis is None:
            score = float(conf)
        else:
            if abs(float(conf) - float(vis)) > 1e-9:
                raise ValueError("landmark confidence and visibility disagree")
            score = float(conf)
        if not (0.0 <= score <= 1.0):
            raise ValueError(f"landmark confidence must be in [0, 1], got {score}")
        return cls(
            id=LandmarkId.parse(data["id"]),
            x=float(data["x"]),
            y=float(data["y"]),
            z=float(data.get("z", 0.0)),
            confidence=score,
        )


@dataclass(frozen=True)
class Pose:
    landmarks: Tuple[Landmark, ...]
    confidence: float = 1.0
    timestamp_ms: int = 0

    @classmethod
    def from_landmarks(
        cls, landmarks: Iterable[Landmark], confidence: float = 1.0, timestamp_ms: int = 0
    ) -> "Pose":
        return cls(landmarks=tuple(landmarks), confidence=float(confidence), timestamp_ms=int(timestamp_ms))


@dataclass(frozen=True)
class Frame:
    index: int
    timestamp_ms: int
    pose: Pose
    derived: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.derived, MappingProxyType):
            object.__setattr__(self, "derived", MappingProxyType(dict(self.derived)))


# Insertion order is temporal order; analyzers difference adjacent frames.
Timeline = Sequence[Frame]


class CalibrationType(str, Enum):
    T_POSE = "t-pose"
    BREATHING = "breathing"
    MOVEMENT = "movement"

    @classmethod
    def parse(cls, value: Any) -> "CalibrationType":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown calibration type: {value!r}") from None


REQUIRED_CALIBRATION_TYPES = (CalibrationType.T_POSE, CalibrationType.BREATHING, CalibrationType.MOVEMENT)


@dataclass(frozen=True)
class CalibrationSession:
    calibration_type: CalibrationType
    timeline: Tuple[Frame, ...]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0
    session_id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        object.__setattr__(self, "calibration_type", CalibrationType.parse(self.calibration_type))
        object.__setattr__(self, "timeline", tuple(self.timeline))
        if self.duration_ms < 0:
            raise ValueError("duration_ms must be non-negative")


def frame_from_dict(data: Mapping[str, Any], index: Optional[int] = None) -> Frame:
    """Build a frame from `{"index", "timestamp_ms", "pose": {"landmarks", "confidence"}}`."""
    pose_data = data.get("pose") or {}
    landmarks = [Landmark.from_dict(lm) for lm in pose_data.get("landmarks", [])]
    ts = int(data.get("timestamp_ms", 0))
    pose = Pose.from_landmarks(landmarks, pose_data.get("confidence", 1.0), pose_data.get("timestamp_ms", ts))
    idx = int(data["index"]) if "index" in data else int(index or 0)
    return Frame(index=idx, timestamp_ms=ts, pose=pose, derived=data.get("derived") or {})


def timeline_from_dicts(frames: Iterable[Mapping[str, Any]]) -> List[Frame]:
    return [frame_from_dict(f, index=i) for i, f in enumerate(frames)]


def landmarks_by_id(pose: Pose) -> Dict[LandmarkId, Landmark]:
    out: Dict[LandmarkId, Landmark] = {}
    for lm in pose.landmarks:
        out.setdefault(lm.id, lm)
    return out
