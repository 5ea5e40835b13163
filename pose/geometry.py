from __future__ import annotations

from dataclasses import dataclass, field
from math import acos, degrees, isfinite, sqrt
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .landmarks import Landmark, LandmarkId, Pose


# Minimum vector length for a well-defined joint angle
MIN_VECTOR_NORM = 1e-6

L = LandmarkId

# joint name -> (A, B, C); angle is measured at B
JOINT_TRIPLES: Dict[str, Tuple[LandmarkId, LandmarkId, LandmarkId]] = {
    "left_elbow": (L.LEFT_SHOULDER, L.LEFT_ELBOW, L.LEFT_WRIST),
    "right_elbow": (L.RIGHT_SHOULDER, L.RIGHT_ELBOW, L.RIGHT_WRIST),
    "left_shoulder": (L.LEFT_HIP, L.LEFT_SHOULDER, L.LEFT_ELBOW),
    "right_shoulder": (L.RIGHT_HIP, L.RIGHT_SHOULDER, L.RIGHT_ELBOW),
    "left_hip": (L.LEFT_SHOULDER, L.LEFT_HIP, L.LEFT_KNEE),
    "right_hip": (L.RIGHT_SHOULDER, L.RIGHT_HIP, L.RIGHT_KNEE),
    "left_knee": (L.LEFT_HIP, L.LEFT_KNEE, L.LEFT_ANKLE),
    "right_knee": (L.RIGHT_HIP, L.RIGHT_KNEE, L.RIGHT_ANKLE),
}

JOINT_NAMES: Tuple[str, ...] = tuple(JOINT_TRIPLES)


@dataclass(frozen=True)
class Point3:
    x: float
    y: float
    z: float = 0.0


ORIGIN = Point3(0.0, 0.0, 0.0)


def landmark_at(pose: Optional[Pose], landmark_id: LandmarkId) -> Optional[Landmark]:
    if pose is None:
        return None
    for lm in pose.landmarks:
        if lm.id == landmark_id:
            return lm
    return None


def is_visible(landmark: Optional[Any], threshold: float = 0.5) -> bool:
    return landmark is not None and float(getattr(landmark, "confidence", 0.0)) >= threshold


def _coords2(p: Any) -> Optional[Tuple[float, float]]:
    x = getattr(p, "x", None)
    y = getattr(p, "y", None)
    if x is None or y is None:
        return None
    x, y = float(x), float(y)
    if not (isfinite(x) and isfinite(y)):
        return None
    return x, y


def _vec(a: Tuple[float, float], b: Tuple[float, float]) -> Tuple[float, float]:
    return (b[0] - a[0], b[1] - a[1])


def _dot(u: Tuple[float, float], v: Tuple[float, float]) -> float:
    return u[0] * v[0] + u[1] * v[1]


def _norm(u: Tuple[float, float]) -> float:
    return float(np.hypot(u[0], u[1]))


def joint_angle(a: Optional[Any], b: Optional[Any], c: Optional[Any]) -> Optional[float]:
    """
    Angle at B (degrees, [0, 180]) between rays B->A and B->C in the image plane.

    - Returns None if any point is None or has missing / non-finite x, y
    - Returns None if either ray is shorter than MIN_VECTOR_NORM
    """
    if a is None or b is None or c is None:
        return None
    pa, pb, pc = _coords2(a), _coords2(b), _coords2(c)
    if pa is None or pb is None or pc is None:
        return None

    ba = _vec(pb, pa)
    bc = _vec(pb, pc)
    n1 = _norm(ba)
    n2 = _norm(bc)
    if n1 <= MIN_VECTOR_NORM or n2 <= MIN_VECTOR_NORM:
        return None

    cos_theta = _dot(ba, bc) / (n1 * n2)
    # Clamp due to numerical errors
    cos_theta = max(-1.0, min(1.0, float(cos_theta)))
    return float(degrees(acos(cos_theta)))


def joint_angles_from_points(points: Mapping[LandmarkId, Any]) -> Dict[str, float]:
    """Eight major joint angles over any id -> point mapping; absent angles are omitted."""
    angles: Dict[str, float] = {}
    for name, (ia, ib, ic) in JOINT_TRIPLES.items():
        theta = joint_angle(points.get(ia), points.get(ib), points.get(ic))
        if theta is not None:
            angles[name] = theta
    return angles


def all_joint_angles(pose: Pose) -> Dict[str, float]:
    angles: Dict[str, float] = {}
    for name, (ia, ib, ic) in JOINT_TRIPLES.items():
        theta = joint_angle(landmark_at(pose, ia), landmark_at(pose, ib), landmark_at(pose, ic))
        if theta is not None:
            angles[name] = theta
    return angles


@dataclass(frozen=True)
class AngleValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)


def validate_angles(angles: Mapping[str, float]) -> AngleValidation:
    """Self-check for computed angles. Reports problems, never corrects them."""
    errors: List[str] = []
    for name, value in angles.items():
        v = float(value)
        if v != v:
            errors.append(f"{name} is NaN")
        elif not isfinite(v):
            errors.append(f"{name} is not finite")
        elif v < 0.0:
            errors.append(f"{name} is negative: {v}")
        elif v > 180.0:
            errors.append(f"{name} exceeds 180 degrees: {v}")
    return AngleValidation(valid=not errors, errors=errors)


def distance(a: Any, b: Any) -> float:
    dx = float(b.x) - float(a.x)
    dy = float(b.y) - float(a.y)
    dz = float(getattr(b, "z", 0.0)) - float(getattr(a, "z", 0.0))
    return sqrt(dx * dx + dy * dy + dz * dz)


def angle_between(u: Any, v: Any) -> float:
    """Angle in degrees between two 3D vectors; 0 when either is degenerate."""
    a = np.array([float(u.x), float(u.y), float(getattr(u, "z", 0.0))])
    b = np.array([float(v.x), float(v.y), float(getattr(v, "z", 0.0))])
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na <= MIN_VECTOR_NORM or nb <= MIN_VECTOR_NORM:
        return 0.0
    cos_theta = max(-1.0, min(1.0, float(np.dot(a, b)) / (na * nb)))
    return float(degrees(acos(cos_theta)))


def midpoint(a: Any, b: Any) -> Point3:
    return Point3(
        x=(float(a.x) + float(b.x)) / 2.0,
        y=(float(a.y) + float(b.y)) / 2.0,
        z=(float(getattr(a, "z", 0.0)) + float(getattr(b, "z", 0.0))) / 2.0,
    )


def vertical_span(top: Optional[Any], bottoms: Sequence[Optional[Any]], default_bottom_y: float = 1.0) -> Optional[float]:
    """
    Vertical distance from `top` to the mean y of the available `bottoms`.

    Returns None when `top` is missing. With no bottom point available the
    bottom edge of the normalized frame (`default_bottom_y`) is used.
    """
    if top is None:
        return None
    ys = [float(p.y) for p in bottoms if p is not None]
    bottom_y = sum(ys) / len(ys) if ys else default_bottom_y
    return abs(float(top.y) - bottom_y)
