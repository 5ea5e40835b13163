from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LandmarkIn(BaseModel):
    id: str
    x: float
    y: float
    z: float = 0.0
    # one of confidence / visibility is required; both must agree when given
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    visibility: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class PoseIn(BaseModel):
    landmarks: List[LandmarkIn] = Field(default_factory=list)
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class FrameIn(BaseModel):
    index: Optional[int] = Field(default=None, ge=0)
    timestamp_ms: int = Field(0, ge=0)
    pose: PoseIn


class TimelineRequest(BaseModel):
    frames: List[FrameIn]


class BreathingRequest(TimelineRequest):
    profile: Optional[Dict[str, Any]] = None
    fps: Optional[float] = Field(default=None, gt=0.0)


class PostureRequest(TimelineRequest):
    profile: Optional[Dict[str, Any]] = None
    height_cm: Optional[float] = Field(default=None, gt=0.0)


class CalibrationSessionIn(BaseModel):
    calibration_type: str = Field(description="t-pose | breathing | movement")
    frames: List[FrameIn]
    created_at: Optional[datetime] = None
    duration_ms: int = Field(0, ge=0)


class ProfileCreateRequest(BaseModel):
    user_id: Optional[str] = None
    height_cm: float = Field(gt=0.0)
    sessions: List[CalibrationSessionIn]


class ProfileUpdateRequest(BaseModel):
    profile: Dict[str, Any]
    height_cm: float = Field(gt=0.0)
    sessions: List[CalibrationSessionIn]


class FatigueWindowIn(BaseModel):
    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)
    severity: float = Field(ge=0.0, le=1.0)


class BreathingSummary(BaseModel):
    rate_bpm: Optional[float] = None
    depth_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    fatigue_windows: List[FatigueWindowIn] = Field(default_factory=list)


class PostureSummary(BaseModel):
    overall_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    head_forward_cm: Optional[float] = None
    shoulder_imbalance_deg: Optional[float] = None


class SessionSummary(BaseModel):
    session_id: str
    created_at: datetime
    breathing: Optional[BreathingSummary] = None
    posture: Optional[PostureSummary] = None


class TrendsRequest(BaseModel):
    sessions: List[SessionSummary]


class CompareRequest(BaseModel):
    session_a: SessionSummary
    session_b: SessionSummary


class ProfileResponse(BaseModel):
    profile: Dict[str, Any]
    calibration_count: int = Field(ge=0)
