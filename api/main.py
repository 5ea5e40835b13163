from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from analysis import breathing as breathing_analyzer
from analysis import posture as posture_analyzer
from analysis.breathing import BreathingAnalysisResult, FatigueWindow
from analysis.comparison import compare_sessions
from analysis.features import extract_features, validate_features
from analysis.logger import get_logger
from analysis.posture import PostureAnalysisResult
from analysis.session import AnalyzedSession
from analysis.trends import compute_trend_analysis
from analysis.utils import SAMPLING_RATE_HZ, BreathingConfig
from api.schemas import (
    BreathingRequest,
    CalibrationSessionIn,
    CompareRequest,
    FrameIn,
    PostureRequest,
    ProfileCreateRequest,
    ProfileResponse,
    ProfileUpdateRequest,
    SessionSummary,
    TimelineRequest,
    TrendsRequest,
)
from calibration.errors import CalibrationError, ProfileValidationError
from calibration.personalization import create_user_profile, update_user_profile
from calibration.schema import UserProfile, validate_user_profile
from pose.landmarks import CalibrationSession, Frame, frame_from_dict


log = get_logger("api")

app = FastAPI(title="BodySignal API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


# Per-request frame cap; sessions are typically hundreds to low thousands of frames
BODYSIGNAL_MAX_FRAMES = _get_env_int("BODYSIGNAL_MAX_FRAMES", 20000)
# Sampling rate assumed when a breathing request does not state one
BODYSIGNAL_DEFAULT_FPS = _get_env_float("BODYSIGNAL_DEFAULT_FPS", SAMPLING_RATE_HZ)


@app.exception_handler(CalibrationError)
async def _calibration_error(request: Request, exc: CalibrationError) -> JSONResponse:
    log.warning("%s rejected: %s", request.url.path, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "missing": [t.value for t in exc.missing]},
    )


@app.exception_handler(ProfileValidationError)
async def _profile_error(request: Request, exc: ProfileValidationError) -> JSONResponse:
    log.warning("%s rejected: %s", request.url.path, exc)
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "violations": [{"location": v.location, "message": v.message} for v in exc.violations],
        },
    )


def _to_timeline(frames: Sequence[FrameIn]) -> List[Frame]:
    if len(frames) > BODYSIGNAL_MAX_FRAMES:
        raise HTTPException(status_code=413, detail=f"Too many frames; max {BODYSIGNAL_MAX_FRAMES}")
    try:
        return [frame_from_dict(f.model_dump(exclude_none=True), index=i) for i, f in enumerate(frames)]
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _to_profile(data: Optional[Dict[str, Any]]) -> Optional[UserProfile]:
    if data is None:
        return None
    result = validate_user_profile(data)
    if not result.ok:
        raise ProfileValidationError(result.violations, "supplied profile is invalid")
    return result.profile


def _to_calibration_sessions(sessions: Sequence[CalibrationSessionIn]) -> List[CalibrationSession]:
    out: List[CalibrationSession] = []
    for s in sessions:
        try:
            out.append(CalibrationSession(
                calibration_type=s.calibration_type,
                timeline=_to_timeline(s.frames),
                created_at=s.created_at or datetime.now(timezone.utc),
                duration_ms=s.duration_ms,
            ))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    return out


def _to_analyzed_session(summary: SessionSummary) -> AnalyzedSession:
    breathing = None
    if summary.breathing is not None:
        b = summary.breathing
        breathing = BreathingAnalysisResult(
            rate_bpm=b.rate_bpm,
            frequency_hz=(b.rate_bpm or 0.0) / 60.0,
            confidence=0.0,
            depth_score=b.depth_score if b.depth_score is not None else 0.0,
            fatigue_windows=[FatigueWindow(w.start_ms, w.end_ms, w.severity) for w in b.fatigue_windows],
        )
    posture = None
    if summary.posture is not None:
        p = summary.posture
        posture = PostureAnalysisResult(
            head_forward_cm=p.head_forward_cm,
            shoulder_imbalance_deg=p.shoulder_imbalance_deg,
            spine_alignment=None,
            overall_score=p.overall_score,
        )
    return AnalyzedSession(
        session_id=summary.session_id,
        created_at=summary.created_at,
        breathing=breathing,
        posture=posture,
    )


@app.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    return "ok"


# Analysis handlers are sync so FastAPI runs them in its threadpool
@app.post("/features")
def features(req: TimelineRequest):
    timeline = _to_timeline(req.frames)
    bundle = extract_features(timeline)
    if bundle is None:
        raise HTTPException(status_code=422, detail="Timeline has no frames")
    check = validate_features(bundle)
    log.info("features: %d frames, %d warnings", bundle.frame_count, len(check.warnings))
    return {
        "averaged_landmarks": jsonable_encoder(bundle.averaged_landmarks),
        "angles": bundle.angles,
        "torso_motion": bundle.torso_motion,
        "center_of_mass": jsonable_encoder(bundle.center_of_mass),
        "support_polygon": jsonable_encoder(bundle.support_polygon),
        "head_shoulder_alignment": jsonable_encoder(bundle.head_shoulder_alignment),
        "frame_count": bundle.frame_count,
        "valid": check.valid,
        "warnings": check.warnings,
    }


@app.post("/breathing")
def breathing(req: BreathingRequest):
    timeline = _to_timeline(req.frames)
    profile = _to_profile(req.profile)
    config = BreathingConfig(sampling_rate_hz=req.fps or BODYSIGNAL_DEFAULT_FPS)
    result = breathing_analyzer.analyze(timeline, profile=profile, config=config)
    log.info("breathing: %d frames, rate=%s bpm", len(timeline), result.rate_bpm)
    return jsonable_encoder(result)


@app.post("/posture")
def posture(req: PostureRequest):
    timeline = _to_timeline(req.frames)
    profile = _to_profile(req.profile)
    result = posture_analyzer.analyze(timeline, profile=profile, height_cm=req.height_cm)
    log.info("posture: %d frames, score=%s", len(timeline), result.overall_score)
    return jsonable_encoder(result)


@app.post("/profiles", response_model=ProfileResponse, status_code=201)
def create_profile(req: ProfileCreateRequest):
    sessions = _to_calibration_sessions(req.sessions)
    user_id = req.user_id or str(uuid.uuid4())
    try:
        uuid.UUID(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail="user_id must be a UUID") from exc
    profile = create_user_profile(user_id, sessions, req.height_cm)
    return ProfileResponse(profile=profile.model_dump(mode="json"), calibration_count=profile.calibration_count)


@app.post("/profiles/update", response_model=ProfileResponse)
def update_profile(req: ProfileUpdateRequest):
    existing = _to_profile(req.profile)
    sessions = _to_calibration_sessions(req.sessions)
    profile = update_user_profile(existing, sessions, req.height_cm)
    return ProfileResponse(profile=profile.model_dump(mode="json"), calibration_count=profile.calibration_count)


@app.post("/trends")
def trends(req: TrendsRequest):
    sessions = [_to_analyzed_session(s) for s in req.sessions]
    overview = compute_trend_analysis(sessions)
    if overview is None:
        raise HTTPException(status_code=422, detail="At least one session is required")
    log.info("trends: %d sessions, metrics=%s", overview.session_count, sorted(overview.trends))
    return jsonable_encoder(overview)


@app.post("/compare")
def compare(req: CompareRequest):
    report = compare_sessions(_to_analyzed_session(req.session_a), _to_analyzed_session(req.session_b))
    log.info("compare %s -> %s: %s", report.session_a_id, report.session_b_id, report.overall.value)
    return jsonable_encoder(report)
