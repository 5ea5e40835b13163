from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from calibration.errors import CalibrationError, ProfileValidationError, ProfileViolation
from calibration.schema import (
    UserProfile,
    explain_user_profile,
    is_valid_user_profile,
    missing_calibration_types,
    new_user_profile,
    validate_calibration_sessions,
    validate_user_profile,
)
from pose.landmarks import CalibrationSession, CalibrationType

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _profile_data(**changes):
    data = new_user_profile(uuid.uuid4(), 170.0, now=NOW).model_dump()
    data.update(changes)
    return data


def test_new_profile_is_valid():
    profile = new_user_profile(uuid.uuid4(), 170.0, now=NOW)
    assert is_valid_user_profile(profile)
    assert profile.calibration_count == 0
    assert abs(profile.learned_thresholds.posture.forward_head_alert_cm - 5.1) < 1e-9
    assert profile.learned_thresholds.breathing.fatigue_threshold == 0.3
    assert profile.breathing_baseline is None
    assert explain_user_profile(profile) is None


def test_profile_accepts_string_user_id():
    uid = str(uuid.uuid4())
    result = validate_user_profile(_profile_data(user_id=uid))
    assert result.ok
    assert result.profile.user_id == uuid.UUID(uid)


def test_non_positive_height_is_a_violation():
    result = validate_user_profile(_profile_data(height_cm=-5.0))
    assert not result.ok
    assert result.profile is None
    assert [v.location for v in result.violations] == ["height_cm"]
    assert "height_cm" in explain_user_profile(_profile_data(height_cm=0.0))


def test_rom_range_must_be_ordered():
    result = validate_user_profile(_profile_data(rom_ranges={"left_elbow": (170.0, 30.0)}))
    assert not result.ok
    assert result.violations[0].location == "rom_ranges"
    assert "left_elbow" in result.violations[0].message
    assert is_valid_user_profile(_profile_data(rom_ranges={"left_elbow": (30.0, 170.0)}))


def test_nested_and_unknown_fields_reported_with_path():
    data = _profile_data(nickname="x")
    data["learned_thresholds"]["balance"]["stability_alert_threshold"] = 1.5
    locations = {v.location for v in validate_user_profile(data).violations}
    assert "nickname" in locations
    assert "learned_thresholds.balance.stability_alert_threshold" in locations


def test_negative_calibration_count_rejected():
    assert not is_valid_user_profile(_profile_data(calibration_count=-1))


def test_profile_is_frozen():
    profile = new_user_profile(uuid.uuid4(), 170.0, now=NOW)
    with pytest.raises(ValidationError):
        profile.height_cm = 180.0


def test_profile_json_round_trip():
    profile = new_user_profile(uuid.uuid4(), 182.0, now=NOW)
    assert UserProfile.model_validate_json(profile.model_dump_json()) == profile


def test_calibration_session_coverage():
    sessions = [
        CalibrationSession(CalibrationType.T_POSE, ()),
        CalibrationSession("breathing", ()),
    ]
    assert not validate_calibration_sessions(sessions)
    assert missing_calibration_types(sessions) == [CalibrationType.MOVEMENT]
    sessions.append(CalibrationSession("movement", ()))
    assert validate_calibration_sessions(sessions)
    assert missing_calibration_types([]) == list(CalibrationType)


def test_calibration_session_rejects_unknown_type():
    with pytest.raises(ValueError):
        CalibrationSession("yoga", ())


def test_error_messages():
    err = CalibrationError([CalibrationType.MOVEMENT, CalibrationType.BREATHING])
    assert err.missing == [CalibrationType.BREATHING, CalibrationType.MOVEMENT]
    assert "breathing, movement" in str(err)
    assert isinstance(err, ValueError)

    perr = ProfileValidationError([ProfileViolation("height_cm", "must be positive")])
    assert "height_cm: must be positive" in str(perr)
    assert str(ProfileViolation("", "bad")) == "bad"
