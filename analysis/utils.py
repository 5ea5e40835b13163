from __future__ import annotations

from dataclasses import dataclass


# Pose stream sampling rate (frames per second) assumed by the breathing analyzer
SAMPLING_RATE_HZ = 15.0

# Landmarks below this confidence are ignored when averaging / differencing
VISIBILITY_CUTOFF = 0.5

# Breathing band: 0.1 Hz = 6 breaths/min, 0.5 Hz = 30 breaths/min
BREATHING_FREQ_MIN_HZ = 0.1
BREATHING_FREQ_MAX_HZ = 0.5

# ~2 s at 15 fps
MIN_BREATHING_SAMPLES = 30

# RMS torso motion that counts as a full breath
DEPTH_NORMALIZER = 0.05

SMOOTHING_WINDOW = 5

# Fatigue windows: threshold as a fraction of mean amplitude
DEFAULT_FATIGUE_FRACTION = 0.3
FATIGUE_MERGE_GAP = 30  # samples, ~2 s at 15 fps
FATIGUE_MIN_LENGTH = 15  # samples, ~1 s at 15 fps

# Insight rules only fire above this detection confidence
INSIGHT_MIN_CONFIDENCE = 0.5

# Personal-baseline comparison bands (percent)
BASELINE_NORMAL_BAND_PCT = 15.0
BASELINE_HIGH_BAND_PCT = 25.0

# Trend slope per session below which a metric counts as stable
TREND_STABILITY_BAND = 0.05

# Session comparison: relative change (percent) treated as unchanged
COMPARISON_UNCHANGED_PCT = 5.0


@dataclass(frozen=True)
class BreathingConfig:
    """Tunable parameters of the breathing pipeline. Defaults match the module constants."""
    sampling_rate_hz: float = SAMPLING_RATE_HZ
    freq_min_hz: float = BREATHING_FREQ_MIN_HZ
    freq_max_hz: float = BREATHING_FREQ_MAX_HZ
    min_samples: int = MIN_BREATHING_SAMPLES
    depth_normalizer: float = DEPTH_NORMALIZER
    smoothing_window: int = SMOOTHING_WINDOW
    fatigue_fraction: float = DEFAULT_FATIGUE_FRACTION
    merge_gap: int = FATIGUE_MERGE_GAP
    min_window_length: int = FATIGUE_MIN_LENGTH
    visibility_cutoff: float = VISIBILITY_CUTOFF


DEFAULT_BREATHING_CONFIG = BreathingConfig()


@dataclass(frozen=True)
class PostureLimits:
    """Alert limits used when no personalized profile is supplied."""
    forward_head_alert_cm: float = 5.0
    forward_head_high_cm: float = 8.0
    shoulder_imbalance_alert_deg: float = 5.0
    spine_bend_deg: float = 15.0
    forward_lean: float = 0.05


DEFAULT_POSTURE_LIMITS = PostureLimits()

# Default user height when none is known (cm)
DEFAULT_HEIGHT_CM = 170.0
