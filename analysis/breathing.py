from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import numpy as np
from scipy.signal import find_peaks

from pose.landmarks import Timeline
from pose.smoothing import moving_average
from .features import torso_motion_signal
from .fourier import fft_transform, find_peak_in_range
from .insights import Insight, Severity, severity_for_score
from .logger import get_logger
from .utils import (
    BASELINE_HIGH_BAND_PCT,
    BASELINE_NORMAL_BAND_PCT,
    DEFAULT_BREATHING_CONFIG,
    DEFAULT_FATIGUE_FRACTION,
    FATIGUE_MERGE_GAP,
    FATIGUE_MIN_LENGTH,
    INSIGHT_MIN_CONFIDENCE,
    SAMPLING_RATE_HZ,
    BreathingConfig,
)

if TYPE_CHECKING:
    from calibration.schema import UserProfile


log = get_logger("breathing")


@dataclass(frozen=True)
class BreathingRate:
    rate_bpm: Optional[float]
    frequency_hz: float = 0.0
    confidence: float = 0.0
    depth_score: float = 0.0
    method: str = "fft-peak-detection"
    error: Optional[str] = None


@dataclass(frozen=True)
class FatigueWindow:
    start_ms: int
    end_ms: int
    severity: float


@dataclass(frozen=True)
class BreathingAnalysisResult:
    rate_bpm: Optional[float]
    frequency_hz: float
    confidence: float
    depth_score: float
    fatigue_windows: List[FatigueWindow] = field(default_factory=list)
    baseline_rate: Optional[float] = None
    delta_from_baseline: Optional[float] = None
    pct_change: Optional[float] = None
    insights: List[Insight] = field(default_factory=list)
    sample_count: int = 0
    method: str = "fft-peak-detection"
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Rate and depth
# ---------------------------------------------------------------------------

def detect_breathing_rate(signal: Sequence[float], config: BreathingConfig = DEFAULT_BREATHING_CONFIG) -> BreathingRate:
    """
    Dominant breathing frequency of a torso motion signal.

    - Needs at least config.min_samples samples (~2 s at 15 fps); otherwise
      returns rate_bpm=None, confidence=0 and an error message
    - Peak is searched in [freq_min_hz, freq_max_hz] (6-30 breaths/min)
    - depth_score = RMS(signal) / depth_normalizer, clamped to [0, 1]
    """
    n = len(signal)
    if n < config.min_samples:
        log.warning("breathing rate skipped: %d samples (need %d)", n, config.min_samples)
        return BreathingRate(
            rate_bpm=None,
            confidence=0.0,
            error=f"insufficient samples: need at least {config.min_samples} frames, got {n}",
        )

    bins = fft_transform(signal, config.sampling_rate_hz)
    peak = find_peak_in_range(bins, config.freq_min_hz, config.freq_max_hz)
    values = np.asarray(signal, dtype=np.float64)
    rms = float(np.sqrt(np.mean(values * values)))
    depth = max(0.0, min(1.0, rms / config.depth_normalizer))
    log.debug("breathing peak %.3f Hz (confidence %.2f) over %d samples", peak.frequency, peak.confidence, n)
    return BreathingRate(
        rate_bpm=peak.frequency * 60.0,
        frequency_hz=peak.frequency,
        confidence=peak.confidence,
        depth_score=depth,
    )


def breath_intervals(
    signal: Sequence[float],
    fps: float = SAMPLING_RATE_HZ,
    max_freq_hz: float = DEFAULT_BREATHING_CONFIG.freq_max_hz,
) -> List[float]:
    """
    Seconds between successive breath peaks.

    Peaks reach the signal mean and sit at least one shortest breathing
    period (fps / max_freq_hz samples) apart; of two peaks closer than that
    the higher one wins.
    """
    values = np.asarray(signal, dtype=np.float64)
    if values.size < 3:
        return []
    min_sep = max(1, int(round(fps / max_freq_hz)))
    peaks, _ = find_peaks(values, height=float(values.mean()), distance=min_sep)
    return [float(d) / fps for d in np.diff(peaks)]


# ---------------------------------------------------------------------------
# Fatigue windows
# ---------------------------------------------------------------------------

def find_below_threshold(signal: Sequence[float], threshold: float) -> List[Tuple[int, int]]:
    """Maximal runs (start, end inclusive) of samples strictly below threshold."""
    regions: List[Tuple[int, int]] = []
    start: Optional[int] = None
    for i, v in enumerate(signal):
        if v < threshold:
            if start is None:
                start = i
        elif start is not None:
            regions.append((start, i - 1))
            start = None
    if start is not None:
        regions.append((start, len(signal) - 1))
    return regions


def merge_close_windows(regions: Sequence[Tuple[int, int]], max_gap: int = FATIGUE_MERGE_GAP) -> List[Tuple[int, int]]:
    """Merge runs whose start is within max_gap samples of the previous run's end."""
    merged: List[Tuple[int, int]] = []
    for start, end in regions:
        if merged and start - merged[-1][1] <= max_gap:
            merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def compute_severity(signal: Sequence[float], region: Tuple[int, int], threshold: float) -> float:
    """(threshold - mean of run) / threshold, clamped to [0, 1]; 0 for an invalid run."""
    start, end = region
    if end < start or start >= len(signal) or threshold <= 0.0:
        return 0.0
    window = signal[start:min(end + 1, len(signal))]
    mean_val = float(np.mean(window))
    return max(0.0, min(1.0, (threshold - mean_val) / threshold))


def detect_fatigue_windows(
    signal: Sequence[float],
    threshold_fraction: float = DEFAULT_FATIGUE_FRACTION,
    fps: float = SAMPLING_RATE_HZ,
    *,
    merge_gap: int = FATIGUE_MERGE_GAP,
    min_length: int = FATIGUE_MIN_LENGTH,
) -> List[FatigueWindow]:
    """
    Periods where breathing stops or becomes shallow.

    1. threshold = threshold_fraction * mean(signal)
    2. maximal runs below threshold
    3. runs separated by <= merge_gap samples are merged (brief spikes between holds)
    4. merged runs shorter than min_length samples are dropped
    5. severity per run, sample indices converted to milliseconds
    """
    if len(signal) == 0:
        return []
    threshold = threshold_fraction * float(np.mean(signal))
    regions = merge_close_windows(find_below_threshold(signal, threshold), merge_gap)
    ms_per_frame = 1000.0 / fps

    windows: List[FatigueWindow] = []
    for start, end in regions:
        if end - start + 1 < min_length:
            continue
        windows.append(
            FatigueWindow(
                start_ms=int(start * ms_per_frame),
                end_ms=int(end * ms_per_frame),
                severity=compute_severity(signal, (start, end), threshold),
            )
        )
    return windows


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

def format_timestamp(ms: int) -> str:
    """Milliseconds as MM:SS."""
    total = int(ms) // 1000
    return f"{total // 60:02d}:{total % 60:02d}"


def _rate_insight_vs_baseline(rate: float, baseline: float, delta: float, pct: float) -> Insight:
    abs_pct = abs(pct)
    if delta > 0 and abs_pct > BASELINE_NORMAL_BAND_PCT:
        return Insight(
            title="Breathing rate elevated",
            description=f"Your rate of {int(rate)} bpm is {int(abs_pct)}% above your baseline of {int(baseline)} bpm",
            severity=Severity.HIGH if abs_pct > BASELINE_HIGH_BAND_PCT else Severity.MEDIUM,
            recommendation="Focus on slower, controlled breathing to return to your baseline pace.",
        )
    if delta < 0 and abs_pct > BASELINE_NORMAL_BAND_PCT:
        return Insight(
            title="Breathing rate lowered",
            description=f"Your rate of {int(rate)} bpm is {int(abs_pct)}% below your baseline of {int(baseline)} bpm",
            severity=Severity.LOW,
            recommendation="Good recovery breathing. This is slower than your typical pace.",
        )
    return Insight(
        title="Breathing rate normal",
        description=f"Your rate of {int(rate)} bpm is within {int(abs_pct)}% of your baseline of {int(baseline)} bpm",
        severity=Severity.LOW,
        recommendation="Maintain this steady breathing pattern.",
    )


def _rate_insight_generic(rate: float) -> Optional[Insight]:
    if rate > 25:
        return Insight(
            title="Elevated breathing rate",
            description=f"Breathing rate of {int(rate)} bpm is higher than typical resting rate (12-20 bpm)",
            severity=Severity.MEDIUM,
            recommendation="Focus on slower, controlled breathing. Try 4-count inhale, 6-count exhale.",
        )
    if rate < 8:
        return Insight(
            title="Very slow breathing detected",
            description=f"Breathing rate of {int(rate)} bpm is unusually low",
            severity=Severity.LOW,
            recommendation="Ensure you're breathing naturally. Breath holds may be affecting the measurement.",
        )
    if 12 <= rate <= 20:
        return Insight(
            title="Normal breathing rate",
            description=f"Breathing rate of {int(rate)} bpm is within healthy resting range (12-20 bpm)",
            severity=Severity.LOW,
            recommendation="Maintain this steady breathing pattern during warm-up and recovery.",
        )
    return None


def _depth_insight(depth: float) -> Optional[Insight]:
    if depth < 0.5:
        return Insight(
            title="Shallow breathing detected",
            description=f"Breathing depth score of {int(depth * 100)}% indicates limited torso expansion",
            severity=Severity.MEDIUM,
            recommendation="Practice diaphragmatic breathing. Focus on belly expansion rather than chest.",
        )
    if depth > 0.7:
        return Insight(
            title="Strong breathing depth",
            description=f"Breathing depth score of {int(depth * 100)}% shows good torso expansion",
            severity=Severity.LOW,
            recommendation="Excellent. Maintain this breathing pattern during training.",
        )
    return None


def _fatigue_insight(window: FatigueWindow) -> Insight:
    duration_s = (window.end_ms - window.start_ms) / 1000.0
    if duration_s > 3:
        recommendation = "Extended breath hold detected. Monitor breathing during high-intensity movements."
    else:
        recommendation = "Brief breathing disruption. May indicate movement transition or exertion."
    return Insight(
        title=f"Breath disruption at {format_timestamp(window.start_ms)}",
        description=(
            f"Breathing stopped or became very shallow for {duration_s:.1f} seconds "
            f"(severity: {int(window.severity * 100)}%)"
        ),
        severity=severity_for_score(window.severity),
        recommendation=recommendation,
    )


def generate_insights(
    rate_bpm: Optional[float],
    depth_score: Optional[float],
    confidence: float,
    fatigue_windows: Sequence[FatigueWindow] = (),
    *,
    baseline_rate: Optional[float] = None,
    delta_from_baseline: Optional[float] = None,
    pct_change: Optional[float] = None,
) -> List[Insight]:
    """
    Rule table over a breathing analysis.

    Rate and depth rules need confidence > 0.5. With a baseline rate the rate
    is judged against it (+-15% normal band, 25% high band), otherwise against
    generic resting ranges. Every fatigue window yields one insight.
    """
    insights: List[Insight] = []
    confident = confidence > INSIGHT_MIN_CONFIDENCE

    if rate_bpm is not None and confident:
        if baseline_rate is not None and delta_from_baseline is not None and pct_change is not None:
            insights.append(_rate_insight_vs_baseline(rate_bpm, baseline_rate, delta_from_baseline, pct_change))
        else:
            generic = _rate_insight_generic(rate_bpm)
            if generic is not None:
                insights.append(generic)

    if depth_score is not None and confident:
        depth = _depth_insight(depth_score)
        if depth is not None:
            insights.append(depth)

    for window in fatigue_windows:
        insights.append(_fatigue_insight(window))
    return insights


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def breathing_signal(timeline: Timeline, config: BreathingConfig = DEFAULT_BREATHING_CONFIG) -> List[float]:
    """Torso motion signal smoothed with the configured moving average."""
    raw = torso_motion_signal(timeline, min_confidence=config.visibility_cutoff)
    return moving_average(raw, config.smoothing_window)


def analyze(
    timeline: Timeline,
    profile: Optional["UserProfile"] = None,
    config: Optional[BreathingConfig] = None,
    **overrides,
) -> BreathingAnalysisResult:
    """
    Breathing analysis of one session. Pure: same timeline and profile give the same result.

    With a profile, the fatigue threshold fraction comes from its learned
    breathing thresholds and the rate is compared to its breathing baseline.
    Keyword overrides replace individual BreathingConfig fields.
    """
    cfg = config or DEFAULT_BREATHING_CONFIG
    if overrides:
        cfg = replace(cfg, **overrides)

    signal = breathing_signal(timeline, cfg)
    rate = detect_breathing_rate(signal, cfg)

    fraction = cfg.fatigue_fraction
    baseline_rate: Optional[float] = None
    if profile is not None:
        fraction = profile.learned_thresholds.breathing.fatigue_threshold
        if profile.breathing_baseline is not None:
            baseline_rate = profile.breathing_baseline.typical_rate_bpm

    windows = detect_fatigue_windows(
        signal,
        fraction,
        cfg.sampling_rate_hz,
        merge_gap=cfg.merge_gap,
        min_length=cfg.min_window_length,
    )

    delta: Optional[float] = None
    pct: Optional[float] = None
    if baseline_rate is not None and rate.rate_bpm is not None:
        delta = rate.rate_bpm - baseline_rate
        pct = 100.0 * delta / baseline_rate

    insights = generate_insights(
        rate.rate_bpm,
        rate.depth_score if rate.rate_bpm is not None else None,
        rate.confidence,
        windows,
        baseline_rate=baseline_rate,
        delta_from_baseline=delta,
        pct_change=pct,
    )
    return BreathingAnalysisResult(
        rate_bpm=rate.rate_bpm,
        frequency_hz=rate.frequency_hz,
        confidence=rate.confidence,
        depth_score=rate.depth_score,
        fatigue_windows=windows,
        baseline_rate=baseline_rate,
        delta_from_baseline=delta,
        pct_change=pct,
        insights=insights,
        sample_count=len(signal),
        method=rate.method,
        error=rate.error,
    )
