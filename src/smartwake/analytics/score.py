"""Wakeability scoring: fuse motion and heart-rate features into a 0-1 score.

Each raw feature is linearly normalized against a calibration range and
clamped to [0, 1].  Then::

    motion     = w_std * n(std) + w_peaks * n(peaks) + w_energy * n(energy)
    heart_rate = w_slope * n(slope) + w_variance * n(variance)
    score      = w_motion * motion + w_heart_rate * heart_rate
                 - stillness_penalty   (only when motion < stillness_threshold)

The final score is clamped to [0, 1].  When the heart-rate sensor is
unavailable the heart-rate term is dropped and the motion weight
renormalized to 1 (``heart_rate=None``).
"""

from __future__ import annotations

from dataclasses import dataclass

from smartwake.analytics.features import HeartRateFeatures, MotionFeatures
from smartwake.models import ScoreComponents, WakeabilityScore


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------

MOTION_STD_RANGE = (0.0, 2.0)
MOTION_PEAKS_RANGE = (0.0, 25.0)
MOTION_ENERGY_RANGE = (0.0, 6000.0)
HR_SLOPE_RANGE = (-10.0, 10.0)
HR_VARIANCE_RANGE = (0.0, 25.0)

W_STD = 0.6
W_PEAKS = 0.3
W_ENERGY = 0.1
W_SLOPE = 0.7
W_VARIANCE = 0.3

W_MOTION = 0.6
W_HEART_RATE = 0.4

STILLNESS_THRESHOLD = 0.1
STILLNESS_PENALTY = 0.1


@dataclass(frozen=True)
class ScoreConfig:
    """Every weight, range and threshold used by the calculator."""

    motion_std_range: tuple[float, float] = MOTION_STD_RANGE
    motion_peaks_range: tuple[float, float] = MOTION_PEAKS_RANGE
    motion_energy_range: tuple[float, float] = MOTION_ENERGY_RANGE
    hr_slope_range: tuple[float, float] = HR_SLOPE_RANGE
    hr_variance_range: tuple[float, float] = HR_VARIANCE_RANGE

    w_std: float = W_STD
    w_peaks: float = W_PEAKS
    w_energy: float = W_ENERGY
    w_slope: float = W_SLOPE
    w_variance: float = W_VARIANCE

    w_motion: float = W_MOTION
    w_heart_rate: float = W_HEART_RATE

    stillness_threshold: float = STILLNESS_THRESHOLD
    stillness_penalty: float = STILLNESS_PENALTY


def normalize(value: float, bounds: tuple[float, float]) -> float:
    """Linearly map ``value`` from ``bounds`` onto [0, 1], clamping outside."""
    lo, hi = bounds
    if hi <= lo:
        return 0.0
    clamped = max(lo, min(hi, value))
    return (clamped - lo) / (hi - lo)


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class WakeabilityScoreCalculator:
    """Map feature vectors to a :class:`WakeabilityScore`."""

    def __init__(self, config: ScoreConfig | None = None) -> None:
        self.config = config or ScoreConfig()

    def motion_score(self, motion: MotionFeatures) -> float:
        c = self.config
        raw = (
            c.w_std * normalize(motion.std, c.motion_std_range)
            + c.w_peaks * normalize(float(motion.peaks), c.motion_peaks_range)
            + c.w_energy * normalize(motion.energy, c.motion_energy_range)
        )
        return _clamp01(raw)

    def heart_rate_score(self, heart_rate: HeartRateFeatures) -> float:
        c = self.config
        raw = (
            c.w_slope * normalize(heart_rate.slope, c.hr_slope_range)
            + c.w_variance * normalize(heart_rate.variance, c.hr_variance_range)
        )
        return _clamp01(raw)

    def calculate(
        self,
        motion: MotionFeatures,
        heart_rate: HeartRateFeatures | None,
    ) -> WakeabilityScore:
        """Score one tick.  Pass ``heart_rate=None`` for motion-only scoring."""
        c = self.config
        motion_score = self.motion_score(motion)

        if heart_rate is None:
            hr_score = 0.0
            combined = motion_score
        else:
            hr_score = self.heart_rate_score(heart_rate)
            combined = c.w_motion * motion_score + c.w_heart_rate * hr_score

        if motion_score < c.stillness_threshold:
            combined -= c.stillness_penalty

        return WakeabilityScore(
            score=_clamp01(combined),
            components=ScoreComponents(
                motion_score=motion_score,
                heart_rate_score=hr_score,
            ),
        )
