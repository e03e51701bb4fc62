"""Sliding-window feature extraction for motion and heart-rate samples.

Both extractors reduce the samples that fall in ``[t - window, t]`` to a
small fixed feature vector.  They are pure: no state, no I/O, and an empty
window always yields zero-valued features.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

import numpy as np

from smartwake.models import HeartRateSample, MotionSample

MOTION_WINDOW_SEC = 60.0
PEAK_THRESHOLD = 1.5  # g

HEART_RATE_WINDOW_SEC = 120.0
HEART_RATE_RECENT_SEC = 30.0


def _ages(timestamps: Sequence[datetime], at: datetime) -> np.ndarray:
    """Seconds between each timestamp and ``at`` (positive = in the past)."""
    return np.asarray([(at - ts).total_seconds() for ts in timestamps], dtype=np.float64)


# ---------------------------------------------------------------------------
# Motion
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MotionFeatures:
    """Aggregated acceleration-magnitude features for one window."""

    std: float
    peaks: int
    energy: float


ZERO_MOTION = MotionFeatures(std=0.0, peaks=0, energy=0.0)


@dataclass(frozen=True)
class MotionFeatureExtractor:
    """Population std, peak count and sum-of-squares energy of magnitude."""

    window_sec: float = MOTION_WINDOW_SEC
    peak_threshold: float = PEAK_THRESHOLD

    def extract(self, samples: Sequence[MotionSample], at: datetime) -> MotionFeatures:
        if len(samples) == 0:
            return ZERO_MOTION

        ages = _ages([s.timestamp for s in samples], at)
        mask = (ages >= 0.0) & (ages <= self.window_sec)
        if not np.any(mask):
            return ZERO_MOTION

        mags = np.asarray([s.magnitude for s in samples], dtype=np.float64)[mask]
        return MotionFeatures(
            std=float(np.std(mags, ddof=0)),
            peaks=int(np.sum(mags > self.peak_threshold)),
            energy=float(np.sum(mags ** 2)),
        )


# ---------------------------------------------------------------------------
# Heart rate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeartRateFeatures:
    """Aggregated heart-rate features for one window.

    ``slope`` is the mean of the most recent sub-window minus the mean of
    the older remainder of the window (bpm).
    """

    mean: float
    slope: float
    variance: float


ZERO_HEART_RATE = HeartRateFeatures(mean=0.0, slope=0.0, variance=0.0)


@dataclass(frozen=True)
class HeartRateFeatureExtractor:
    """Mean, population variance and recent-vs-older slope of bpm."""

    window_sec: float = HEART_RATE_WINDOW_SEC
    recent_sec: float = HEART_RATE_RECENT_SEC

    def extract(self, samples: Sequence[HeartRateSample], at: datetime) -> HeartRateFeatures:
        if len(samples) == 0:
            return ZERO_HEART_RATE

        ages = _ages([s.timestamp for s in samples], at)
        mask = (ages >= 0.0) & (ages <= self.window_sec)
        if not np.any(mask):
            return ZERO_HEART_RATE

        bpm = np.asarray([s.bpm for s in samples], dtype=np.float64)[mask]
        ages = ages[mask]

        recent = bpm[ages <= self.recent_sec]
        older = bpm[ages > self.recent_sec]
        slope = 0.0
        if len(recent) > 0 and len(older) > 0:
            slope = float(np.mean(recent) - np.mean(older))

        return HeartRateFeatures(
            mean=float(np.mean(bpm)),
            slope=slope,
            variance=float(np.var(bpm, ddof=0)),
        )
