"""Scoring engine for smart wake detection.

Modules:
    features -- Sliding-window motion and heart-rate feature extraction
    score    -- Weighted-normalization wakeability score
    trigger  -- Majority-vote / cooldown / deadline trigger policy
"""

from smartwake.analytics.features import (
    MotionFeatures,
    MotionFeatureExtractor,
    HeartRateFeatures,
    HeartRateFeatureExtractor,
)
from smartwake.analytics.score import (
    ScoreConfig,
    WakeabilityScoreCalculator,
    normalize,
)
from smartwake.analytics.trigger import (
    SENSITIVITY_THRESHOLDS,
    TriggerDecider,
    threshold_for,
)

__all__ = [
    # features
    "MotionFeatures",
    "MotionFeatureExtractor",
    "HeartRateFeatures",
    "HeartRateFeatureExtractor",
    # score
    "ScoreConfig",
    "WakeabilityScoreCalculator",
    "normalize",
    # trigger
    "SENSITIVITY_THRESHOLDS",
    "TriggerDecider",
    "threshold_for",
]
