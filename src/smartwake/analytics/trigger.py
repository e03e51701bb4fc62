"""Trigger policy: decide from recent scores whether to wake the user now.

Two independent predicates, forced checked first:

* forced -- ``now >= wake_time``.  Ignores scores and cooldown; this is the
  floor that guarantees the user is woken by the deadline.
* smart  -- outside the cooldown, at least ``majority_count`` of the last
  ``majority_window`` scores reach the sensitivity threshold.  The vote
  rejects single-sample spikes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from smartwake.models import (
    ZERO_COMPONENTS,
    ScoreUpdate,
    Sensitivity,
    TriggerEvent,
    TriggerReason,
)

SENSITIVITY_THRESHOLDS = {
    Sensitivity.CONSERVATIVE: 0.80,
    Sensitivity.BALANCED: 0.72,
    Sensitivity.SENSITIVE: 0.60,
}

COOLDOWN_SEC = 300.0
MAJORITY_COUNT = 2
MAJORITY_WINDOW = 3


def threshold_for(sensitivity: Sensitivity) -> float:
    """Smart-trigger score threshold for a sensitivity setting."""
    return SENSITIVITY_THRESHOLDS[Sensitivity(sensitivity)]


@dataclass(frozen=True)
class TriggerDecider:
    """Stateless smart/forced trigger policy."""

    threshold: float = SENSITIVITY_THRESHOLDS[Sensitivity.BALANCED]
    cooldown_sec: float = COOLDOWN_SEC
    majority_count: int = MAJORITY_COUNT
    majority_window: int = MAJORITY_WINDOW

    @classmethod
    def for_sensitivity(cls, sensitivity: Sensitivity, **kwargs) -> TriggerDecider:
        return cls(threshold=threshold_for(sensitivity), **kwargs)

    def should_trigger_forced(self, now: datetime, wake_time: datetime) -> bool:
        return now >= wake_time

    def should_trigger_smart(
        self,
        recent_scores: Sequence[ScoreUpdate],
        last_trigger_time: datetime | None,
        now: datetime,
    ) -> bool:
        if last_trigger_time is not None:
            elapsed = (now - last_trigger_time).total_seconds()
            if elapsed < self.cooldown_sec:
                return False

        window = list(recent_scores)[-self.majority_window:] if self.majority_window > 0 else []
        votes = sum(1 for update in window if update.score >= self.threshold)
        return votes >= self.majority_count

    def evaluate(
        self,
        recent_scores: Sequence[ScoreUpdate],
        last_trigger_time: datetime | None,
        now: datetime,
        wake_time: datetime,
    ) -> TriggerEvent | None:
        """Return the trigger event for this tick, or None."""
        if self.should_trigger_forced(now, wake_time):
            reason = TriggerReason.FORCED
        elif self.should_trigger_smart(recent_scores, last_trigger_time, now):
            reason = TriggerReason.SMART
        else:
            return None

        latest = recent_scores[-1] if len(recent_scores) > 0 else None
        return TriggerEvent(
            reason=reason,
            timestamp=now,
            score=latest.score if latest is not None else 0.0,
            components=latest.components if latest is not None else ZERO_COMPONENTS,
        )
