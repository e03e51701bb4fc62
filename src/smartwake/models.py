"""Domain types shared by the companion and the controller.

Samples, scores, trigger events and session summaries are immutable values.
All timestamps are timezone-aware datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum

from smartwake.exceptions import InvalidScheduleError

# Time between arming and the start of the monitoring window.
ARM_LEAD = timedelta(minutes=1)


class Sensitivity(str, Enum):
    """How eagerly the smart trigger fires."""

    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    SENSITIVE = "sensitive"


class TriggerReason(str, Enum):
    """Why the alarm fired."""

    SMART = "smart"
    FORCED = "forced"


# ---------------------------------------------------------------------------
# Sensor samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MotionSample:
    """A single acceleration-magnitude reading (g)."""

    timestamp: datetime
    magnitude: float


@dataclass(frozen=True)
class HeartRateSample:
    """A single heart-rate reading."""

    timestamp: datetime
    bpm: float


# ---------------------------------------------------------------------------
# Algorithm outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoreComponents:
    """Sub-scores that make up a wakeability score."""

    motion_score: float
    heart_rate_score: float


ZERO_COMPONENTS = ScoreComponents(motion_score=0.0, heart_rate_score=0.0)


@dataclass(frozen=True)
class WakeabilityScore:
    """Fused 0-1 estimate of how awake the user is."""

    score: float
    components: ScoreComponents


@dataclass(frozen=True)
class ScoreUpdate:
    """One entry of the rolling score history."""

    score: float
    components: ScoreComponents
    timestamp: datetime


@dataclass(frozen=True)
class TriggerEvent:
    """The wake event produced by an evaluation tick."""

    reason: TriggerReason
    timestamp: datetime
    score: float
    components: ScoreComponents


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


def parse_wake_time(value: str) -> time:
    """Parse an ``HH:mm`` wake time."""
    hour_str, sep, minute_str = value.partition(":")
    if not sep or len(hour_str) != 2 or len(minute_str) != 2:
        raise InvalidScheduleError(f"wake time must be HH:mm, got {value!r}")
    try:
        hour, minute = int(hour_str), int(minute_str)
    except ValueError:
        raise InvalidScheduleError(f"wake time must be HH:mm, got {value!r}") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise InvalidScheduleError(f"wake time out of range: {value!r}")
    return time(hour, minute)


@dataclass(frozen=True)
class AlarmSchedule:
    """The alarm configuration pushed from the controller."""

    wake_time_local: str  # "HH:mm"
    window_minutes: int
    sensitivity: Sensitivity
    enabled: bool = True

    def __post_init__(self) -> None:
        parse_wake_time(self.wake_time_local)
        if self.window_minutes <= 0:
            raise InvalidScheduleError(
                f"window_minutes must be positive, got {self.window_minutes}"
            )
        if not isinstance(self.sensitivity, Sensitivity):
            object.__setattr__(self, "sensitivity", Sensitivity(self.sensitivity))

    @property
    def wake_time(self) -> time:
        return parse_wake_time(self.wake_time_local)


@dataclass(frozen=True)
class SessionWindow:
    """Instants derived from a schedule on a particular date."""

    target_wake_time: datetime
    window_start_time: datetime
    window_arm_time: datetime

    @classmethod
    def from_schedule(
        cls,
        schedule: AlarmSchedule,
        effective_date: date,
        tz: tzinfo,
    ) -> SessionWindow:
        """target = effective_date + wake time; start = target - window; arm = start - 1 min."""
        target = datetime.combine(effective_date, schedule.wake_time, tzinfo=tz)
        start = target - timedelta(minutes=schedule.window_minutes)
        return cls(
            target_wake_time=target,
            window_start_time=start,
            window_arm_time=start - ARM_LEAD,
        )


# ---------------------------------------------------------------------------
# Session summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WakeSessionSummary:
    """Immutable record of one completed wake cycle."""

    window_start_at: datetime
    window_end_at: datetime
    fired_at: datetime
    reason: TriggerReason
    score_at_fire: float
    best_candidate_at: datetime | None = None
    best_score: float | None = None
    battery_impact_estimate: int | None = None

    @property
    def key(self) -> tuple[datetime, TriggerReason]:
        """Identity used to de-duplicate deliveries (second precision)."""
        return (self.fired_at.replace(microsecond=0), self.reason)

    def __repr__(self) -> str:
        return (
            f"WakeSessionSummary({self.reason.value} at {self.fired_at.isoformat()}, "
            f"score={self.score_at_fire:.2f})"
        )
