"""Monitoring orchestrator: buffer samples, score every tick, fire once.

While monitoring, every ``tick_interval_sec`` (30 s) the orchestrator:

1. snapshots and prunes the sample buffers to ``buffer_sec`` (150 s),
2. extracts features, computes a :class:`WakeabilityScore` and appends a
   :class:`ScoreUpdate` to the capped history,
3. asks the :class:`TriggerDecider` (forced first, then smart).

The first positive decision moves the phase to Triggered, cancels the tick
timers and both sensor subscriptions together, writes an ``alarm_fired``
message to the replicated context and hands the event to ``on_trigger``.
An extra one-shot tick is scheduled at the target wake time so the forced
trigger never waits for the next 30 s boundary.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from smartwake import config, protocol
from smartwake.analytics.features import HeartRateFeatureExtractor, MotionFeatureExtractor
from smartwake.analytics.score import WakeabilityScoreCalculator
from smartwake.analytics.trigger import COOLDOWN_SEC, TriggerDecider
from smartwake.arming import StartMonitoring
from smartwake.clock import Scheduler, TimerGroup
from smartwake.exceptions import SensorUnavailableError, TransportUnreachableError
from smartwake.models import (
    HeartRateSample,
    MotionSample,
    ScoreUpdate,
    Sensitivity,
    TriggerEvent,
    TriggerReason,
    WakeabilityScore,
)
from smartwake.sensors import SensorSource
from smartwake.transport import SyncLink

logger = config.get_logger()

TICK_INTERVAL_SEC = 30.0
BUFFER_SEC = 150.0
HISTORY_CAP = 10


class MonitoringPhase(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    TRIGGERED = "triggered"


@dataclass(frozen=True)
class MonitoringConfig:
    tick_interval_sec: float = TICK_INTERVAL_SEC
    buffer_sec: float = BUFFER_SEC
    history_cap: int = HISTORY_CAP
    cooldown_sec: float = COOLDOWN_SEC
    motion: MotionFeatureExtractor = field(default_factory=MotionFeatureExtractor)
    heart_rate: HeartRateFeatureExtractor = field(default_factory=HeartRateFeatureExtractor)


class MonitoringOrchestrator:
    """Owns the sample buffers, score history and algorithm timers of a session."""

    def __init__(
        self,
        motion_source: SensorSource[MotionSample] | None,
        heart_rate_source: SensorSource[HeartRateSample] | None,
        link: SyncLink,
        scheduler: Scheduler,
        calculator: WakeabilityScoreCalculator | None = None,
        config: MonitoringConfig | None = None,
        on_trigger: Callable[[TriggerEvent], None] | None = None,
    ) -> None:
        self.motion_source = motion_source
        self.heart_rate_source = heart_rate_source
        self.link = link
        self.scheduler = scheduler
        self.calculator = calculator or WakeabilityScoreCalculator()
        self.config = config or MonitoringConfig()
        self.on_trigger = on_trigger

        self.phase = MonitoringPhase.IDLE
        self.target_wake_time: datetime | None = None
        self.window_start_time: datetime | None = None
        self.sensitivity = Sensitivity.BALANCED
        self.decider = TriggerDecider.for_sensitivity(self.sensitivity)

        self.heart_rate_available = True
        self.current_score: WakeabilityScore | None = None
        self.last_trigger_time: datetime | None = None
        self.trigger_event: TriggerEvent | None = None
        self.tick_count = 0

        self._motion: list[MotionSample] = []
        self._heart_rate: list[HeartRateSample] = []
        self._history: deque[ScoreUpdate] = deque(maxlen=self.config.history_cap)
        self._timers = TimerGroup()

    @property
    def recent_scores(self) -> list[ScoreUpdate]:
        return list(self._history)

    @property
    def buffered(self) -> tuple[int, int]:
        """(motion, heart-rate) sample counts currently buffered."""
        return len(self._motion), len(self._heart_rate)

    # -- lifecycle ---------------------------------------------------------

    def start(self, command: StartMonitoring) -> None:
        """Begin a monitoring session.  Restarting discards buffers and history."""
        self._halt()

        self.phase = MonitoringPhase.MONITORING
        self.target_wake_time = command.target_wake_time
        self.window_start_time = command.window_start_time
        self.sensitivity = Sensitivity(command.sensitivity)
        self.decider = TriggerDecider.for_sensitivity(
            self.sensitivity, cooldown_sec=self.config.cooldown_sec
        )
        self.current_score = None
        self.trigger_event = None
        self.tick_count = 0
        self._motion = []
        self._heart_rate = []
        self._history.clear()

        self._start_sensors()

        self._timers.add(self.scheduler.call_every(self.config.tick_interval_sec, self.tick))
        until_target = (command.target_wake_time - self.scheduler.now()).total_seconds()
        if until_target > 0:
            self._timers.add(self.scheduler.call_later(until_target, self.tick))

        logger.info(
            "Monitoring %s -> %s (%s, threshold %.2f%s)",
            command.window_start_time.isoformat(),
            command.target_wake_time.isoformat(),
            self.sensitivity.value,
            self.decider.threshold,
            "" if self.heart_rate_available else ", motion only",
        )

    def _start_sensors(self) -> None:
        if self.motion_source is not None:
            try:
                self.motion_source.start(self.ingest_motion)
            except SensorUnavailableError:
                logger.info("Scoring from zero motion features")

        self.heart_rate_available = self.heart_rate_source is not None
        if self.heart_rate_source is not None:
            try:
                self.heart_rate_source.start(
                    self.ingest_heart_rate, on_error=self._heart_rate_failed
                )
            except SensorUnavailableError:
                self.heart_rate_available = False
                logger.info("Heart rate unavailable, switching to motion-only scoring")

    def _heart_rate_failed(self, error: Exception) -> None:
        if self.phase == MonitoringPhase.MONITORING and self.heart_rate_available:
            self.heart_rate_available = False
            self._heart_rate = []
            logger.info("Heart rate lost (%s), switching to motion-only scoring", error)

    def stop(self) -> None:
        """Stop monitoring.  Safe to call in any phase."""
        if self.phase == MonitoringPhase.MONITORING:
            logger.info("Monitoring stopped after %d tick(s)", self.tick_count)
        self._halt()
        self.phase = MonitoringPhase.IDLE

    def _halt(self) -> None:
        self._timers.cancel()
        for source in (self.motion_source, self.heart_rate_source):
            if source is not None:
                source.stop()

    # -- ingestion ---------------------------------------------------------

    def ingest_motion(self, sample: MotionSample) -> None:
        if self.phase == MonitoringPhase.MONITORING:
            self._motion.append(sample)

    def ingest_heart_rate(self, sample: HeartRateSample) -> None:
        if self.phase == MonitoringPhase.MONITORING:
            self._heart_rate.append(sample)

    # -- evaluation --------------------------------------------------------

    def tick(self, now: datetime | None = None) -> TriggerEvent | None:
        """Run one scoring/trigger evaluation."""
        if self.phase != MonitoringPhase.MONITORING:
            return None
        target = self.target_wake_time
        if target is None or self.window_start_time is None:
            logger.warning("Monitoring tick without a session window; skipped")
            return None

        if now is None:
            now = self.scheduler.now()

        cutoff = now - timedelta(seconds=self.config.buffer_sec)
        motion = [s for s in self._motion if s.timestamp >= cutoff]
        heart_rate = [s for s in self._heart_rate if s.timestamp >= cutoff]
        self._motion = motion
        self._heart_rate = heart_rate
        self.tick_count += 1

        motion_features = self.config.motion.extract(motion, now)
        hr_features = (
            self.config.heart_rate.extract(heart_rate, now)
            if self.heart_rate_available
            else None
        )
        score = self.calculator.calculate(motion_features, hr_features)
        self.current_score = score
        self._history.append(ScoreUpdate(score=score.score, components=score.components, timestamp=now))
        logger.debug(
            "Tick %d: score=%.3f motion=%.3f hr=%.3f",
            self.tick_count,
            score.score,
            score.components.motion_score,
            score.components.heart_rate_score,
        )

        event = self.decider.evaluate(list(self._history), self.last_trigger_time, now, target)
        if event is not None:
            self._fire(event)
        return event

    def _fire(self, event: TriggerEvent) -> None:
        previous = self.last_trigger_time
        cooldown_applied = (
            event.reason == TriggerReason.FORCED
            and previous is not None
            and (event.timestamp - previous).total_seconds() < self.decider.cooldown_sec
        )

        self.phase = MonitoringPhase.TRIGGERED
        self.trigger_event = event
        self.last_trigger_time = event.timestamp
        self._halt()
        logger.info(
            "Alarm fired (%s) at %s, score %.2f",
            event.reason.value,
            event.timestamp.isoformat(),
            event.score,
        )

        payload = protocol.AlarmFiredPayload(
            target_wake_at=self.target_wake_time,
            fired_at=event.timestamp,
            reason=event.reason,
            score_at_fire=event.score,
            components=event.components,
            cooldown_applied=cooldown_applied,
        )
        try:
            self.link.update_context(protocol.encode(payload, sent_at=event.timestamp))
        except TransportUnreachableError:
            logger.warning("alarm_fired not delivered; controller will see it on reconnect")

        if self.on_trigger is not None:
            self.on_trigger(event)

    def __repr__(self) -> str:
        return (
            f"MonitoringOrchestrator({self.phase.value}, ticks={self.tick_count}, "
            f"history={len(self._history)})"
        )
