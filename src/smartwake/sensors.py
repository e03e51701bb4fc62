"""Sensor sources: the push interface the orchestrator consumes, plus simulators.

A source is started with a handler and calls it once per sample until
stopped.  ``start`` raises :class:`SensorUnavailableError` when permission
is denied or the hardware is absent; a source that connects asynchronously
reports a later failure through ``on_error`` instead.

The simulated sources produce sleep-stage-shaped signals on a
:class:`~smartwake.clock.Scheduler`:

- deep_sleep  -- magnitude ~1 g with tiny noise, bpm ~55
- light_sleep -- occasional small movements, bpm ~63
- awakening   -- sustained large movements, bpm stepping up to ~75
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Generic, Protocol, TypeVar

import numpy as np

from smartwake.clock import Scheduler, TimerHandle
from smartwake.exceptions import SensorUnavailableError
from smartwake.models import HeartRateSample, MotionSample

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

MOTION_RATE_HZ = 25.0
HEART_RATE_INTERVAL_SEC = 5.0

GRAVITY = 1.0  # g


class SensorSource(Protocol[T_co]):
    def start(
        self,
        handler: Callable[[T_co], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> None: ...

    def stop(self) -> None: ...


class SimulationMode(str, Enum):
    DEEP_SLEEP = "deep_sleep"
    LIGHT_SLEEP = "light_sleep"
    AWAKENING = "awakening"


class _SimulatedSource(ABC, Generic[T]):
    """Scheduler-driven source emitting one sample per interval."""

    name = "sensor"

    def __init__(
        self,
        scheduler: Scheduler,
        interval: float,
        mode: SimulationMode = SimulationMode.DEEP_SLEEP,
        seed: int | None = None,
        available: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.interval = interval
        self.mode = SimulationMode(mode)
        self.available = available
        self.rng = np.random.default_rng(seed)
        self._timer: TimerHandle | None = None
        self._handler: Callable[[T], None] | None = None
        self._count = 0

    @property
    def running(self) -> bool:
        return self._timer is not None

    def set_mode(self, mode: SimulationMode) -> None:
        self.mode = SimulationMode(mode)

    def start(
        self,
        handler: Callable[[T], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if not self.available:
            raise SensorUnavailableError(f"{self.name} sensor unavailable")
        self.stop()
        self._handler = handler
        self._count = 0
        self._timer = self.scheduler.call_every(self.interval, self._emit)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._handler = None

    def _emit(self) -> None:
        if self._handler is None:
            return
        sample = self._sample(self._count)
        self._count += 1
        self._handler(sample)

    @abstractmethod
    def _sample(self, index: int) -> T:
        """Build the ``index``-th sample for the current mode."""


class SimulatedMotionSource(_SimulatedSource[MotionSample]):
    name = "motion"

    def __init__(self, scheduler: Scheduler, rate_hz: float = MOTION_RATE_HZ, **kwargs) -> None:
        super().__init__(scheduler, 1.0 / rate_hz, **kwargs)

    def _sample(self, index: int) -> MotionSample:
        noise = self.rng.uniform(-0.05, 0.05)
        if self.mode == SimulationMode.DEEP_SLEEP:
            movement = 0.0
        elif self.mode == SimulationMode.LIGHT_SLEEP:
            movement = self.rng.uniform(0.1, 0.3) if index % 10 == 0 else 0.0
        else:
            movement = self.rng.uniform(0.0, 3.0)
        return MotionSample(
            timestamp=self.scheduler.now(),
            magnitude=max(0.0, GRAVITY + movement + noise),
        )


class SimulatedHeartRateSource(_SimulatedSource[HeartRateSample]):
    name = "heart rate"

    def __init__(self, scheduler: Scheduler, interval: float = HEART_RATE_INTERVAL_SEC, **kwargs) -> None:
        super().__init__(scheduler, interval, **kwargs)

    def _sample(self, index: int) -> HeartRateSample:
        if self.mode == SimulationMode.DEEP_SLEEP:
            bpm = 55.0 + self.rng.uniform(-5.0, 5.0)
        elif self.mode == SimulationMode.LIGHT_SLEEP:
            bpm = 63.0 + self.rng.uniform(-5.0, 5.0)
        else:
            bpm = 75.0 + self.rng.uniform(-5.0, 5.0)
        return HeartRateSample(timestamp=self.scheduler.now(), bpm=bpm)
