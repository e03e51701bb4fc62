"""Shared fixtures and helpers for the smartwake test suite."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Sequence

import pytest

from smartwake.clock import SimulatedScheduler
from smartwake.exceptions import SensorUnavailableError
from smartwake.models import (
    AlarmSchedule,
    HeartRateSample,
    MotionSample,
    ScoreComponents,
    ScoreUpdate,
    Sensitivity,
    WakeabilityScore,
)
from smartwake.transport import LoopbackLink

UTC = timezone.utc
DAY = date(2026, 1, 19)
TARGET = datetime(2026, 1, 19, 7, 30, tzinfo=UTC)
T0 = datetime(2026, 1, 19, 6, 0, tzinfo=UTC)


def at(seconds: float, base: datetime = T0) -> datetime:
    return base + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Sample / score builders
# ---------------------------------------------------------------------------


def make_motion(
    magnitudes: Sequence[float],
    end: datetime = T0,
    spacing: float = 0.04,
) -> list[MotionSample]:
    """Evenly spaced motion samples whose last one is at ``end``."""
    n = len(magnitudes)
    return [
        MotionSample(timestamp=end - timedelta(seconds=spacing * (n - 1 - i)), magnitude=m)
        for i, m in enumerate(magnitudes)
    ]


def make_hr(
    bpms: Sequence[float],
    end: datetime = T0,
    spacing: float = 5.0,
) -> list[HeartRateSample]:
    """Evenly spaced heart-rate samples whose last one is at ``end``."""
    n = len(bpms)
    return [
        HeartRateSample(timestamp=end - timedelta(seconds=spacing * (n - 1 - i)), bpm=b)
        for i, b in enumerate(bpms)
    ]


def make_updates(scores: Sequence[float], end: datetime = T0) -> list[ScoreUpdate]:
    """Score history with one entry per 30 s tick, the last one at ``end``."""
    n = len(scores)
    comps = ScoreComponents(motion_score=0.5, heart_rate_score=0.5)
    return [
        ScoreUpdate(score=s, components=comps, timestamp=end - timedelta(seconds=30 * (n - 1 - i)))
        for i, s in enumerate(scores)
    ]


def make_schedule(
    wake: str = "07:30",
    window: int = 30,
    sensitivity: Sensitivity = Sensitivity.BALANCED,
    enabled: bool = True,
) -> AlarmSchedule:
    return AlarmSchedule(
        wake_time_local=wake,
        window_minutes=window,
        sensitivity=sensitivity,
        enabled=enabled,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedCalculator:
    """Returns a fixed sequence of scores, then repeats the last one."""

    def __init__(self, scores: Sequence[float]) -> None:
        self.scores = list(scores)
        self.calls: list[tuple] = []

    def calculate(self, motion, heart_rate) -> WakeabilityScore:
        self.calls.append((motion, heart_rate))
        idx = min(len(self.calls) - 1, len(self.scores) - 1)
        score = self.scores[idx]
        return WakeabilityScore(
            score=score,
            components=ScoreComponents(motion_score=score, heart_rate_score=score),
        )


class FakeSource:
    """Sensor source that records start/stop and lets tests push samples."""

    def __init__(self, available: bool = True, name: str = "fake") -> None:
        self.available = available
        self.name = name
        self.handler: Callable | None = None
        self.starts = 0
        self.stops = 0

    def start(self, handler: Callable, on_error: Callable | None = None) -> None:
        self.starts += 1
        if not self.available:
            raise SensorUnavailableError(f"{self.name} sensor unavailable")
        self.handler = handler

    def stop(self) -> None:
        self.stops += 1
        self.handler = None

    def push(self, sample) -> None:
        if self.handler is not None:
            self.handler(sample)

    @property
    def running(self) -> bool:
        return self.handler is not None


class RecordingNotifier:
    def __init__(self) -> None:
        self.scheduled: list[datetime] = []
        self.cancelled = 0

    def schedule_fallback(self, at: datetime) -> None:
        self.scheduled.append(at)

    def cancel_fallback(self) -> None:
        self.cancelled += 1


class FakeChar:
    def __init__(self, uuid: str, properties: Sequence[str]) -> None:
        self.uuid = uuid
        self.properties = list(properties)


class FakeService:
    def __init__(self, uuid: str, characteristics: Sequence[FakeChar]) -> None:
        self.uuid = uuid
        self.characteristics = list(characteristics)
        self.description = "fake"


class FakeBleakClient:
    """Just enough of ``BleakClient`` for the link and heart-rate source."""

    def __init__(self, services: Sequence[FakeService] = (), connected: bool = True) -> None:
        self.services = list(services)
        self.is_connected = connected
        self.notify_handlers: dict[str, Callable] = {}
        self.writes: list[tuple[str, bytes]] = []
        self.stopped: list[str] = []
        self.fail_notify = False
        self.fail_writes = False

    async def start_notify(self, uuid, handler) -> None:
        if self.fail_notify:
            raise RuntimeError("notify failed")
        self.notify_handlers[uuid] = handler

    async def stop_notify(self, uuid) -> None:
        self.stopped.append(uuid)
        self.notify_handlers.pop(uuid, None)

    async def write_gatt_char(self, uuid, data, response: bool = False) -> None:
        if self.fail_writes:
            raise RuntimeError("write failed")
        self.writes.append((uuid, bytes(data)))

    def notify(self, uuid: str, data: bytes) -> None:
        self.notify_handlers[uuid](None, bytearray(data))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scheduler() -> SimulatedScheduler:
    return SimulatedScheduler(T0)


@pytest.fixture
def links() -> tuple[LoopbackLink, LoopbackLink]:
    """(companion, controller) loopback pair."""
    return LoopbackLink.pair()
