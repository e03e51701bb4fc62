"""Clock and timer capabilities injected into the session components.

Production code runs on :class:`AsyncioScheduler`, which schedules callbacks
on the running event loop.  :class:`SimulatedScheduler` advances a virtual
clock by hand and is used by the tests and the ``simulate`` CLI command.

Callbacks always run on a single thread (the event loop, or the caller of
``advance``), so the components they drive never need locks.  A repeating
timer keeps firing even when its callback raises; the error is logged.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from smartwake import config

logger = config.get_logger()

Callback = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Time source plus one-shot and repeating timers."""

    def now(self) -> datetime: ...

    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callback) -> TimerHandle: ...


def _run_guarded(callback: Callback) -> None:
    try:
        callback()
    except Exception:
        logger.exception("Timer callback %r failed", callback)


class TimerGroup:
    """A set of timers that belong to one phase and are cancelled together."""

    def __init__(self) -> None:
        self._handles: list[TimerHandle] = []

    def add(self, handle: TimerHandle) -> TimerHandle:
        self._handles.append(handle)
        return handle

    def cancel(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()

    def __len__(self) -> int:
        return len(self._handles)


# ---------------------------------------------------------------------------
# asyncio
# ---------------------------------------------------------------------------


class _RepeatingHandle:
    """Re-arms ``loop.call_later`` after every run until cancelled."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callback,
    ) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle = loop.call_later(interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._interval, self._fire)
        _run_guarded(self._callback)

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


class AsyncioScheduler:
    """Wall-clock scheduler backed by the running asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        return self.loop.call_later(max(0.0, delay), _run_guarded, callback)

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        return _RepeatingHandle(self.loop, interval, callback)


# ---------------------------------------------------------------------------
# Simulated time
# ---------------------------------------------------------------------------


class _SimulatedTimer:
    def __init__(self, callback: Callback, interval: float | None) -> None:
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class SimulatedScheduler:
    """Deterministic scheduler over a virtual clock.

    Timers due at the same instant fire in the order they were scheduled.
    """

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("SimulatedScheduler needs a timezone-aware start time")
        self._now = start
        self._queue: list[tuple[datetime, int, _SimulatedTimer]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    def _push(self, when: datetime, timer: _SimulatedTimer) -> None:
        heapq.heappush(self._queue, (when, next(self._seq), timer))

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        timer = _SimulatedTimer(callback, None)
        self._push(self._now + timedelta(seconds=max(0.0, delay)), timer)
        return timer

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = _SimulatedTimer(callback, interval)
        self._push(self._now + timedelta(seconds=interval), timer)
        return timer

    def run_until(self, when: datetime) -> None:
        """Fire every timer due up to and including ``when``."""
        while self._queue and self._queue[0][0] <= when:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = due
            if timer.interval is not None:
                self._push(due + timedelta(seconds=timer.interval), timer)
            _run_guarded(timer.callback)
        if when > self._now:
            self._now = when

    def advance(self, seconds: float) -> None:
        self.run_until(self._now + timedelta(seconds=seconds))

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._queue if not t.cancelled)
