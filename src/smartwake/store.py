"""JSON file persistence for controller settings and received session summaries.

Both stores tolerate a missing file.  A corrupt settings file falls back to
defaults with a warning; a corrupt history file is an error.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path

from smartwake import config, protocol
from smartwake.exceptions import InvalidScheduleError
from smartwake.models import AlarmSchedule, Sensitivity, WakeSessionSummary

logger = config.get_logger()


@dataclass(frozen=True)
class SetupSettings:
    """The controller's editable alarm setup."""

    wake_hour: int = 7
    wake_minute: int = 30
    window_minutes: int = 30
    sensitivity: Sensitivity = Sensitivity.BALANCED
    enabled: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.wake_hour <= 23:
            raise InvalidScheduleError(f"wake_hour out of range: {self.wake_hour}")
        if not 0 <= self.wake_minute <= 59:
            raise InvalidScheduleError(f"wake_minute out of range: {self.wake_minute}")
        if self.window_minutes <= 0:
            raise InvalidScheduleError(f"window_minutes must be positive: {self.window_minutes}")
        if not isinstance(self.sensitivity, Sensitivity):
            object.__setattr__(self, "sensitivity", Sensitivity(self.sensitivity))

    @property
    def wake_time_local(self) -> str:
        return f"{self.wake_hour:02d}:{self.wake_minute:02d}"

    def to_schedule(self) -> AlarmSchedule:
        return AlarmSchedule(
            wake_time_local=self.wake_time_local,
            window_minutes=self.window_minutes,
            sensitivity=self.sensitivity,
            enabled=self.enabled,
        )

    def to_dict(self) -> dict:
        out = asdict(self)
        out["sensitivity"] = self.sensitivity.value
        return out


class SettingsStore:
    """Load/save :class:`SetupSettings` as a JSON object."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> SetupSettings:
        if not self.path.exists():
            return SetupSettings()
        try:
            raw = json.loads(self.path.read_text())
            return SetupSettings(**raw)
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable settings %s: %s", self.path, e)
            return SetupSettings()

    def save(self, settings: SetupSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(settings.to_dict(), indent=2))


class SessionHistory:
    """Summaries received from the companion, de-duplicated by (fired_at, reason).

    With a ``path`` the history is read on construction and rewritten after
    every new summary; without one it lives in memory only.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._summaries: dict[tuple, WakeSessionSummary] = {}
        if self.path is not None and self.path.exists():
            for raw in json.loads(self.path.read_text()):
                summary = protocol.summary_from_wire(raw)
                self._summaries[summary.key] = summary

    def add(self, summary: WakeSessionSummary) -> bool:
        """Store ``summary``; False when it was already stored."""
        if summary.key in self._summaries:
            return False
        self._summaries[summary.key] = summary
        self._save()
        return True

    def summaries(self) -> list[WakeSessionSummary]:
        """Newest first."""
        return sorted(self._summaries.values(), key=lambda s: s.fired_at, reverse=True)

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        records = [protocol.summary_to_wire(s) for s in self.summaries()]
        self.path.write_text(json.dumps(records, indent=2))

    def __len__(self) -> int:
        return len(self._summaries)

    def __contains__(self, summary: WakeSessionSummary) -> bool:
        return summary.key in self._summaries
