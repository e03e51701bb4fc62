"""Sync message envelope and payloads exchanged between companion and controller.

Wire format (UTF-8 JSON)::

    {
        "schemaVersion": 1,
        "messageId": "<uuid4>",
        "sentAt": "2026-01-19T06:31:00Z",
        "type": "alarm_fired",
        "payload": {...}
    }

- Keys are camelCase on the wire, snake_case in Python.
- Timestamps are UTC with one-second precision; sub-second parts are
  truncated on encode.
- Optional payload fields are omitted when absent.
- Decoding reads ``type`` first and decodes exactly one payload class.
  Unknown types raise :class:`UnsupportedMessageError` so callers can treat
  them as no-ops.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union

from smartwake.exceptions import EnvelopeDecodeError, UnsupportedMessageError
from smartwake.models import (
    AlarmSchedule,
    ScoreComponents,
    TriggerReason,
    WakeSessionSummary,
)

SCHEMA_VERSION = 1

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DATE_FORMAT = "%Y-%m-%d"


class MessageType(str, Enum):
    UPDATE_SCHEDULE = "update_schedule"
    CANCEL_SCHEDULE = "cancel_schedule"
    PING = "ping"
    SESSION_STATE = "session_state"
    ALARM_FIRED = "alarm_fired"
    SESSION_SUMMARY = "session_summary"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Scalar codecs
# ---------------------------------------------------------------------------


def format_timestamp(value: datetime) -> str:
    """Encode an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ`` (UTC)."""
    if value.tzinfo is None:
        raise ValueError("timestamps on the wire must be timezone-aware")
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def parse_date(value: str) -> date:
    return datetime.strptime(value, DATE_FORMAT).date()


def _object(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{name} must be an object, got {type(value).__name__}")
    return value


def _flag(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{name} must be a boolean, got {value!r}")
    return value


def _components_to_wire(components: ScoreComponents) -> dict[str, float]:
    return {
        "motionScore": components.motion_score,
        "heartRateScore": components.heart_rate_score,
    }


def _components_from_wire(raw: dict[str, Any]) -> ScoreComponents:
    raw = _object(raw, "components")
    return ScoreComponents(
        motion_score=float(raw["motionScore"]),
        heart_rate_score=float(raw["heartRateScore"]),
    )


def schedule_to_wire(schedule: AlarmSchedule) -> dict[str, Any]:
    return {
        "wakeTimeLocal": schedule.wake_time_local,
        "windowMinutes": schedule.window_minutes,
        "sensitivity": schedule.sensitivity.value,
        "enabled": schedule.enabled,
    }


def schedule_from_wire(raw: dict[str, Any]) -> AlarmSchedule:
    raw = _object(raw, "schedule")
    return AlarmSchedule(
        wake_time_local=str(raw["wakeTimeLocal"]),
        window_minutes=int(raw["windowMinutes"]),
        sensitivity=raw["sensitivity"],
        enabled=_flag(raw.get("enabled", True), "enabled"),
    )


def summary_to_wire(summary: WakeSessionSummary) -> dict[str, Any]:
    out: dict[str, Any] = {
        "windowStartAt": format_timestamp(summary.window_start_at),
        "windowEndAt": format_timestamp(summary.window_end_at),
        "firedAt": format_timestamp(summary.fired_at),
        "reason": summary.reason.value,
        "scoreAtFire": summary.score_at_fire,
    }
    if summary.best_candidate_at is not None:
        out["bestCandidateAt"] = format_timestamp(summary.best_candidate_at)
    if summary.best_score is not None:
        out["bestScore"] = summary.best_score
    if summary.battery_impact_estimate is not None:
        out["batteryImpactEstimate"] = summary.battery_impact_estimate
    return out


def summary_from_wire(raw: dict[str, Any]) -> WakeSessionSummary:
    raw = _object(raw, "summary")
    best_at = raw.get("bestCandidateAt")
    best_score = raw.get("bestScore")
    battery = raw.get("batteryImpactEstimate")
    return WakeSessionSummary(
        window_start_at=parse_timestamp(raw["windowStartAt"]),
        window_end_at=parse_timestamp(raw["windowEndAt"]),
        fired_at=parse_timestamp(raw["firedAt"]),
        reason=TriggerReason(raw["reason"]),
        score_at_fire=float(raw["scoreAtFire"]),
        best_candidate_at=parse_timestamp(best_at) if best_at is not None else None,
        best_score=float(best_score) if best_score is not None else None,
        battery_impact_estimate=int(battery) if battery is not None else None,
    )


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpdateSchedulePayload:
    TYPE: ClassVar[MessageType] = MessageType.UPDATE_SCHEDULE

    schedule: AlarmSchedule
    effective_date: date

    def to_wire(self) -> dict[str, Any]:
        return {
            "schedule": schedule_to_wire(self.schedule),
            "effectiveDate": format_date(self.effective_date),
        }

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> UpdateSchedulePayload:
        return cls(
            schedule=schedule_from_wire(raw["schedule"]),
            effective_date=parse_date(raw["effectiveDate"]),
        )


@dataclass(frozen=True)
class CancelSchedulePayload:
    TYPE: ClassVar[MessageType] = MessageType.CANCEL_SCHEDULE

    effective_date: date

    def to_wire(self) -> dict[str, Any]:
        return {"effectiveDate": format_date(self.effective_date)}

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> CancelSchedulePayload:
        return cls(effective_date=parse_date(raw["effectiveDate"]))


@dataclass(frozen=True)
class PingPayload:
    TYPE: ClassVar[MessageType] = MessageType.PING

    timestamp: datetime

    def to_wire(self) -> dict[str, Any]:
        return {"timestamp": format_timestamp(self.timestamp)}

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> PingPayload:
        return cls(timestamp=parse_timestamp(raw["timestamp"]))


@dataclass(frozen=True)
class SessionStatePayload:
    """Ephemeral status reply: the companion's phase and latest score."""

    TYPE: ClassVar[MessageType] = MessageType.SESSION_STATE

    state: str
    last_score: float | None = None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"state": self.state}
        if self.last_score is not None:
            out["lastScore"] = self.last_score
        return out

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> SessionStatePayload:
        last = raw.get("lastScore")
        return cls(state=str(raw["state"]), last_score=float(last) if last is not None else None)


@dataclass(frozen=True)
class AlarmFiredPayload:
    TYPE: ClassVar[MessageType] = MessageType.ALARM_FIRED

    target_wake_at: datetime
    fired_at: datetime
    reason: TriggerReason
    score_at_fire: float
    components: ScoreComponents
    cooldown_applied: bool = False

    def to_wire(self) -> dict[str, Any]:
        return {
            "targetWakeAt": format_timestamp(self.target_wake_at),
            "firedAt": format_timestamp(self.fired_at),
            "reason": self.reason.value,
            "scoreAtFire": self.score_at_fire,
            "components": _components_to_wire(self.components),
            "cooldownApplied": self.cooldown_applied,
        }

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> AlarmFiredPayload:
        return cls(
            target_wake_at=parse_timestamp(raw["targetWakeAt"]),
            fired_at=parse_timestamp(raw["firedAt"]),
            reason=TriggerReason(raw["reason"]),
            score_at_fire=float(raw["scoreAtFire"]),
            components=_components_from_wire(raw["components"]),
            cooldown_applied=_flag(raw["cooldownApplied"], "cooldownApplied"),
        )


@dataclass(frozen=True)
class SessionSummaryPayload:
    TYPE: ClassVar[MessageType] = MessageType.SESSION_SUMMARY

    summary: WakeSessionSummary

    def to_wire(self) -> dict[str, Any]:
        return {"summary": summary_to_wire(self.summary)}

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> SessionSummaryPayload:
        return cls(summary=summary_from_wire(raw["summary"]))


@dataclass(frozen=True)
class ErrorPayload:
    TYPE: ClassVar[MessageType] = MessageType.ERROR

    code: str
    detail: str

    def to_wire(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.detail}

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> ErrorPayload:
        return cls(code=str(raw["code"]), detail=str(raw["detail"]))


Payload = Union[
    UpdateSchedulePayload,
    CancelSchedulePayload,
    PingPayload,
    SessionStatePayload,
    AlarmFiredPayload,
    SessionSummaryPayload,
    ErrorPayload,
]

PAYLOAD_TYPES: dict[MessageType, type] = {
    MessageType.UPDATE_SCHEDULE: UpdateSchedulePayload,
    MessageType.CANCEL_SCHEDULE: CancelSchedulePayload,
    MessageType.PING: PingPayload,
    MessageType.SESSION_STATE: SessionStatePayload,
    MessageType.ALARM_FIRED: AlarmFiredPayload,
    MessageType.SESSION_SUMMARY: SessionSummaryPayload,
    MessageType.ERROR: ErrorPayload,
}


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Envelope:
    """A typed payload plus the metadata every message carries."""

    payload: Payload
    message_id: uuid.UUID = field(default_factory=uuid.uuid4)
    sent_at: datetime = field(default_factory=_utcnow)
    schema_version: int = SCHEMA_VERSION

    @property
    def type(self) -> MessageType:
        return self.payload.TYPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "messageId": str(self.message_id),
            "sentAt": format_timestamp(self.sent_at),
            "type": self.type.value,
            "payload": self.payload.to_wire(),
        }

    def encode(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    def __repr__(self) -> str:
        return f"Envelope({self.type.value}, id={self.message_id}, sent_at={format_timestamp(self.sent_at)})"


def encode(payload: Payload, sent_at: datetime | None = None) -> bytes:
    """Wrap ``payload`` in a fresh envelope and serialize it."""
    if sent_at is None:
        return Envelope(payload).encode()
    return Envelope(payload, sent_at=sent_at).encode()


def decode(data: bytes | str | dict[str, Any]) -> Envelope:
    """Parse an envelope.

    Raises:
        UnsupportedMessageError: ``type`` is missing from the known set.
        EnvelopeDecodeError: the data is not a well-formed version-1 envelope.
    """
    if isinstance(data, dict):
        raw = data
    else:
        try:
            raw = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise EnvelopeDecodeError(f"invalid envelope JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise EnvelopeDecodeError("envelope must be a JSON object")

    type_name = raw.get("type")
    try:
        message_type = MessageType(type_name)
    except ValueError:
        raise UnsupportedMessageError(f"unsupported message type {type_name!r}") from None

    version = raw.get("schemaVersion")
    if version != SCHEMA_VERSION or isinstance(version, bool):
        raise EnvelopeDecodeError(f"unsupported schema version {version!r}")

    payload_cls = PAYLOAD_TYPES[message_type]
    try:
        payload = payload_cls.from_wire(_object(raw["payload"], "payload"))
        message_id = uuid.UUID(str(raw["messageId"]))
        sent_at = parse_timestamp(raw["sentAt"])
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise EnvelopeDecodeError(
            f"malformed {message_type.value} envelope: {exc!r}"
        ) from exc

    return Envelope(
        payload=payload,
        message_id=message_id,
        sent_at=sent_at,
        schema_version=version,
    )
