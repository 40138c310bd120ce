"""
Cron job types.

Schedules and payloads are closed unions of small dataclasses tagged by a
``kind`` class attribute; ``to_dict``/``from_dict`` use the camelCase layout
of the persisted jobs.json document.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Mapping, Optional, Union

from .errors import CronValidationError

SessionTarget = Literal["main", "isolated"]
WakeMode = Literal["now", "next-heartbeat"]
RunStatus = Literal["ok", "error", "skipped"]

SESSION_TARGETS: tuple[str, ...] = ("main", "isolated")
WAKE_MODES: tuple[str, ...] = ("now", "next-heartbeat")


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

@dataclass
class AtSchedule:
    """One-shot at an absolute epoch time (ms)"""
    at_ms: int
    kind: ClassVar[Literal["at"]] = "at"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "at", "atMs": self.at_ms}


@dataclass
class EverySchedule:
    """Fixed interval; slots are anchor_ms + k * every_ms"""
    every_ms: int
    anchor_ms: Optional[int] = None
    kind: ClassVar[Literal["every"]] = "every"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": "every", "everyMs": self.every_ms}
        if self.anchor_ms is not None:
            data["anchorMs"] = self.anchor_ms
        return data


CronSchedule = Union[AtSchedule, EverySchedule]


def _as_int(value: Any) -> int | None:
    """Numeric field as int; None unless a finite int or float (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def schedule_from_dict(raw: Any) -> CronSchedule | None:
    """Parse a schedule; None when the shape is not recognised."""
    if not isinstance(raw, Mapping):
        return None
    kind = raw.get("kind", raw.get("type"))
    if kind == "at":
        at_ms = _as_int(raw.get("atMs", raw.get("at_ms")))
        if at_ms is None:
            return None
        return AtSchedule(at_ms=at_ms)
    if kind == "every":
        every_ms = _as_int(raw.get("everyMs", raw.get("every_ms")))
        if every_ms is None:
            return None
        anchor_ms = _as_int(raw.get("anchorMs", raw.get("anchor_ms")))
        return EverySchedule(every_ms=every_ms, anchor_ms=anchor_ms)
    return None


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

@dataclass
class SystemEventPayload:
    """Text appended to the main session as a system event"""
    text: str
    kind: ClassVar[Literal["systemEvent"]] = "systemEvent"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "systemEvent", "text": self.text}


@dataclass
class AgentTurnPayload:
    """Prompt for an agent turn in an isolated session"""
    message: str
    deliver: Optional[bool] = None
    model: Optional[str] = None
    channel: Optional[str] = None
    to: Optional[str] = None
    timeout_seconds: Optional[int] = None
    kind: ClassVar[Literal["agentTurn"]] = "agentTurn"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": "agentTurn", "message": self.message}
        if self.deliver is not None:
            data["deliver"] = self.deliver
        if self.model:
            data["model"] = self.model
        if self.channel:
            data["channel"] = self.channel
        if self.to:
            data["to"] = self.to
        if self.timeout_seconds is not None:
            data["timeoutSeconds"] = self.timeout_seconds
        return data


CronPayload = Union[SystemEventPayload, AgentTurnPayload]


def payload_from_dict(raw: Any) -> CronPayload | None:
    """Parse a payload; None when the shape is not recognised."""
    if not isinstance(raw, Mapping):
        return None
    kind = raw.get("kind")
    if kind == "systemEvent":
        text = raw.get("text")
        return SystemEventPayload(text=text if isinstance(text, str) else "")
    if kind == "agentTurn":
        # "prompt" is the legacy spelling of "message"
        message = raw.get("message", raw.get("prompt"))
        deliver = raw.get("deliver")
        timeout = raw.get("timeoutSeconds", raw.get("timeout_seconds"))
        return AgentTurnPayload(
            message=message if isinstance(message, str) else "",
            deliver=deliver if isinstance(deliver, bool) else None,
            model=raw.get("model") or None,
            channel=raw.get("channel") or None,
            to=raw.get("to") or None,
            timeout_seconds=_as_int(timeout),
        )
    return None


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

_STATE_FIELDS = {
    "next_run_at_ms": "nextRunAtMs",
    "running_at_ms": "runningAtMs",
    "last_run_at_ms": "lastRunAtMs",
    "last_status": "lastStatus",
    "last_error": "lastError",
    "last_summary": "lastSummary",
    "last_duration_ms": "lastDurationMs",
}


@dataclass
class CronJobState:
    """Mutable run state, written by the scheduler"""
    next_run_at_ms: Optional[int] = None
    running_at_ms: Optional[int] = None
    last_run_at_ms: Optional[int] = None
    last_status: Optional[RunStatus] = None
    last_error: Optional[str] = None
    last_summary: Optional[str] = None
    last_duration_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            camel: getattr(self, attr)
            for attr, camel in _STATE_FIELDS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "CronJobState":
        if not isinstance(raw, Mapping):
            return cls()
        values = {attr: raw.get(camel, raw.get(attr)) for attr, camel in _STATE_FIELDS.items()}
        status = values["last_status"]
        error = values["last_error"]
        summary = values["last_summary"]
        return cls(
            next_run_at_ms=_as_int(values["next_run_at_ms"]),
            running_at_ms=_as_int(values["running_at_ms"]),
            last_run_at_ms=_as_int(values["last_run_at_ms"]),
            last_status=status if status in ("ok", "error", "skipped") else None,
            last_error=error if isinstance(error, str) else None,
            last_summary=summary if isinstance(summary, str) else None,
            last_duration_ms=_as_int(values["last_duration_ms"]),
        )


@dataclass
class CronJob:
    """
    An autonomous task definition plus its run state.

    ``schedule``/``payload`` are None only for entries loaded from disk in a
    shape this version does not understand; those are listed but never run.
    """
    id: str
    schedule: Optional[CronSchedule]
    payload: Optional[CronPayload]
    session_target: str = "main"
    wake_mode: str = "now"
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True
    state: CronJobState = field(default_factory=CronJobState)
    created_at_ms: int = 0
    updated_at_ms: int = 0

    @property
    def label(self) -> str:
        return self.name or self.id

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.name:
            data["name"] = self.name
        if self.description:
            data["description"] = self.description
        data.update(
            enabled=self.enabled,
            createdAtMs=self.created_at_ms,
            updatedAtMs=self.updated_at_ms,
            schedule=self.schedule.to_dict() if self.schedule else None,
            sessionTarget=self.session_target,
            wakeMode=self.wake_mode,
            payload=self.payload.to_dict() if self.payload else None,
            state=self.state.to_dict(),
        )
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CronJob":
        """
        Build a job from its persisted form.

        Only a missing id is fatal; every other oddity is kept so the
        scheduler can skip the job with a reason at fire time.
        """
        job_id = raw.get("id")
        if not isinstance(job_id, str) or not job_id.strip():
            raise ValueError("cron job is missing an id")

        name = raw.get("name")
        description = raw.get("description")
        # a non-bool flag never switches a job on
        enabled = raw.get("enabled", True)
        return cls(
            id=job_id.strip(),
            name=name.strip() if isinstance(name, str) and name.strip() else None,
            description=description.strip() if isinstance(description, str) and description.strip() else None,
            enabled=enabled if isinstance(enabled, bool) else False,
            schedule=schedule_from_dict(raw.get("schedule")),
            session_target=str(raw.get("sessionTarget", raw.get("session_target", "main"))),
            wake_mode=str(raw.get("wakeMode", raw.get("wake_mode", "now"))),
            payload=payload_from_dict(raw.get("payload")),
            state=CronJobState.from_dict(raw.get("state")),
            created_at_ms=_as_int(raw.get("createdAtMs")) or 0,
            updated_at_ms=_as_int(raw.get("updatedAtMs")) or 0,
        )


@dataclass
class CronJobCreate:
    """Input for CronService.add"""
    schedule: CronSchedule
    payload: CronPayload
    session_target: SessionTarget = "main"
    wake_mode: WakeMode = "now"
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CronJobCreate":
        """Parse an API-style job spec, rejecting malformed input."""
        schedule = schedule_from_dict(raw.get("schedule"))
        if schedule is None:
            raise CronValidationError("invalid schedule: expected kind \"at\" with atMs or \"every\" with everyMs")
        payload = payload_from_dict(raw.get("payload"))
        if payload is None:
            raise CronValidationError("invalid payload: expected kind \"systemEvent\" or \"agentTurn\"")

        session_target = raw.get("sessionTarget", raw.get("session_target", "main"))
        if session_target not in SESSION_TARGETS:
            raise CronValidationError(f"invalid sessionTarget: {session_target!r}")
        wake_mode = raw.get("wakeMode", raw.get("wake_mode", "now"))
        if wake_mode not in WAKE_MODES:
            raise CronValidationError(f"invalid wakeMode: {wake_mode!r}")

        name = raw.get("name")
        description = raw.get("description")
        return cls(
            schedule=schedule,
            payload=payload,
            session_target=session_target,
            wake_mode=wake_mode,
            name=name.strip() if isinstance(name, str) and name.strip() else None,
            description=description.strip() if isinstance(description, str) and description.strip() else None,
            enabled=bool(raw.get("enabled", True)),
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_job_spec(session_target: str, payload: CronPayload | None) -> None:
    """main jobs carry systemEvent payloads, isolated jobs agentTurn payloads."""
    if session_target == "main":
        if not isinstance(payload, SystemEventPayload):
            raise CronValidationError('main cron jobs require payload.kind="systemEvent"')
    elif session_target == "isolated":
        if not isinstance(payload, AgentTurnPayload):
            raise CronValidationError('isolated cron jobs require payload.kind="agentTurn"')
    else:
        raise CronValidationError(f"invalid sessionTarget: {session_target!r}")


def validate_schedule(schedule: CronSchedule | None) -> None:
    if isinstance(schedule, AtSchedule):
        if isinstance(schedule.at_ms, bool) or not isinstance(schedule.at_ms, int) or schedule.at_ms < 0:
            raise CronValidationError("schedule.atMs must be a non-negative epoch time in ms")
    elif isinstance(schedule, EverySchedule):
        if isinstance(schedule.every_ms, bool) or not isinstance(schedule.every_ms, int) or schedule.every_ms <= 0:
            raise CronValidationError("schedule.everyMs must be a positive number of ms")
    else:
        raise CronValidationError("schedule must be an at or every schedule")


def skip_reason(job: CronJob) -> str | None:
    """Why a job must not run right now, or None when it may."""
    if job.schedule is None:
        return "job schedule is missing or unrecognised"
    if job.session_target == "main":
        if not isinstance(job.payload, SystemEventPayload):
            return 'main job requires payload.kind="systemEvent"'
        if not job.payload.text.strip():
            return "main job requires non-empty systemEvent text"
        return None
    if job.session_target == "isolated":
        if not isinstance(job.payload, AgentTurnPayload):
            return 'isolated job requires payload.kind="agentTurn"'
        return None
    return f"unsupported sessionTarget {job.session_target!r}"


__all__ = [
    "SessionTarget",
    "WakeMode",
    "RunStatus",
    "AtSchedule",
    "EverySchedule",
    "CronSchedule",
    "SystemEventPayload",
    "AgentTurnPayload",
    "CronPayload",
    "CronJobState",
    "CronJob",
    "CronJobCreate",
    "schedule_from_dict",
    "payload_from_dict",
    "validate_job_spec",
    "validate_schedule",
    "skip_reason",
]
