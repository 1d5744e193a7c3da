from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .utils import clamp_nonneg, elapsed_ms, from_iso, to_iso

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class TimeRecord:
    task: str
    duration_ms: int
    date: date
    project: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.task:
            raise ValueError("task must not be empty")
        if self.duration_ms < 0:
            raise ValueError("duration_ms must not be negative")
        if self.project == "":
            object.__setattr__(self, "project", None)

    def to_payload(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "duration_ms": self.duration_ms,
            "date": self.date.isoformat(),
            "project": self.project,
        }


class TimerStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


@dataclass(frozen=True)
class TimerState:
    """The single in-progress task.

    ``started_at`` marks the beginning of the current run segment and is
    ``None`` while paused. ``accumulated_ms`` holds the time of all earlier
    segments.
    """

    task: str
    status: TimerStatus
    started_at: Optional[datetime] = None
    accumulated_ms: int = 0
    project: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is TimerStatus.ACTIVE

    def elapsed_ms(self, now: datetime) -> int:
        if self.is_active and self.started_at is not None:
            return self.accumulated_ms + elapsed_ms(self.started_at, now)
        return self.accumulated_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "project": self.project,
            "status": self.status.value,
            "started_at": to_iso(self.started_at) if self.started_at is not None else None,
            "accumulated_ms": self.accumulated_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimerState":
        if "status" not in data and "active" in data:
            return cls._from_legacy_dict(data)

        task = data.get("task")
        if not isinstance(task, str) or not task:
            raise ValueError("state is missing a task")
        status = TimerStatus(data.get("status"))
        raw_started = data.get("started_at")
        started_at = from_iso(raw_started) if isinstance(raw_started, str) else None
        if status is TimerStatus.ACTIVE and started_at is None:
            raise ValueError("active state is missing started_at")
        accumulated = data.get("accumulated_ms", 0)
        if not isinstance(accumulated, int) or isinstance(accumulated, bool):
            raise ValueError("accumulated_ms must be an integer")
        return cls(
            task=task,
            status=status,
            started_at=started_at if status is TimerStatus.ACTIVE else None,
            accumulated_ms=clamp_nonneg(accumulated),
            project=data.get("project") or None,
        )

    @classmethod
    def _from_legacy_dict(cls, data: dict[str, Any]) -> "TimerState":
        # Older state files kept one timestamp: the (shifted) start time while
        # active, or the elapsed time as an offset from the epoch while paused.
        task = data.get("task")
        if not isinstance(task, str) or not task:
            raise ValueError("state is missing a task")
        timestamp = from_iso(str(data["timestamp"]))
        project = data.get("project") or None
        if data.get("active"):
            return cls(task=task, status=TimerStatus.ACTIVE, started_at=timestamp, project=project)
        return cls(
            task=task,
            status=TimerStatus.PAUSED,
            accumulated_ms=elapsed_ms(_EPOCH, timestamp),
            project=project,
        )


@dataclass(frozen=True)
class TimerStatusReport:
    state: TimerState
    elapsed_ms: int
    now: datetime


@dataclass(frozen=True)
class PeriodRange:
    start: date
    end: date
    label: str
    token: str = ""

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


@dataclass(frozen=True)
class PluginDescriptor:
    name: str
    path: Path
    config: dict[str, Any] = field(default_factory=dict)
    config_warning: Optional[str] = None


@dataclass(frozen=True)
class PluginResult:
    success: bool
    uploaded_count: int
    message: str
    errors: list[str] = field(default_factory=list)
