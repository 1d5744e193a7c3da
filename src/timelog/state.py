"""The single-task timer.

States: absent (no stored state), active, paused. ``start`` leads from
absent to active, ``pause``/``resume`` move between active and paused, and
``stop`` turns an active timer into a :class:`TimeRecord` and clears the
stored state. Stopping a paused timer is refused; resume it first.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

from .errors import (
    AlreadyRunningError,
    NoActiveTaskError,
    NotActiveError,
    NotPausedError,
    StateCleanupError,
    StorageError,
)
from .models import TimeRecord, TimerState, TimerStatus, TimerStatusReport
from .periods import local_date
from .store import RecordStore
from .utils import ensure_dir, format_hms_ms, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class StateStorage(Protocol):
    def read(self) -> Optional[TimerState]: ...

    def write(self, state: TimerState) -> None: ...

    def delete(self) -> None: ...


class MemoryStateStorage:
    def __init__(self, state: Optional[TimerState] = None):
        self.state = state

    def read(self) -> Optional[TimerState]:
        return self.state

    def write(self, state: TimerState) -> None:
        self.state = state

    def delete(self) -> None:
        self.state = None


class FileStateStorage:
    """Stores the timer as a JSON object; the file exists only while a task is in progress."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[TimerState]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"unable to read state file {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StorageError(f"invalid state file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"state file {self.path} must contain a JSON object")
        try:
            return TimerState.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"invalid state file {self.path}: {exc}") from exc

    def write(self, state: TimerState) -> None:
        try:
            ensure_dir(self.path.parent)
            fd, temp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".tmp_state_", text=True)
        except OSError as exc:
            raise StorageError(f"unable to write state file {self.path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(temp_path, self.path)
        except OSError as exc:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StorageError(f"unable to write state file {self.path}: {exc}") from exc

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"unable to delete state file {self.path}: {exc}") from exc


class TimerMachine:
    def __init__(self, storage: StateStorage, store: RecordStore, clock: Clock = utc_now):
        self.storage = storage
        self.store = store
        self.clock = clock

    def start(self, task: str, project: Optional[str] = None) -> TimerState:
        if not task or not task.strip():
            raise ValueError("task must not be empty")
        current = self.storage.read()
        if current is not None:
            raise AlreadyRunningError(
                f"a task is already in progress ({current.task!r}, {current.status.value}); "
                "run `timelog pause` or `timelog stop`"
            )
        state = TimerState(
            task=task,
            status=TimerStatus.ACTIVE,
            started_at=self.clock(),
            accumulated_ms=0,
            project=project or None,
        )
        self.storage.write(state)
        logger.debug("started %r", task)
        return state

    def pause(self) -> TimerState:
        current = self.storage.read()
        if current is None:
            raise NotActiveError("no active task to pause")
        if not current.is_active:
            raise NotActiveError("task is already paused; use `timelog resume`")
        paused = replace(
            current,
            status=TimerStatus.PAUSED,
            started_at=None,
            accumulated_ms=current.elapsed_ms(self.clock()),
        )
        self.storage.write(paused)
        logger.debug("paused %r at %s", paused.task, format_hms_ms(paused.accumulated_ms))
        return paused

    def resume(self) -> TimerState:
        current = self.storage.read()
        if current is None:
            raise NotPausedError("no paused task to resume")
        if current.is_active:
            raise NotPausedError("task is already running")
        resumed = replace(current, status=TimerStatus.ACTIVE, started_at=self.clock())
        self.storage.write(resumed)
        logger.debug("resumed %r", resumed.task)
        return resumed

    def stop(self) -> TimeRecord:
        current = self.storage.read()
        if current is None:
            raise NoActiveTaskError("no task to stop")
        if not current.is_active:
            raise NotActiveError("task is paused; run `timelog resume` before `timelog stop`")

        now = self.clock()
        record = TimeRecord(
            task=current.task,
            duration_ms=current.elapsed_ms(now),
            date=local_date(now),
            project=current.project,
        )
        self.store.append(record)
        try:
            self.storage.delete()
        except StorageError as exc:
            raise StateCleanupError(
                f"recorded {record.task!r} ({format_hms_ms(record.duration_ms)}) but could not clear "
                f"the timer state: {exc}; remove it by hand before starting another task"
            ) from exc
        logger.debug("stopped %r after %d ms", record.task, record.duration_ms)
        return record

    def status(self) -> Optional[TimerStatusReport]:
        current = self.storage.read()
        if current is None:
            return None
        now = self.clock()
        return TimerStatusReport(state=current, elapsed_ms=current.elapsed_ms(now), now=now)
