"""Error types raised by the timelog core and reported by the CLI.

Every failure a command can end with derives from :class:`TimelogError`.
The CLI prints ``error: <message>`` and exits with ``exit_code``.
"""

from __future__ import annotations

from typing import Sequence


class TimelogError(Exception):
    exit_code = 1


# ---- timer state machine ----

class AlreadyRunningError(TimelogError):
    """A task is already in progress (active or paused)."""


class NotActiveError(TimelogError):
    """The operation needs a running task."""


class NotPausedError(TimelogError):
    """The operation needs a paused task."""


class NoActiveTaskError(TimelogError):
    """There is no task in progress at all."""


# ---- queries ----

class InvalidPeriodError(TimelogError):
    def __init__(self, token: str, valid: Sequence[str]):
        self.token = token
        self.valid = tuple(valid)
        super().__init__(f"invalid period {token!r}; expected one of: {', '.join(self.valid)}")


class NoRecordsInPeriodError(TimelogError):
    pass


# ---- amend ----

class NoMatchError(TimelogError):
    pass


class AmbiguousMatchError(TimelogError):
    def __init__(self, message: str, candidates: Sequence = ()):
        self.candidates = list(candidates)
        super().__init__(message)


class InvalidAmendmentError(TimelogError):
    pass


# ---- plugins ----

class PluginNotFoundError(TimelogError):
    pass


class AmbiguousPluginError(TimelogError):
    def __init__(self, names: Sequence[str]):
        self.names = list(names)
        super().__init__(
            "multiple plugins available (" + ", ".join(self.names) + "); specify one with --plugin <name>"
        )


class PluginFailedError(TimelogError):
    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class InvalidPluginOutputError(TimelogError):
    pass


# ---- filesystem / process ----

class StorageError(TimelogError):
    """Filesystem or process-launch failure."""


class StateCleanupError(StorageError):
    """The record was written but the timer state file could not be removed."""
