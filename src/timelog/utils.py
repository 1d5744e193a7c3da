from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def from_iso(s: str) -> datetime:
    # Python < 3.11 does not accept the trailing "Z".
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def clamp_nonneg(ms: int) -> int:
    return ms if ms > 0 else 0


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds from ``start`` to ``end``, never negative."""
    delta = end - start
    return clamp_nonneg(delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000)


def format_duration(ms: int) -> str:
    """Report-style duration: ``01h05m`` or ``01h05m07s`` when seconds are non-zero."""
    total = max(0, int(ms)) // 1000
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    if s == 0:
        return f"{h:02d}h{m:02d}m"
    return f"{h:02d}h{m:02d}m{s:02d}s"


def format_hms_ms(ms: int) -> str:
    ms = max(0, int(ms))
    total = ms // 1000
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02d}:{m:02d}:{s:02d}.{ms % 1000:03d}"


def is_tty(stream: TextIO | None = None) -> bool:
    stream = stream if stream is not None else sys.stdout
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def emph(s: str) -> str:
    # bold only on a terminal so piped output stays plain
    if is_tty():
        return f"\x1b[1m{s}\x1b[0m"
    return s
