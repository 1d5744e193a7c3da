"""Append-only CSV store of completed time records.

Rows are ``task,duration_ms,date,project``. Files written before projects
existed have three columns; those rows are read with ``project=None`` and
are left as they are on disk until an amend rewrites the file.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Optional

from .errors import AmbiguousMatchError, InvalidAmendmentError, NoMatchError, StorageError
from .models import TimeRecord
from .utils import ensure_dir, format_hms_ms

logger = logging.getLogger(__name__)

HEADER = ["task", "duration_ms", "date", "project"]
LEGACY_HEADER = HEADER[:3]

Row = list[str]


@dataclass(frozen=True)
class LoadResult:
    records: list[TimeRecord]
    skipped: int = 0


@dataclass(frozen=True)
class RecordChanges:
    task: Optional[str] = None
    duration_minutes: Optional[int] = None
    # "" clears the project, None leaves it alone
    project: Optional[str] = None

    def is_empty(self) -> bool:
        return self.task is None and self.duration_minutes is None and self.project is None

    def validate(self) -> None:
        if self.is_empty():
            raise InvalidAmendmentError("no changes specified; use --new-task, --new-duration, or --new-project")
        if self.task is not None and not self.task.strip():
            raise InvalidAmendmentError("new task name must not be empty")
        if self.duration_minutes is not None and self.duration_minutes <= 0:
            raise InvalidAmendmentError("duration must be a positive number of minutes")

    def apply(self, record: TimeRecord) -> TimeRecord:
        out = record
        if self.task is not None:
            out = replace(out, task=self.task)
        if self.duration_minutes is not None:
            out = replace(out, duration_ms=self.duration_minutes * 60 * 1000)
        if self.project is not None:
            out = replace(out, project=self.project or None)
        return out

    def describe(self, before: TimeRecord, after: TimeRecord) -> list[str]:
        lines = []
        if self.task is not None:
            lines.append(f"task: {before.task!r} -> {after.task!r}")
        if self.duration_minutes is not None:
            lines.append(f"duration: {format_hms_ms(before.duration_ms)} -> {format_hms_ms(after.duration_ms)}")
        if self.project is not None:
            lines.append(f"project: {before.project or '(none)'} -> {after.project or '(none)'}")
        return lines


@dataclass(frozen=True)
class AmendResult:
    original: TimeRecord
    amended: TimeRecord
    changes: list[str] = field(default_factory=list)
    applied: bool = False


def _to_row(record: TimeRecord) -> Row:
    return [record.task, str(record.duration_ms), record.date.isoformat(), record.project or ""]


def _parse_fields(task: str, duration: str, day: str, project: Optional[str]) -> TimeRecord:
    return TimeRecord(
        task=task,
        duration_ms=int(duration.strip()),
        date=date.fromisoformat(day.strip()),
        project=project or None,
    )


def _is_utf8(row: Row) -> bool:
    try:
        "".join(row).encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def parse_row(row: Row) -> Optional[TimeRecord]:
    """Parse one data row, trying the current layout before the legacy one.

    Returns ``None`` for rows neither layout accepts, including rows holding
    bytes that are not valid UTF-8.
    """
    if not _is_utf8(row):
        return None
    if len(row) >= 4:
        try:
            return _parse_fields(row[0], row[1], row[2], row[3])
        except ValueError:
            pass
    if len(row) == 3:
        try:
            return _parse_fields(row[0], row[1], row[2], None)
        except ValueError:
            pass
    return None


def _is_header(row: Row) -> bool:
    return [c.strip() for c in row[:3]] == LEGACY_HEADER


class RecordStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def _read_rows(self) -> list[Row]:
        try:
            with self.path.open("r", newline="", encoding="utf-8", errors="surrogateescape") as f:
                return [row for row in csv.reader(f) if row]
        except FileNotFoundError:
            return []
        except (OSError, csv.Error) as exc:
            raise StorageError(f"unable to read record file {self.path}: {exc}") from exc

    def _entries(self) -> list[tuple[Row, Optional[TimeRecord]]]:
        rows = self._read_rows()
        if rows and _is_header(rows[0]):
            rows = rows[1:]
        return [(row, parse_row(row)) for row in rows]

    def load_all(self) -> LoadResult:
        records: list[TimeRecord] = []
        skipped = 0
        for n, (row, rec) in enumerate(self._entries(), start=1):
            if rec is None:
                skipped += 1
                logger.debug("skipping malformed row %d in %s: %r", n, self.path, row)
                continue
            records.append(rec)
        return LoadResult(records=records, skipped=skipped)

    def append(self, record: TimeRecord) -> None:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        try:
            ensure_dir(self.path.parent)
            size = self.path.stat().st_size if self.path.exists() else 0
            if size == 0:
                writer.writerow(HEADER)
            elif not self._ends_with_newline():
                buf.write("\n")
            writer.writerow(_to_row(record))
            with self.path.open("a", newline="", encoding="utf-8") as f:
                f.write(buf.getvalue())
                f.flush()
                os.fsync(f.fileno())
        except OSError as exc:
            raise StorageError(f"failed to write record file {self.path}: {exc}") from exc
        logger.debug("appended %r to %s", record, self.path)

    def _ends_with_newline(self) -> bool:
        with self.path.open("rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) in (b"\n", b"\r")

    def amend(
        self,
        on_date: date,
        pattern: str,
        changes: RecordChanges,
        *,
        dry_run: bool = False,
    ) -> AmendResult:
        """Change exactly one record of ``on_date`` whose task contains ``pattern``."""
        changes.validate()
        entries = self._entries()
        matches = [
            (i, rec)
            for i, (_row, rec) in enumerate(entries)
            if rec is not None and rec.date == on_date and pattern in rec.task
        ]
        if not matches:
            raise NoMatchError(f"no records found matching date {on_date} and task pattern {pattern!r}")
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"found {len(matches)} records matching {pattern!r} on {on_date}; use a more specific task pattern",
                [rec for _i, rec in matches],
            )

        idx, original = matches[0]
        amended = changes.apply(original)
        result = AmendResult(
            original=original,
            amended=amended,
            changes=changes.describe(original, amended),
            applied=not dry_run,
        )
        if dry_run:
            return result

        rows = [HEADER]
        for i, (row, rec) in enumerate(entries):
            if i == idx:
                rows.append(_to_row(amended))
            elif rec is not None:
                rows.append(_to_row(rec))
            else:
                rows.append(row)
        self._write_rows(rows)
        logger.info("amended record on %s: %s", on_date, "; ".join(result.changes))
        return result

    def _write_rows(self, rows: list[Row]) -> None:
        try:
            ensure_dir(self.path.parent)
            fd, temp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".tmp_record_", text=True)
        except OSError as exc:
            raise StorageError(f"failed to rewrite record file {self.path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", newline="", encoding="utf-8", errors="surrogateescape") as f:
                csv.writer(f, lineterminator="\n").writerows(rows)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as exc:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StorageError(f"failed to rewrite record file {self.path}: {exc}") from exc
