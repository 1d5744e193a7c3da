from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .models import PeriodRange, TimeRecord
from .utils import emph, format_duration


@dataclass(frozen=True)
class Report:
    period: PeriodRange
    project: Optional[str]
    rows: list[TimeRecord]
    total_ms: int

    @property
    def title(self) -> str:
        return f"{self.period.label} report"


def filter_records(
    records: Iterable[TimeRecord],
    period: PeriodRange,
    project: Optional[str] = None,
) -> list[TimeRecord]:
    out = [r for r in records if period.contains(r.date)]
    if project is not None:
        out = [r for r in out if r.project == project]
    out.sort(key=lambda r: (r.date, r.task))
    return out


def build_report(records: Iterable[TimeRecord], period: PeriodRange, project: Optional[str] = None) -> Report:
    rows = filter_records(records, period, project)
    return Report(period=period, project=project, rows=rows, total_ms=sum(r.duration_ms for r in rows))


def render_report_text(rep: Report) -> str:
    lines: list[str] = []
    suffix = f" for project {emph(rep.project)}" if rep.project else ""
    lines.append(f"{emph(rep.title)}{suffix} ({rep.period.start}..{rep.period.end})")

    task_w = max([len("TASK")] + [len(r.task) for r in rep.rows])
    proj_w = max([len("PROJECT")] + [len(r.project or "-") for r in rep.rows])
    rule = f"{'-' * task_w}  {'-' * proj_w}  {'-' * 10}  {'-' * 10}"

    lines.append(f"{'TASK':<{task_w}}  {'PROJECT':<{proj_w}}  {'DATE':<10}  {'DURATION':>10}")
    lines.append(rule)
    for r in rep.rows:
        lines.append(
            f"{r.task:<{task_w}}  {(r.project or '-'):<{proj_w}}  {r.date.isoformat():<10}  "
            f"{format_duration(r.duration_ms):>10}"
        )
    lines.append(rule)
    lines.append(f"{'TOTAL':<{task_w}}  {'':<{proj_w}}  {'':<10}  {format_duration(rep.total_ms):>10}")
    return "\n".join(lines)
