from datetime import date

from timelog.models import TimeRecord
from timelog.periods import resolve
from timelog.report import build_report, filter_records, render_report_text

TODAY = date(2024, 1, 17)
RECORDS = [
    TimeRecord("zeta", 60_000, TODAY, "alpha"),
    TimeRecord("alpha", 3_600_000, TODAY),
    TimeRecord("early", 1000, date(2024, 1, 15), "alpha"),
    TimeRecord("old", 5000, date(2023, 12, 31)),
]


def test_filter_by_period_sorted_by_date_then_task():
    rows = filter_records(RECORDS, resolve("this-week", TODAY))
    assert [r.task for r in rows] == ["early", "alpha", "zeta"]

def test_filter_by_project():
    rows = filter_records(RECORDS, resolve("ytd", TODAY), project="alpha")
    assert [r.task for r in rows] == ["early", "zeta"]

def test_build_report_totals():
    rep = build_report(RECORDS, resolve("today", TODAY))
    assert rep.total_ms == 3_660_000
    assert rep.title == "Today report"

def test_render_report_text():
    text = render_report_text(build_report(RECORDS, resolve("this-week", TODAY)))
    lines = text.splitlines()
    assert lines[0] == "This Week report (2024-01-15..2024-01-17)"
    assert lines[1].split() == ["TASK", "PROJECT", "DATE", "DURATION"]
    assert "early" in lines[3] and "00h00m01s" in lines[3]
    assert lines[4].split() == ["alpha", "-", "2024-01-17", "01h00m"]
    assert lines[-1].split() == ["TOTAL", "01h01m01s"]

def test_render_mentions_project_filter():
    text = render_report_text(build_report(RECORDS, resolve("today", TODAY), project="alpha"))
    assert text.splitlines()[0].startswith("Today report for project alpha")
