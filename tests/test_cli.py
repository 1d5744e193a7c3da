import os
import sys
import textwrap
from datetime import datetime, timedelta, timezone

import pytest

import timelog.cli as cli
from timelog import __version__
from timelog.models import TimeRecord
from timelog.periods import local_date
from timelog.store import RecordStore

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = T0

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("TIMELOG_RECORD_PATH", str(tmp_path / "records.csv"))
    monkeypatch.setenv("TIMELOG_STATE_PATH", str(tmp_path / "state.json"))
    monkeypatch.setenv("TIMELOG_PLUGIN_PATH", str(tmp_path / "plugins"))
    monkeypatch.delenv("TIMELOG_PLUGIN_TIMEOUT", raising=False)
    (tmp_path / "plugins").mkdir()
    return tmp_path


@pytest.fixture
def clock(monkeypatch):
    c = FakeClock()
    monkeypatch.setattr(cli, "utc_now", c)
    return c


def run(capsys, *argv):
    code = cli.main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


def _plugin(env, name, body):
    path = env / "plugins" / f"timelog-{name}"
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
    os.chmod(path, 0o755)
    return path


def test_version(capsys):
    code, out, _ = run(capsys, "--version")
    assert code == 0
    assert out.strip() == __version__

def test_no_command_prints_help(capsys):
    code, out, _ = run(capsys)
    assert code == 0
    assert "usage: timelog" in out

def test_start_stop_report_end_to_end(env, clock, capsys):
    code, out, _ = run(capsys, "start", "writing tests")
    assert code == 0
    assert "started writing tests" in out
    assert (env / "state.json").exists()

    clock.advance(seconds=90)
    code, out, _ = run(capsys, "stop")
    assert code == 0
    assert "recorded writing tests  00:01:30.000" in out
    assert not (env / "state.json").exists()

    code, out, _ = run(capsys, "report", "today")
    assert code == 0
    assert "writing tests" in out
    assert out.splitlines()[-1].split() == ["TOTAL", "00h01m30s"]

def test_start_twice_fails(env, clock, capsys):
    run(capsys, "start", "first", "-p", "alpha")
    code, _, err = run(capsys, "start", "second")
    assert code == 1
    assert "already in progress" in err
    code, out, _ = run(capsys, "status")
    assert "task: first in project alpha" in out

def test_start_rejects_blank_task(env, clock, capsys):
    code, _, err = run(capsys, "start", "   ")
    assert code == 2
    assert not (env / "state.json").exists()

def test_pause_resume_status(env, clock, capsys):
    run(capsys, "start", "focus")
    clock.advance(seconds=10)
    code, out, _ = run(capsys, "pause")
    assert code == 0
    assert "paused focus  (elapsed 00:00:10.000)" in out

    clock.advance(minutes=5)
    code, out, _ = run(capsys, "status")
    assert out.startswith("paused  accumulated 00:00:10.000")

    code, _, err = run(capsys, "stop")
    assert code == 1
    assert "resume" in err

    run(capsys, "resume")
    clock.advance(seconds=5)
    code, out, _ = run(capsys, "status")
    assert out.startswith("active  00:00:15.000")

    code, out, _ = run(capsys, "stop")
    assert "00:00:15.000" in out

def test_state_machine_misuse_exits_nonzero(env, clock, capsys):
    for cmd, text in (("pause", "no active task"), ("resume", "no paused task"), ("stop", "no task to stop"), ("status", "no task in progress")):
        code, _, err = run(capsys, cmd)
        assert code == 1
        assert err.startswith("error: ")
        assert text in err

def test_report_rejects_unknown_period(env, clock, capsys):
    code, _, err = run(capsys, "report", "Today")
    assert code == 1
    assert "invalid period 'Today'" in err

def test_report_empty_period_warns(env, clock, capsys):
    code, out, err = run(capsys, "report", "last-year")
    assert code == 0
    assert out == ""
    assert "no records in selected period" in err

def test_report_project_filter_and_skipped_rows(env, clock, capsys):
    day = local_date(T0).isoformat()
    (env / "records.csv").write_text(
        "task,duration_ms,date,project\n"
        f"a,60000,{day},alpha\n"
        f"b,120000,{day},beta\n"
        "broken,row\n",
        encoding="utf-8",
    )
    code, out, err = run(capsys, "report", "today", "--project", "alpha")
    assert code == 0
    assert "for project alpha" in out
    assert "\nb " not in out
    assert out.splitlines()[-1].split() == ["TOTAL", "00h01m"]
    assert "skipped 1 malformed row" in err

def test_report_survives_undecodable_row(env, clock, capsys):
    day = local_date(T0).isoformat().encode("ascii")
    (env / "records.csv").write_bytes(
        b"task,duration_ms,date,project\n"
        b"a,60000," + day + b",\n"
        b"bad \xff row,60000," + day + b",\n"
    )
    code, out, err = run(capsys, "report", "today")
    assert code == 0
    assert out.splitlines()[-1].split() == ["TOTAL", "00h01m"]
    assert "skipped 1 malformed row" in err


# ---- amend ----

def _seed(env, *records):
    store = RecordStore(env / "records.csv")
    for rec in records:
        store.append(rec)
    return store

def test_amend_dry_run_then_apply(env, clock, capsys):
    day = local_date(T0)
    store = _seed(env, TimeRecord("PROJ-1: docs", 600_000, day), TimeRecord("PROJ-2: tests", 60_000, day))
    before = store.path.read_bytes()

    code, out, _ = run(capsys, "amend", day.isoformat(), "docs", "--new-duration", "45", "--dry-run")
    assert code == 0
    assert "duration: 00:10:00.000 -> 00:45:00.000" in out
    assert "Dry run mode" in out
    assert store.path.read_bytes() == before

    code, out, _ = run(capsys, "amend", day.isoformat(), "docs", "--new-duration", "45", "--new-project", "alpha")
    assert code == 0
    assert "Successfully amended" in out
    assert store.load_all().records[0] == TimeRecord("PROJ-1: docs", 45 * 60_000, day, "alpha")

def test_amend_ambiguous_and_missing(env, clock, capsys):
    day = local_date(T0)
    _seed(env, TimeRecord("PROJ-1: docs", 1000, day), TimeRecord("PROJ-2: tests", 1000, day))

    code, _, err = run(capsys, "amend", day.isoformat(), "PROJ", "--new-task", "x")
    assert code == 1
    assert "PROJ-1: docs" in err and "PROJ-2: tests" in err

    code, _, err = run(capsys, "amend", day.isoformat(), "nope", "--new-task", "x")
    assert code == 1
    assert "no records found" in err

    code, _, err = run(capsys, "amend", day.isoformat(), "docs")
    assert code == 1
    assert "no changes specified" in err

def test_amend_bad_date_is_usage_error(env, capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["amend", "15/01/2024", "docs", "--new-task", "x"])
    assert exc.value.code == 2
    assert "YYYY-MM-DD" in capsys.readouterr().err


# ---- upload ----

OK_PLUGIN = """
    import json, sys
    data = json.load(sys.stdin)
    print(json.dumps({"success": True, "uploaded_count": len(data["records"]), "message": "uploaded to nowhere", "errors": []}))
"""

def test_list_plugins(env, capsys):
    code, out, _ = run(capsys, "upload", "--list-plugins")
    assert code == 0
    assert "No plugins found" in out
    assert "timelog-<name>" in out

    _plugin(env, "nowhere", OK_PLUGIN)
    (env / "plugins" / "timelog-nowhere.json").write_text("{oops", encoding="utf-8")
    code, out, err = run(capsys, "upload", "--list-plugins")
    assert code == 0
    assert "• nowhere" in out
    assert "warning: invalid JSON in plugin config" in err

def test_upload_success(env, clock, capsys):
    day = local_date(T0)
    _seed(env, TimeRecord("a", 1000, day), TimeRecord("b", 2000, day))
    _plugin(env, "nowhere", OK_PLUGIN)
    code, out, _ = run(capsys, "upload", "today", "--dry-run")
    assert code == 0
    assert "(dry run mode)" in out
    assert "uploaded to nowhere" in out
    assert "Processed 2 records" in out

def test_upload_empty_period_does_not_run_plugin(env, clock, capsys):
    marker = env / "ran"
    _plugin(env, "marker", f"""
        open({str(marker)!r}, "w").close()
        print('{{"success": true, "uploaded_count": 0, "message": "", "errors": []}}')
    """)
    code, _, err = run(capsys, "upload", "today")
    assert code == 1
    assert "no records in selected period" in err
    assert not marker.exists()

def test_upload_plugin_exit_code_wins(env, clock, capsys):
    _seed(env, TimeRecord("a", 1000, local_date(T0)))
    _plugin(env, "bad", """
        import sys
        sys.stdin.read()
        print('{"success": true, "uploaded_count": 1, "message": "ok", "errors": []}')
        sys.exit(3)
    """)
    code, out, err = run(capsys, "upload", "today")
    assert code == 1
    assert "exit code 3" in err
    assert "Processed" not in out

def test_upload_reported_failure_exits_nonzero(env, clock, capsys):
    _seed(env, TimeRecord("a", 1000, local_date(T0)))
    _plugin(env, "sad", """
        import sys
        sys.stdin.read()
        print('{"success": false, "uploaded_count": 0, "message": "auth failed", "errors": ["401"]}')
    """)
    code, _, err = run(capsys, "upload", "today")
    assert code == 1
    assert "auth failed" in err
    assert "401" in err

def test_upload_needs_plugin_choice(env, clock, capsys):
    _seed(env, TimeRecord("a", 1000, local_date(T0)))
    _plugin(env, "one", OK_PLUGIN)
    _plugin(env, "two", OK_PLUGIN)
    code, _, err = run(capsys, "upload", "today")
    assert code == 1
    assert "one, two" in err
    code, out, _ = run(capsys, "upload", "today", "--plugin", "two")
    assert code == 0
    code, _, err = run(capsys, "upload", "today", "--plugin", "three")
    assert code == 1
    assert "'three' not found" in err

def test_upload_requires_period(env, capsys):
    code, _, err = run(capsys, "upload")
    assert code == 2
    assert "PERIOD is required" in err
