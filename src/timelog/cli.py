from __future__ import annotations

import argparse
import logging
import sys
from datetime import date

from .config import Settings, load_settings
from .errors import AmbiguousMatchError, NoActiveTaskError, TimelogError
from .periods import PERIOD_TOKENS, resolve
from .plugins import PLUGIN_PREFIX, SubprocessPluginRunner
from .report import build_report, render_report_text
from .state import FileStateStorage, TimerMachine
from .store import RecordChanges, RecordStore
from .upload import upload_period
from .utils import emph, format_hms_ms, utc_now

logger = logging.getLogger(__name__)

_PERIOD_HELP = "Period: " + ", ".join(PERIOD_TOKENS) + "."


def _parse_date(s: str) -> date:
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date format {s!r}; use YYYY-MM-DD") from None


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="timelog",
        description="Track time spent on tasks and report it by period.",
    )
    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr.")

    sub = p.add_subparsers(dest="cmd", required=False)

    # timer
    pst = sub.add_parser("start", help="Start tracking a task.")
    pst.add_argument("task", help="Task name, e.g. 'PROJ-123: fix bug'.")
    pst.add_argument("-p", "--project", default=None, help="Optional project label.")
    sub.add_parser("pause", help="Pause the running task.")
    sub.add_parser("resume", help="Resume the paused task.")
    sub.add_parser("stop", help="Stop the running task and record it.")
    sub.add_parser("status", help="Show the task in progress.")

    # report
    prp = sub.add_parser("report", help="Report recorded time for a period.")
    prp.add_argument("period", metavar="PERIOD", help=_PERIOD_HELP)
    prp.add_argument("-p", "--project", default=None, help="Only include this project.")

    # amend
    pa = sub.add_parser("amend", help="Correct one recorded entry.")
    pa.add_argument("date", type=_parse_date, help="Date of the entry (YYYY-MM-DD).")
    pa.add_argument("task", help="Case-sensitive substring of the task name; must match exactly one entry.")
    pa.add_argument("--new-task", default=None, help="Replace the task name.")
    pa.add_argument("--new-duration", type=int, default=None, metavar="MINUTES", help="Replace the duration (minutes).")
    pa.add_argument("--new-project", default=None, help="Replace the project; pass '' to clear it.")
    pa.add_argument("--dry-run", action="store_true", help="Show the change without writing it.")

    # upload
    pu = sub.add_parser("upload", help="Send a period's records to an upload plugin.")
    pu.add_argument("period", nargs="?", default=None, metavar="PERIOD", help=_PERIOD_HELP)
    pu.add_argument("--plugin", default=None, help="Plugin name (needed when several are installed).")
    pu.add_argument("--dry-run", action="store_true", help="Ask the plugin to preview instead of uploading.")
    pu.add_argument("--list-plugins", action="store_true", help="List installed plugins and exit.")
    return p


def _configure_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    logging.getLogger("timelog").setLevel(level)


def _warn(msg: str) -> None:
    print(f"warning: {msg}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    from . import __version__
    argv = argv if argv is not None else sys.argv[1:]
    p = _parser()
    args = p.parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    if args.cmd is None:
        p.print_help()
        return 0

    settings = load_settings()
    _configure_logging(settings, args.verbose)

    store = RecordStore(settings.record_path)
    try:
        if args.cmd in ("start", "pause", "resume", "stop", "status"):
            machine = TimerMachine(FileStateStorage(settings.state_path), store, clock=utc_now)
            return _cmd_timer(machine, args)
        if args.cmd == "report":
            return _cmd_report(store, args)
        if args.cmd == "amend":
            return _cmd_amend(store, args)
        if args.cmd == "upload":
            return _cmd_upload(store, settings, args)
    except TimelogError as exc:
        logger.debug("command %s failed", args.cmd, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code

    p.print_help()
    return 2


def _project_info(project: str | None) -> str:
    return f" in project {emph(project)}" if project else ""


def _cmd_timer(machine: TimerMachine, args) -> int:
    if args.cmd == "start":
        if not args.task.strip():
            print("error: task name must not be empty", file=sys.stderr)
            return 2
        state = machine.start(args.task, args.project)
        print(f"started {emph(state.task)}{_project_info(state.project)}")
        return 0

    if args.cmd == "pause":
        state = machine.pause()
        print(f"paused {emph(state.task)}  (elapsed {format_hms_ms(state.accumulated_ms)})")
        return 0

    if args.cmd == "resume":
        state = machine.resume()
        print(f"resumed {emph(state.task)}")
        return 0

    if args.cmd == "stop":
        rec = machine.stop()
        print(f"recorded {emph(rec.task)}{_project_info(rec.project)}  {format_hms_ms(rec.duration_ms)} on {rec.date}")
        return 0

    # status
    st = machine.status()
    if st is None:
        raise NoActiveTaskError("no task in progress")
    s = st.state
    if s.is_active and s.started_at is not None:
        since = s.started_at.astimezone().isoformat(timespec="seconds")
        print(f"{emph('active')}  {format_hms_ms(st.elapsed_ms)}  since {since}  -  task: {emph(s.task)}{_project_info(s.project)}")
    else:
        print(f"{emph('paused')}  accumulated {format_hms_ms(st.elapsed_ms)}  -  task: {emph(s.task)}{_project_info(s.project)}")
    return 0


def _cmd_report(store: RecordStore, args) -> int:
    period = resolve(args.period, utc_now())
    loaded = store.load_all()
    if loaded.skipped:
        _warn(f"skipped {loaded.skipped} malformed row(s) in {store.path}")
    rep = build_report(loaded.records, period, args.project)
    if not rep.rows:
        _warn("no records in selected period")
        return 0
    print(render_report_text(rep))
    return 0


def _describe(rec) -> str:
    proj = f" (project: {rec.project})" if rec.project else ""
    return f"{rec.date} - {rec.task} - {format_hms_ms(rec.duration_ms)}{proj}"


def _cmd_amend(store: RecordStore, args) -> int:
    changes = RecordChanges(task=args.new_task, duration_minutes=args.new_duration, project=args.new_project)
    try:
        res = store.amend(args.date, args.task, changes, dry_run=args.dry_run)
    except AmbiguousMatchError as exc:
        _warn(f"found {len(exc.candidates)} matching records:")
        for rec in exc.candidates:
            print(f"  {_describe(rec)}", file=sys.stderr)
        raise

    print("Found record to amend:")
    print(f"  {_describe(res.original)}")
    print()
    print("Changes to apply:")
    for line in res.changes:
        print(f"  {line}")
    if not res.applied:
        print("Dry run mode - no changes were made")
        return 0
    print(f"Successfully amended record for {res.amended.date} - {res.amended.task}")
    return 0


def _cmd_upload(store: RecordStore, settings: Settings, args) -> int:
    runner = SubprocessPluginRunner(settings.plugin_dir, timeout=settings.plugin_timeout)

    if args.list_plugins:
        plugins = runner.discover()
        if not plugins:
            print("No plugins found")
            print(f"Place plugin scripts in: {settings.plugin_dir}")
            print(f"Plugin scripts should be named '{PLUGIN_PREFIX}<name>' and be executable")
            return 0
        print("Available plugins:")
        for plugin in plugins:
            print(f"  • {plugin.name}")
            if plugin.config_warning:
                _warn(plugin.config_warning)
        return 0

    if args.period is None:
        print("error: PERIOD is required unless --list-plugins is given", file=sys.stderr)
        return 2

    out = upload_period(store, runner, args.period, utc_now(), plugin_name=args.plugin, dry_run=args.dry_run)
    if out.skipped:
        _warn(f"skipped {out.skipped} malformed row(s) in {store.path}")
    if out.plugin.config_warning:
        _warn(out.plugin.config_warning)

    print(f"Executed plugin: {emph(out.plugin.name)} ({out.record_count} records, {out.period.label})")
    if args.dry_run:
        print("(dry run mode)")

    result = out.result
    if not result.success:
        _warn(f"plugin reported failure: {result.message}")
        for err in result.errors:
            _warn(f"  {err}")
        return 1

    print(result.message)
    print(f"Processed {result.uploaded_count} records")
    if result.errors:
        _warn("some warnings occurred:")
        for err in result.errors:
            _warn(f"  {err}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
