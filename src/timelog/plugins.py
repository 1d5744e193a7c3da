"""Uploader plugins: external executables that speak JSON over stdio.

A plugin lives in the plugin directory as an executable file named
``timelog-<name>``. An optional ``timelog-<name>.json`` next to it holds
its configuration. The plugin reads one JSON document from stdin::

    {"records": [...], "period": "...", "config": {...}}

and prints one JSON document to stdout::

    {"success": true, "uploaded_count": 2, "message": "...", "errors": []}

A non-zero exit status is a failure whatever the plugin printed.
"""

from __future__ import annotations

import json
import logging
import stat
import subprocess
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from .errors import (
    AmbiguousPluginError,
    InvalidPluginOutputError,
    PluginFailedError,
    PluginNotFoundError,
    StorageError,
)
from .models import PluginDescriptor, PluginResult, TimeRecord

logger = logging.getLogger(__name__)

PLUGIN_PREFIX = "timelog-"
CONFIG_SUFFIX = ".json"
DRY_RUN_FLAG = "--dry-run"

_STDERR_TAIL = 500


def _is_executable(path: Path) -> bool:
    try:
        st = path.stat()
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode) and bool(st.st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def _load_config(path: Path) -> tuple[dict[str, Any], Optional[str]]:
    if not path.exists():
        return {}, None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        return {}, f"unable to read plugin config {path}: {exc}"
    except json.JSONDecodeError as exc:
        return {}, f"invalid JSON in plugin config {path}: {exc}"
    if not isinstance(data, dict):
        return {}, f"plugin config {path} must contain a JSON object"
    return data, None


def list_plugins(plugin_dir: Path) -> list[PluginDescriptor]:
    """Find the plugins in ``plugin_dir``, sorted by name.

    Files without the prefix, config files, directories and files without an
    execute bit are left out silently. A broken config file does not hide
    the plugin; it is reported through ``config_warning``.
    """
    plugin_dir = Path(plugin_dir)
    if not plugin_dir.is_dir():
        return []

    found: list[PluginDescriptor] = []
    for path in plugin_dir.iterdir():
        name = path.name
        if not name.startswith(PLUGIN_PREFIX) or name.endswith(CONFIG_SUFFIX):
            continue
        short = name[len(PLUGIN_PREFIX):]
        if not short or not _is_executable(path):
            continue
        config, warning = _load_config(path.with_name(name + CONFIG_SUFFIX))
        if warning:
            logger.debug("%s", warning)
        found.append(PluginDescriptor(name=short, path=path, config=config, config_warning=warning))
    found.sort(key=lambda p: p.name)
    return found


def select_plugin(requested: Optional[str], available: Sequence[PluginDescriptor]) -> PluginDescriptor:
    if requested:
        for plugin in available:
            if plugin.name == requested:
                return plugin
        raise PluginNotFoundError(f"plugin {requested!r} not found; use --list-plugins to see what is installed")
    if len(available) == 1:
        return available[0]
    if not available:
        raise PluginNotFoundError("no plugins available; use --list-plugins to see setup instructions")
    raise AmbiguousPluginError([p.name for p in available])


def build_payload(records: Sequence[TimeRecord], period_label: str, config: dict[str, Any]) -> dict[str, Any]:
    return {
        "records": [r.to_payload() for r in records],
        "period": period_label,
        "config": config,
    }


def _tail(text: str) -> str:
    text = text.strip()
    if len(text) > _STDERR_TAIL:
        return "..." + text[-_STDERR_TAIL:]
    return text


def parse_result(stdout: str) -> PluginResult:
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise InvalidPluginOutputError(f"failed to parse plugin output: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidPluginOutputError("plugin output must be a JSON object")

    success = data.get("success")
    message = data.get("message")
    errors = data.get("errors", [])
    count = data.get("uploaded_count")
    if count is None:
        count = 0
    if not isinstance(success, bool):
        raise InvalidPluginOutputError("plugin output is missing a boolean 'success'")
    if not isinstance(message, str):
        raise InvalidPluginOutputError("plugin output is missing a string 'message'")
    if not isinstance(errors, list) or not all(isinstance(e, str) for e in errors):
        raise InvalidPluginOutputError("plugin output 'errors' must be a list of strings")
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        raise InvalidPluginOutputError("plugin output 'uploaded_count' must be a non-negative integer")
    return PluginResult(success=success, uploaded_count=count, message=message, errors=list(errors))


def run(
    plugin: PluginDescriptor,
    records: Sequence[TimeRecord],
    period_label: str,
    dry_run: bool,
    timeout: Optional[float] = None,
) -> PluginResult:
    """Execute ``plugin`` once with the given records and return its parsed result.

    The whole payload is written before any output is read. ``timeout`` is
    off unless configured.
    """
    argv = [str(plugin.path)]
    if dry_run:
        argv.append(DRY_RUN_FLAG)
    payload = json.dumps(build_payload(records, period_label, plugin.config)).encode("utf-8")

    logger.debug("running %s with %d records", argv, len(records))
    try:
        proc = subprocess.run(
            argv,
            input=payload,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise PluginFailedError(f"plugin {plugin.name!r} did not finish within {timeout:g}s") from exc
    except OSError as exc:
        raise StorageError(f"failed to start plugin {plugin.name!r}: {exc}") from exc

    stderr = (proc.stderr or b"").decode("utf-8", errors="replace")
    if proc.returncode != 0:
        detail = _tail(stderr)
        msg = f"plugin {plugin.name!r} failed with exit code {proc.returncode}"
        if detail:
            msg += f": {detail}"
        raise PluginFailedError(msg, returncode=proc.returncode, stderr=stderr)

    if stderr:
        logger.debug("plugin %s stderr: %s", plugin.name, _tail(stderr))
    try:
        stdout = proc.stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidPluginOutputError(f"plugin output is not valid UTF-8: {exc}") from exc
    return parse_result(stdout)


class PluginRunner(Protocol):
    def discover(self) -> list[PluginDescriptor]: ...

    def select(self, requested: Optional[str], available: Sequence[PluginDescriptor]) -> PluginDescriptor: ...

    def execute(
        self,
        plugin: PluginDescriptor,
        records: Sequence[TimeRecord],
        period_label: str,
        dry_run: bool,
    ) -> PluginResult: ...


class SubprocessPluginRunner:
    def __init__(self, plugin_dir: Path, timeout: Optional[float] = None):
        self.plugin_dir = Path(plugin_dir)
        self.timeout = timeout

    def discover(self) -> list[PluginDescriptor]:
        return list_plugins(self.plugin_dir)

    def select(self, requested: Optional[str], available: Sequence[PluginDescriptor]) -> PluginDescriptor:
        return select_plugin(requested, available)

    def execute(
        self,
        plugin: PluginDescriptor,
        records: Sequence[TimeRecord],
        period_label: str,
        dry_run: bool,
    ) -> PluginResult:
        return run(plugin, records, period_label, dry_run, timeout=self.timeout)
