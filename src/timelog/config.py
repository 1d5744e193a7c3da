from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

RECORD_PATH_ENV = "TIMELOG_RECORD_PATH"
STATE_PATH_ENV = "TIMELOG_STATE_PATH"
PLUGIN_PATH_ENV = "TIMELOG_PLUGIN_PATH"
PLUGIN_TIMEOUT_ENV = "TIMELOG_PLUGIN_TIMEOUT"
LOG_LEVEL_ENV = "TIMELOG_LOG_LEVEL"

DEFAULT_LOG_LEVEL = "WARNING"


@dataclass(frozen=True)
class Settings:
    record_path: Path
    state_path: Path
    plugin_dir: Path
    plugin_timeout: Optional[float] = None
    log_level: str = DEFAULT_LOG_LEVEL


def _env(environ: Mapping[str, str], key: str) -> Optional[str]:
    value = environ.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _path(environ: Mapping[str, str], key: str, default: Path) -> Path:
    value = _env(environ, key)
    if value is None:
        return default
    return Path(value).expanduser()


def _timeout(environ: Mapping[str, str]) -> Optional[float]:
    raw = _env(environ, PLUGIN_TIMEOUT_ENV)
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("ignoring %s=%r: not a number", PLUGIN_TIMEOUT_ENV, raw)
        return None
    if value <= 0:
        logger.warning("ignoring %s=%r: must be positive", PLUGIN_TIMEOUT_ENV, raw)
        return None
    return value


def _log_level(environ: Mapping[str, str]) -> str:
    raw = _env(environ, LOG_LEVEL_ENV)
    if raw is None:
        return DEFAULT_LOG_LEVEL
    name = raw.upper()
    if not isinstance(logging.getLevelName(name), int):
        return DEFAULT_LOG_LEVEL
    return name


def load_settings(environ: Optional[Mapping[str, str]] = None, home: Optional[Path] = None) -> Settings:
    """Resolve file locations and options from the environment.

    Defaults live directly under the user's home directory.
    """
    environ = environ if environ is not None else os.environ
    home = home if home is not None else Path.home()
    return Settings(
        record_path=_path(environ, RECORD_PATH_ENV, home / ".timelog-record"),
        state_path=_path(environ, STATE_PATH_ENV, home / ".timelog-state"),
        plugin_dir=_path(environ, PLUGIN_PATH_ENV, home / ".timelog" / "plugins"),
        plugin_timeout=_timeout(environ),
        log_level=_log_level(environ),
    )
