from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from .errors import NoRecordsInPeriodError
from .models import PeriodRange, PluginDescriptor, PluginResult
from .periods import resolve
from .plugins import PluginRunner
from .report import filter_records
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadOutcome:
    plugin: PluginDescriptor
    period: PeriodRange
    record_count: int
    result: PluginResult
    skipped: int = 0


def upload_period(
    store: RecordStore,
    runner: PluginRunner,
    token: str,
    now: Union[date, datetime],
    plugin_name: Optional[str] = None,
    dry_run: bool = False,
) -> UploadOutcome:
    """Hand the records of one period to a plugin.

    An empty period fails before any plugin is looked up or started.
    """
    period = resolve(token, now)
    loaded = store.load_all()
    records = filter_records(loaded.records, period)
    if not records:
        raise NoRecordsInPeriodError(f"no records in selected period ({period.label}, {period.start}..{period.end})")

    plugin = runner.select(plugin_name, runner.discover())
    logger.info("uploading %d records for %s via %s%s", len(records), token, plugin.name, " (dry run)" if dry_run else "")
    result = runner.execute(plugin, records, period.token, dry_run)
    return UploadOutcome(
        plugin=plugin,
        period=period,
        record_count=len(records),
        result=result,
        skipped=loaded.skipped,
    )
