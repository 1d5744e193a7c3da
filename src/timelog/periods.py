"""Named reporting periods.

Every range is inclusive on both ends and anchored to the local calendar
date of ``now``. Weeks start on Monday.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable, Union

from .errors import InvalidPeriodError
from .models import PeriodRange

DateLike = Union[date, datetime]


def _today(d: date) -> tuple[date, date]:
    return d, d


def _yesterday(d: date) -> tuple[date, date]:
    y = d - timedelta(days=1)
    return y, y


def _week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def _this_week(d: date) -> tuple[date, date]:
    return _week_start(d), d


def _last_week(d: date) -> tuple[date, date]:
    start = _week_start(d)
    return start - timedelta(days=7), start - timedelta(days=1)


def _this_month(d: date) -> tuple[date, date]:
    return d.replace(day=1), d


def _last_month(d: date) -> tuple[date, date]:
    end = d.replace(day=1) - timedelta(days=1)
    return end.replace(day=1), end


def _ytd(d: date) -> tuple[date, date]:
    return date(d.year, 1, 1), d


def _last_year(d: date) -> tuple[date, date]:
    return date(d.year - 1, 1, 1), date(d.year - 1, 12, 31)


_PERIODS: dict[str, tuple[str, Callable[[date], tuple[date, date]]]] = {
    "today": ("Today", _today),
    "yesterday": ("Yesterday", _yesterday),
    "this-week": ("This Week", _this_week),
    "last-week": ("Last Week", _last_week),
    "this-month": ("This Month", _this_month),
    "last-month": ("Last Month", _last_month),
    "ytd": ("Year To Date", _ytd),
    "last-year": ("Last Year", _last_year),
}

PERIOD_TOKENS: tuple[str, ...] = tuple(_PERIODS)


def local_date(now: DateLike) -> date:
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            now = now.astimezone()
        return now.date()
    return now


def resolve(token: str, now: DateLike) -> PeriodRange:
    """Map a period token to its date range relative to ``now``.

    Only the exact lowercase tokens in :data:`PERIOD_TOKENS` are accepted.
    """
    try:
        label, fn = _PERIODS[token]
    except KeyError:
        raise InvalidPeriodError(token, PERIOD_TOKENS) from None
    start, end = fn(local_date(now))
    return PeriodRange(start=start, end=end, label=label, token=token)
