"""Day arithmetic and report window resolution."""
from __future__ import annotations

import logging
import os
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import RangeWindow, ReportRange, Session

logger = logging.getLogger(__name__)


def local_zone(name: str | None = None) -> tzinfo:
    """Resolve the reporting time zone.

    An IANA key in ``name`` wins, then the ``TZ`` environment variable. When
    neither names a known zone the current system UTC offset is used, which
    does not follow daylight saving changes.
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown time zone '%s'; using the system zone", name)
    env_key = os.environ.get("TZ", "").lstrip(":")
    if env_key:
        try:
            return ZoneInfo(env_key)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("TZ='%s' is not an IANA key; using the fixed offset", env_key)
    return datetime.now().astimezone().tzinfo


def local_now(name: str | None = None) -> datetime:
    return datetime.now(local_zone(name))


def _tz(reference: datetime) -> tzinfo | None:
    return reference.tzinfo


def to_local(value: datetime, reference: datetime) -> datetime:
    """Express ``value`` in the time zone of ``reference``.

    Naive timestamps are taken to already be in that zone.
    """
    zone = _tz(reference)
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    if zone is None:
        return value.astimezone().replace(tzinfo=None)
    return value.astimezone(zone)


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=_tz(value))


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.max, tzinfo=_tz(value))


def add_days(value: datetime, days: int) -> datetime:
    """Shift by calendar days keeping the wall-clock time."""
    shifted = value.date() + timedelta(days=days)
    return datetime.combine(shifted, value.timetz())


def count_days(start: datetime, end: datetime) -> int:
    return max(1, (end.date() - start.date()).days + 1)


def iter_days(start: datetime, end: datetime) -> Iterator[date]:
    current = start.date()
    boundary = end.date()
    while current <= boundary:
        yield current
        current += timedelta(days=1)


def days_in_month(value: datetime) -> int:
    first = value.date().replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    return (next_month - first).days


def in_window(value: datetime, start: datetime, end: datetime) -> bool:
    return start <= value <= end


def threshold_for_range(range_: ReportRange, now: datetime) -> datetime | None:
    """Return the oldest start time still inside ``range_``.

    ``ALL`` has no threshold.
    """
    if range_ is ReportRange.ALL:
        return None
    if range_ is ReportRange.YEAR_TO_DATE:
        return datetime.combine(date(now.year, 1, 1), time.min, tzinfo=_tz(now))
    return start_of_day(add_days(now, -(range_.span_days - 1)))


def resolve_window(
    range_: ReportRange,
    sessions: Iterable[Session],
    now: datetime,
) -> RangeWindow:
    """Resolve the current window and its equal-length predecessor."""
    end = end_of_day(now)

    if range_ is ReportRange.ALL:
        dates = [
            to_local(s.started_at, now) for s in sessions if s.started_at is not None
        ]
        earliest = min(dates) if dates else now
        # Sessions stamped after now still leave a one-day window
        start = min(start_of_day(earliest), start_of_day(now))
        return RangeWindow(start=start, end=end)

    start = threshold_for_range(range_, now)
    days = count_days(start, end)
    previous_end = end_of_day(add_days(start, -1))
    previous_start = start_of_day(add_days(previous_end, -(days - 1)))
    return RangeWindow(
        start=start,
        end=end,
        previous_start=previous_start,
        previous_end=previous_end,
    )
