"""Entry point computing one owner report per query."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List

from .data import SessionSource, StationSource
from .models import ReportMetrics, ReportQuery, Station
from .paginate import MAX_PAGES, PAGE_SIZE, fetch_sessions_for_range
from .report import build_report_metrics, empty_report_metrics
from .windows import local_now

logger = logging.getLogger(__name__)


@dataclass
class PaginationOptions:
    page_size: int = PAGE_SIZE
    max_pages: int = MAX_PAGES
    # Disable when the history source does not guarantee newest-first order
    assume_newest_first: bool = True


def _load_stations(source: StationSource, org_id: str | None) -> List[Station]:
    try:
        return source.fetch_stations(org_id)
    except Exception:
        logger.exception("Failed to load stations for org %s", org_id)
        return []


def compute_owner_report(
    query: ReportQuery,
    sessions: SessionSource,
    stations: StationSource,
    *,
    options: PaginationOptions | None = None,
    now: datetime | None = None,
) -> ReportMetrics:
    """Fetch the session history for ``query`` and build its report.

    A query without a viewer yields the empty report without touching the
    sources. Session fetch errors propagate as
    :class:`~evzone_reports.data.ReportFetchError`; a failed station fetch
    is logged and treated as no stations known.
    """
    if now is None:
        now = local_now()
    if not query.viewer_id:
        logger.info("No viewer identity; returning empty %s report", query.range.value)
        return empty_report_metrics(query.range, now)

    options = options or PaginationOptions()
    start = time.monotonic()
    history = fetch_sessions_for_range(
        sessions,
        query.range,
        now=now,
        page_size=options.page_size,
        max_pages=options.max_pages,
        assume_newest_first=options.assume_newest_first,
    )
    station_list = _load_stations(stations, query.org_id)
    metrics = build_report_metrics(
        history,
        station_list,
        range_=query.range,
        capability=query.capability,
        now=now,
    )
    logger.info(
        "Computed %s report for viewer %s: %d sessions, revenue %.2f in %.2fs",
        query.range.value,
        query.viewer_id,
        metrics.total_sessions,
        metrics.total_revenue,
        time.monotonic() - start,
    )
    return metrics
