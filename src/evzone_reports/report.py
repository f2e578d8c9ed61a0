"""Assemble owner report metrics from a session and station snapshot."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Sequence

from . import stats
from .capability import filter_by_capability
from .export import build_export_rows
from .models import (
    ChartPoint,
    Forecast,
    OwnerCapability,
    RangeWindow,
    ReportMetrics,
    ReportRange,
    ReportSummary,
    Session,
    Station,
)
from .windows import (
    count_days,
    days_in_month,
    in_window,
    iter_days,
    local_now,
    resolve_window,
    to_local,
)

logger = logging.getLogger(__name__)

_WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = [
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
]


def format_bucket_label(day: date, range_: ReportRange) -> str:
    if range_ is ReportRange.LAST_7_DAYS:
        return _WEEKDAYS[day.weekday()]
    return f"{_MONTHS[day.month - 1]} {day.day}"


def build_buckets(
    window: RangeWindow,
    range_: ReportRange,
    sessions: Iterable[Session] = (),
    now: datetime | None = None,
) -> List[ChartPoint]:
    """Return one chart point per calendar day of ``window``.

    ``sessions`` are folded into the day they started on; those falling
    outside the window are ignored. Utilization is relative to the busiest
    day of the window.
    """
    reference = now or window.end
    days = list(iter_days(window.start, window.end))
    revenue: Dict[str, float] = {d.isoformat(): 0.0 for d in days}
    counts: Dict[str, int] = {d.isoformat(): 0 for d in days}

    for s in sessions:
        if s.started_at is None:
            continue
        key = to_local(s.started_at, reference).date().isoformat()
        if key not in counts:
            continue
        revenue[key] += s.cost
        counts[key] += 1

    busiest = max(counts.values(), default=0)
    points: List[ChartPoint] = []
    for d in days:
        key = d.isoformat()
        utilization = stats.round_half_up(counts[key] / busiest * 100) if busiest else 0
        points.append(
            ChartPoint(
                date_key=key,
                label=format_bucket_label(d, range_),
                revenue=revenue[key],
                session_count=counts[key],
                utilization_pct=utilization,
            )
        )
    return points


def sessions_in_window(
    sessions: Iterable[Session], start: datetime, end: datetime
) -> List[Session]:
    return [
        s
        for s in sessions
        if s.started_at is not None and in_window(to_local(s.started_at, end), start, end)
    ]


def empty_report_metrics(range_: ReportRange, now: datetime | None = None) -> ReportMetrics:
    """Zero-activity result with a fully built, zero-filled series."""
    if now is None:
        now = local_now()
    window = resolve_window(range_, [], now)
    return ReportMetrics(
        range=range_,
        chart_data=tuple(build_buckets(window, range_, now=now)),
        summary=ReportSummary(),
        forecast=Forecast(),
        heatmap=tuple(stats.empty_heatmap()),
        export_rows=(),
        filtered_sessions=(),
        total_revenue=0.0,
        total_sessions=0,
        window_start=window.start,
        window_end=window.end,
        has_data=False,
    )


def build_report_metrics(
    sessions: Sequence[Session],
    stations: Sequence[Station] = (),
    range_: ReportRange = ReportRange.LAST_7_DAYS,
    capability: OwnerCapability | None = None,
    now: datetime | None = None,
) -> ReportMetrics:
    """Compute the full owner report for one point in time.

    Stages run in order: capability scoping, window resolution, bucketing,
    then the comparative KPIs, forecast, heatmap and export rows. The
    inputs are not modified.
    """
    if now is None:
        now = local_now()

    scoped_sessions, scoped_stations = filter_by_capability(sessions, stations, capability)
    if not scoped_sessions and not scoped_stations:
        logger.info("No sessions or stations in scope; returning empty %s report", range_.value)
        return empty_report_metrics(range_, now)

    window = resolve_window(range_, scoped_sessions, now)
    current = sessions_in_window(scoped_sessions, window.start, window.end)
    previous: List[Session] = []
    if window.has_previous:
        previous = sessions_in_window(scoped_sessions, window.previous_start, window.previous_end)

    chart_data = build_buckets(window, range_, current, now)

    days = count_days(window.start, window.end)
    revenue = stats.total_revenue(current)
    average = revenue / days
    previous_days = (
        count_days(window.previous_start, window.previous_end) if window.has_previous else days
    )
    previous_average = stats.total_revenue(previous) / previous_days

    hour, hour_sessions = stats.busiest_hour(current, now)
    reliability = stats.energy_reliability(current)
    churn_delta, churn_label = stats.churn(current, previous)

    summary = ReportSummary(
        average_revenue_per_day=average,
        average_revenue_delta_pct=stats.percent_delta(average, previous_average),
        busiest_hour=stats.format_hour(hour),
        busiest_hour_sessions=hour_sessions,
        energy_reliability_pct=reliability,
        energy_reliability_label=stats.reliability_label(reliability),
        churn_risk_label=churn_label,
        churn_delta_pct=churn_delta,
    )

    logger.debug(
        "Range %s window %s..%s: %d current, %d previous sessions",
        range_.value,
        window.start.isoformat(),
        window.end.isoformat(),
        len(current),
        len(previous),
    )

    return ReportMetrics(
        range=range_,
        chart_data=tuple(chart_data),
        summary=summary,
        forecast=stats.forecast(average, previous_average, days_in_month(now)),
        heatmap=tuple(stats.heatmap(current, scoped_stations)),
        export_rows=tuple(build_export_rows(current, now)),
        filtered_sessions=tuple(current),
        total_revenue=revenue,
        total_sessions=len(current),
        window_start=window.start,
        window_end=window.end,
        has_data=bool(current),
    )
