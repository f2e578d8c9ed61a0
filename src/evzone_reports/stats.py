import math
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import Forecast, HeatmapCell, HEATMAP_LABELS, Session, Station
from .windows import to_local

COMPLETED_STATUS = "COMPLETED"

RELIABILITY_NOMINAL_PCT = 99
RELIABILITY_STABLE_PCT = 95
CHURN_HIGH_DELTA_PCT = -25
CHURN_MEDIUM_DELTA_PCT = -10


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percent_delta(current: float, previous: float) -> float | None:
    """Relative change in percent; ``None`` when there is no baseline."""
    if previous == 0:
        return 0.0 if current == 0 else None
    return (current - previous) / previous * 100


def total_revenue(sessions: Iterable[Session]) -> float:
    return sum((s.cost for s in sessions), 0.0)


def busiest_hour(sessions: Iterable[Session], now: datetime) -> Tuple[int | None, int]:
    """Return the hour of day with most session starts and its count.

    Ties go to the earliest hour.
    """
    by_hour = [0] * 24
    for s in sessions:
        if s.started_at is None:
            continue
        by_hour[to_local(s.started_at, now).hour] += 1
    hour = None
    count = 0
    for h, value in enumerate(by_hour):
        if value > count:
            hour = h
            count = value
    return hour, count


def format_hour(hour: int | None) -> str:
    if hour is None:
        return "N/A"
    return f"{hour:02d}:00 - {(hour + 1) % 24:02d}:00"


def energy_reliability(sessions: Sequence[Session]) -> float | None:
    if not sessions:
        return None
    completed = sum(1 for s in sessions if s.status == COMPLETED_STATUS)
    return round(completed / len(sessions) * 100, 2)


def reliability_label(value: float | None) -> str:
    if value is None:
        return "N/A"
    if value >= RELIABILITY_NOMINAL_PCT:
        return "Nominal"
    if value >= RELIABILITY_STABLE_PCT:
        return "Stable"
    return "Needs Attention"


def distinct_users(sessions: Iterable[Session]) -> set[str]:
    return {s.user_id for s in sessions if s.user_id}


def churn_risk(delta: float | None, current_users: int, previous_users: int) -> str:
    if current_users == 0 and previous_users == 0:
        return "N/A"
    if delta is None:
        return "Low"
    if delta <= CHURN_HIGH_DELTA_PCT:
        return "High"
    if delta <= CHURN_MEDIUM_DELTA_PCT:
        return "Medium"
    return "Low"


def churn(
    current: Iterable[Session], previous: Iterable[Session]
) -> Tuple[float | None, str]:
    current_users = len(distinct_users(current))
    previous_users = len(distinct_users(previous))
    delta = percent_delta(current_users, previous_users)
    return delta, churn_risk(delta, current_users, previous_users)


def trend(delta: float | None) -> str:
    if delta is None or delta == 0:
        return "flat"
    return "up" if delta > 0 else "down"


def forecast(
    average_per_day: float, previous_average_per_day: float, month_days: int
) -> Forecast:
    """Extrapolate average daily revenue to a full calendar month."""
    estimate = average_per_day * month_days
    previous_estimate = previous_average_per_day * month_days
    delta = percent_delta(estimate, previous_estimate)
    return Forecast(estimated_monthly_close=estimate, delta_pct=delta, trend=trend(delta))


def heatmap(sessions: Sequence[Session], scoped_stations: Sequence[Station]) -> List[HeatmapCell]:
    per_user: Dict[str, int] = {}
    for s in sessions:
        if not s.user_id:
            continue
        per_user[s.user_id] = per_user.get(s.user_id, 0) + 1

    returning = sum(1 for count in per_user.values() if count > 1)
    repeats = sum(max(count - 1, 0) for count in per_user.values())
    returning_pct = round_half_up(returning / len(per_user) * 100) if per_user else 0
    repeat_pct = round_half_up(repeats / len(sessions) * 100) if sessions else 0

    active = {s.station_id for s in sessions if s.station_id}
    if scoped_stations:
        active_pct = round_half_up(len(active) / len(scoped_stations) * 100)
    else:
        active_pct = 100 if active else 0

    values = (returning_pct, repeat_pct, active_pct)
    return [HeatmapCell(label=label, value=value) for label, value in zip(HEATMAP_LABELS, values)]


def empty_heatmap() -> List[HeatmapCell]:
    return [HeatmapCell(label=label, value=0) for label in HEATMAP_LABELS]
