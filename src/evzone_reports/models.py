"""Data model for owner reports."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Tuple


class OwnerCapability(str, Enum):
    CHARGE = "CHARGE"
    SWAP = "SWAP"
    BOTH = "BOTH"

    @classmethod
    def parse(cls, value: "str | OwnerCapability | None") -> "OwnerCapability | None":
        if value is None or isinstance(value, cls):
            return value
        cleaned = str(value).strip().upper()
        if not cleaned:
            return None
        try:
            return cls(cleaned)
        except ValueError:
            raise ValueError(f"Unsupported owner capability '{value}'") from None


class ReportRange(str, Enum):
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    YEAR_TO_DATE = "YTD"
    ALL = "ALL"

    @property
    def span_days(self) -> int | None:
        """Length of a rolling range in days, ``None`` for YTD and ALL."""
        return {"7d": 7, "30d": 30, "90d": 90}.get(self.value)

    @classmethod
    def parse(cls, value: "str | ReportRange") -> "ReportRange":
        if isinstance(value, cls):
            return value
        cleaned = str(value).strip()
        for member in cls:
            if member.value.lower() == cleaned.lower():
                return member
        raise ValueError(f"Unsupported report range '{value}'")


@dataclass(frozen=True)
class Session:
    """A charging or swap session as served by the history API."""

    id: str
    station_id: str | None
    user_id: str | None
    started_at: datetime | None
    cost: float = 0.0
    energy_delivered_kwh: float = 0.0
    duration_minutes: int = 0
    status: str | None = None
    ended_at: datetime | None = None
    station_name: str | None = None
    user_name: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "ended_at"):
            value = data[key]
            data[key] = value.isoformat() if value is not None else None
        return data


@dataclass(frozen=True)
class Station:
    id: str
    # Normalised to CHARGE, SWAP, BOTH or None when unknown
    type: str | None
    name: str | None = None
    org_id: str | None = None


@dataclass(frozen=True)
class RangeWindow:
    start: datetime
    end: datetime
    previous_start: datetime | None = None
    previous_end: datetime | None = None

    @property
    def has_previous(self) -> bool:
        return self.previous_start is not None and self.previous_end is not None


@dataclass(frozen=True)
class ChartPoint:
    """One calendar day of the report time series."""

    date_key: str
    label: str
    revenue: float = 0.0
    session_count: int = 0
    utilization_pct: int = 0


@dataclass(frozen=True)
class ReportSummary:
    average_revenue_per_day: float = 0.0
    average_revenue_delta_pct: float | None = None
    busiest_hour: str = "N/A"
    busiest_hour_sessions: int = 0
    energy_reliability_pct: float | None = None
    energy_reliability_label: str = "N/A"
    churn_risk_label: str = "N/A"
    churn_delta_pct: float | None = None


@dataclass(frozen=True)
class Forecast:
    estimated_monthly_close: float = 0.0
    delta_pct: float | None = None
    trend: str = "flat"


@dataclass(frozen=True)
class HeatmapCell:
    label: str
    value: int


@dataclass(frozen=True)
class ReportMetrics:
    """Immutable result of a single report computation."""

    range: ReportRange
    chart_data: Tuple[ChartPoint, ...]
    summary: ReportSummary
    forecast: Forecast
    heatmap: Tuple[HeatmapCell, ...]
    export_rows: Tuple[Dict[str, Any], ...]
    filtered_sessions: Tuple[Session, ...]
    total_revenue: float
    total_sessions: int
    window_start: datetime
    window_end: datetime
    has_data: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "range": self.range.value,
            "chart_data": [asdict(point) for point in self.chart_data],
            "summary": asdict(self.summary),
            "forecast": asdict(self.forecast),
            "heatmap": [asdict(cell) for cell in self.heatmap],
            "export_rows": [dict(row) for row in self.export_rows],
            "filtered_sessions": [s.to_dict() for s in self.filtered_sessions],
            "total_revenue": self.total_revenue,
            "total_sessions": self.total_sessions,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "has_data": self.has_data,
        }


@dataclass(frozen=True)
class ReportQuery:
    """Identifies one report computation.

    Any change to one of the fields makes a previously computed result for
    another query stale; callers discard it rather than merge it.
    """

    range: ReportRange
    viewer_id: str | None = None
    org_id: str | None = None
    capability: OwnerCapability | None = None

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (
            self.range.value,
            self.viewer_id or "unknown",
            self.org_id or "unknown",
            self.capability.value if self.capability else "unknown",
        )


HEATMAP_LABELS: List[str] = ["Returning Customers", "Repeat Sessions", "Active Stations"]
