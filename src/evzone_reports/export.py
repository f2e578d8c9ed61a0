import csv
import io
import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from .models import ReportRange, Session
from .windows import to_local

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = (
    "ID",
    "Date",
    "Station",
    "User",
    "Energy_kWh",
    "Total_Amount",
    "Duration_Minutes",
    "Status",
)


def to_fixed(value: float, digits: int) -> float:
    """Round to ``digits`` decimals with exact halves going away from zero."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def _sort_key(session: Session) -> float:
    return session.started_at.timestamp() if session.started_at is not None else 0.0


def build_export_rows(sessions: Iterable[Session], now: datetime) -> List[Dict[str, Any]]:
    """Flatten sessions into export records, newest first."""
    rows: List[Dict[str, Any]] = []
    for s in sorted(sessions, key=_sort_key, reverse=True):
        day = to_local(s.started_at, now).date().isoformat() if s.started_at else "Unknown"
        rows.append(
            {
                "ID": s.id,
                "Date": day,
                "Station": s.station_name or s.station_id or "Unknown",
                "User": s.user_name or s.user_id or "Unknown",
                "Energy_kWh": to_fixed(s.energy_delivered_kwh, 3),
                "Total_Amount": to_fixed(s.cost, 2),
                "Duration_Minutes": s.duration_minutes,
                "Status": s.status or "",
            }
        )
    return rows


def rows_to_csv(rows: Sequence[Dict[str, Any]], headers: Sequence[str] | None = None) -> str:
    """Serialise ``rows`` as CSV text; empty input yields an empty string."""
    if not rows:
        return ""
    keys = list(headers) if headers else list(rows[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(keys)
    for row in rows:
        writer.writerow(["" if row.get(k) is None else row.get(k) for k in keys])
    return buffer.getvalue().rstrip("\n")


def export_filename(range_: ReportRange, today: date) -> str:
    return f"evzone_owner_report_{range_.value.lower()}_{today.isoformat()}.csv"


def write_csv(rows: Sequence[Dict[str, Any]], path: Path) -> bool:
    """Write ``rows`` to ``path``. Nothing is written for an empty export."""
    if not rows:
        logger.info("No rows to export; skipping %s", path)
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(rows_to_csv(rows) + "\n", encoding="utf-8")
    logger.info("Wrote %d rows to %s", len(rows), path)
    return True
