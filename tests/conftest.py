import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from evzone_reports.models import Session, Station

TZ = timezone(timedelta(hours=2))


@pytest.fixture
def now():
    # Wednesday
    return datetime(2024, 5, 15, 14, 30, tzinfo=TZ)


def make_session(
    session_id,
    started_at,
    *,
    station_id="S1",
    user_id="U1",
    cost=10.0,
    energy=5.0,
    duration=30,
    status="COMPLETED",
    **extra,
):
    return Session(
        id=session_id,
        station_id=station_id,
        user_id=user_id,
        started_at=started_at,
        cost=cost,
        energy_delivered_kwh=energy,
        duration_minutes=duration,
        status=status,
        **extra,
    )


def make_station(station_id, type_="CHARGE", org_id=None):
    return Station(id=station_id, type=type_, org_id=org_id)


class FakeSource:
    """In-memory paginated history that records which pages were read."""

    def __init__(self, pages, total_pages=None, fail_on=None):
        self.pages = pages
        self.total_pages = len(pages) if total_pages is None else total_pages
        self.fail_on = fail_on
        self.requested = []
        self.stations = []

    def fetch_page(self, page, page_size):
        self.requested.append(page)
        if self.fail_on == page:
            raise ConnectionError("upstream unavailable")
        if page > len(self.pages):
            return [], self.total_pages
        return list(self.pages[page - 1]), self.total_pages

    def fetch_stations(self, org_id=None):
        return list(self.stations)
