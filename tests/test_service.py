from datetime import timedelta

import pytest

from conftest import FakeSource, make_session, make_station
from evzone_reports.data import ReportFetchError
from evzone_reports.models import OwnerCapability, ReportQuery, ReportRange
from evzone_reports.service import PaginationOptions, compute_owner_report


def test_missing_viewer_returns_empty_without_fetching(now):
    source = FakeSource([[make_session("a", now)]])
    metrics = compute_owner_report(ReportQuery(ReportRange.LAST_7_DAYS), source, source, now=now)
    assert metrics.has_data is False
    assert source.requested == []
    assert len(metrics.chart_data) == 7


def test_report_uses_paginated_history_and_stations(now):
    source = FakeSource(
        [
            [make_session("a", now, station_id="S1"), make_session("b", now, station_id="S2")],
            [make_session("c", now - timedelta(days=1), station_id="S1")],
        ]
    )
    source.stations = [make_station("S1", "CHARGE"), make_station("S2", "SWAP")]
    query = ReportQuery(ReportRange.LAST_7_DAYS, viewer_id="owner-1", capability=OwnerCapability.CHARGE)

    metrics = compute_owner_report(query, source, source, now=now)

    assert source.requested == [1, 2]
    assert sorted(s.id for s in metrics.filtered_sessions) == ["a", "c"]
    assert metrics.total_sessions == 2


def test_station_failure_fails_open(now, caplog):
    class BrokenStations:
        def fetch_stations(self, org_id=None):
            raise ReportFetchError("stations down")

    source = FakeSource([[make_session("a", now, station_id="S2")]])
    query = ReportQuery(ReportRange.LAST_7_DAYS, viewer_id="owner-1", capability=OwnerCapability.CHARGE)

    metrics = compute_owner_report(query, source, BrokenStations(), now=now)

    assert [s.id for s in metrics.filtered_sessions] == ["a"]
    assert "Failed to load stations" in caplog.text


def test_history_failure_propagates(now):
    source = FakeSource([[make_session("a", now)], [make_session("b", now)]], fail_on=2)
    query = ReportQuery(ReportRange.ALL, viewer_id="owner-1")
    with pytest.raises(ReportFetchError):
        compute_owner_report(query, source, source, now=now)


def test_pagination_options_are_applied(now):
    pages = [[make_session(f"s{i}", now)] for i in range(5)]
    source = FakeSource(pages)
    query = ReportQuery(ReportRange.LAST_7_DAYS, viewer_id="owner-1")
    compute_owner_report(query, source, source, options=PaginationOptions(max_pages=2), now=now)
    assert source.requested == [1, 2]


def test_query_key_identifies_computation():
    a = ReportQuery(ReportRange.LAST_7_DAYS, viewer_id="v", org_id="o", capability=OwnerCapability.SWAP)
    b = ReportQuery(ReportRange.LAST_7_DAYS, viewer_id="v", org_id="o", capability=OwnerCapability.CHARGE)
    assert a.key == ("7d", "v", "o", "SWAP")
    assert a.key != b.key
    assert ReportQuery(ReportRange.ALL).key == ("ALL", "unknown", "unknown", "unknown")


def test_enum_parsing():
    assert ReportRange.parse("ytd") is ReportRange.YEAR_TO_DATE
    assert ReportRange.parse("30D") is ReportRange.LAST_30_DAYS
    assert OwnerCapability.parse("swap") is OwnerCapability.SWAP
    assert OwnerCapability.parse("") is None
    with pytest.raises(ValueError):
        ReportRange.parse("14d")
    with pytest.raises(ValueError):
        OwnerCapability.parse("hydrogen")
