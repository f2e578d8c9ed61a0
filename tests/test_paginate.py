from datetime import timedelta

import pytest

from conftest import FakeSource, make_session
from evzone_reports.data import ReportFetchError
from evzone_reports.models import ReportRange
from evzone_reports.paginate import fetch_sessions_for_range


def test_stops_after_page_older_than_threshold(now):
    today = [make_session("p1-a", now), make_session("p1-b", now - timedelta(hours=2))]
    old = [
        make_session("p2-a", now - timedelta(days=40)),
        make_session("p1-b", now - timedelta(days=41)),
    ]
    older = [make_session("p3-a", now - timedelta(days=60))]
    source = FakeSource([today, old, older])

    result = fetch_sessions_for_range(source, ReportRange.LAST_7_DAYS, now=now)

    assert source.requested == [1, 2]
    assert [s.id for s in result] == ["p1-a", "p1-b", "p2-a"]
    # Last write wins for duplicate ids
    assert result[1].started_at == now - timedelta(days=41)


def test_all_range_drains_every_page(now):
    pages = [[make_session(f"p{i}", now - timedelta(days=30 * i))] for i in range(1, 4)]
    source = FakeSource(pages)

    result = fetch_sessions_for_range(source, ReportRange.ALL, now=now)

    assert source.requested == [1, 2, 3]
    assert len(result) == 3


def test_stops_on_empty_page(now):
    source = FakeSource([[make_session("a", now)], []], total_pages=5)
    result = fetch_sessions_for_range(source, ReportRange.ALL, now=now)
    assert source.requested == [1, 2]
    assert [s.id for s in result] == ["a"]


def test_stops_at_reported_total_pages(now):
    pages = [[make_session("a", now)], [make_session("b", now)], [make_session("c", now)]]
    source = FakeSource(pages, total_pages=2)
    fetch_sessions_for_range(source, ReportRange.ALL, now=now)
    assert source.requested == [1, 2]


def test_missing_total_pages_stops_after_first_page(now):
    class NoTotals(FakeSource):
        def fetch_page(self, page, page_size):
            sessions, _ = super().fetch_page(page, page_size)
            return sessions, None

    source = NoTotals([[make_session("a", now)], [make_session("b", now)]])
    fetch_sessions_for_range(source, ReportRange.ALL, now=now)
    assert source.requested == [1]


def test_page_ceiling(now):
    pages = [[make_session(f"s{i}", now)] for i in range(10)]
    source = FakeSource(pages)
    result = fetch_sessions_for_range(source, ReportRange.LAST_7_DAYS, now=now, max_pages=4)
    assert source.requested == [1, 2, 3, 4]
    assert len(result) == 4


def test_early_stop_can_be_disabled(now):
    pages = [
        [make_session("a", now - timedelta(days=40))],
        [make_session("b", now)],
    ]
    source = FakeSource(pages)
    result = fetch_sessions_for_range(
        source, ReportRange.LAST_7_DAYS, now=now, assume_newest_first=False
    )
    assert source.requested == [1, 2]
    assert {s.id for s in result} == {"a", "b"}


def test_undated_page_does_not_trigger_early_stop(now):
    pages = [[make_session("a", None)], [make_session("b", now)]]
    source = FakeSource(pages)
    fetch_sessions_for_range(source, ReportRange.LAST_7_DAYS, now=now)
    assert source.requested == [1, 2]


def test_fetch_failure_discards_previous_pages(now):
    pages = [[make_session("a", now)], [make_session("b", now)], [make_session("c", now)]]
    source = FakeSource(pages, fail_on=2)

    with pytest.raises(ReportFetchError) as excinfo:
        fetch_sessions_for_range(source, ReportRange.ALL, now=now)

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert source.requested == [1, 2]


def test_passes_page_size(now):
    seen = []

    class Recording(FakeSource):
        def fetch_page(self, page, page_size):
            seen.append(page_size)
            return super().fetch_page(page, page_size)

    fetch_sessions_for_range(Recording([[make_session("a", now)]]), ReportRange.ALL, now=now)
    assert seen == [200]
