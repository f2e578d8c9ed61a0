from conftest import make_session, make_station
from evzone_reports.capability import (
    capability_allows_station,
    filter_by_capability,
    normalize_station_type,
)
from evzone_reports.models import OwnerCapability


def test_charge_capability_keeps_charge_station_sessions(now):
    stations = [make_station("S1", "CHARGE"), make_station("S2", "SWAP")]
    sessions = [make_session("A", now, station_id="S1"), make_session("B", now, station_id="S2")]

    kept, scoped = filter_by_capability(sessions, stations, OwnerCapability.CHARGE)

    assert [s.id for s in kept] == ["A"]
    assert [s.id for s in scoped] == ["S1"]


def test_swap_capability_keeps_swap_and_dual_stations(now):
    stations = [
        make_station("S1", "CHARGE"),
        make_station("S2", "SWAP"),
        make_station("S3", "BOTH"),
    ]
    sessions = [make_session(sid, now, station_id=sid) for sid in ("S1", "S2", "S3")]

    kept, scoped = filter_by_capability(sessions, stations, OwnerCapability.SWAP)

    assert [s.id for s in kept] == ["S2", "S3"]
    assert [s.id for s in scoped] == ["S2", "S3"]


def test_no_known_stations_passes_everything(now):
    sessions = [make_session("A", now, station_id="S1"), make_session("B", now, station_id="S2")]
    kept, scoped = filter_by_capability(sessions, [], OwnerCapability.CHARGE)
    assert [s.id for s in kept] == ["A", "B"]
    assert scoped == []


def test_unknown_station_session_is_kept(now):
    stations = [make_station("S2", "SWAP")]
    sessions = [
        make_session("A", now, station_id="S-missing"),
        make_session("B", now, station_id="S2"),
        make_session("C", now, station_id=None),
    ]
    kept, scoped = filter_by_capability(sessions, stations, OwnerCapability.CHARGE)
    assert [s.id for s in kept] == ["A", "C"]
    assert scoped == []


def test_both_and_missing_capability_allow_everything():
    for capability in (OwnerCapability.BOTH, None):
        assert capability_allows_station(capability, "CHARGE")
        assert capability_allows_station(capability, "SWAP")


def test_unknown_station_type_is_allowed():
    assert capability_allows_station(OwnerCapability.CHARGE, None)
    assert capability_allows_station(OwnerCapability.SWAP, "HYDROGEN")


def test_normalize_station_type():
    assert normalize_station_type("charging") == "CHARGE"
    assert normalize_station_type(" Swap ") == "SWAP"
    assert normalize_station_type("BOTH") == "BOTH"
    assert normalize_station_type("") is None
    assert normalize_station_type("other") is None
