import logging
from typing import Dict, List, Sequence, Tuple

from .models import OwnerCapability, Session, Station

logger = logging.getLogger(__name__)

_STATION_TYPE_ALIASES = {
    "CHARGING": "CHARGE",
    "CHARGE": "CHARGE",
    "SWAP": "SWAP",
    "BOTH": "BOTH",
}


def normalize_station_type(value: str | None) -> str | None:
    """Map API station type strings to CHARGE, SWAP or BOTH."""
    if not value:
        return None
    return _STATION_TYPE_ALIASES.get(str(value).strip().upper())


def capability_allows_station(
    capability: OwnerCapability | None, station_type: str | None
) -> bool:
    if capability is None or capability is OwnerCapability.BOTH:
        return True
    normalized = normalize_station_type(station_type)
    if normalized is None:
        return True
    return normalized in (capability.value, "BOTH")


def filter_by_capability(
    sessions: Sequence[Session],
    stations: Sequence[Station],
    capability: OwnerCapability | None,
) -> Tuple[List[Session], List[Station]]:
    """Return the sessions and stations an owner with ``capability`` may see.

    With no stations known every session passes, since eligibility cannot be
    decided. Otherwise a session is dropped only when its station is known
    and not allowed; sessions on unknown stations are kept.
    """
    if not stations:
        logger.debug("No stations known; keeping all %d sessions", len(sessions))
        return list(sessions), []

    by_id: Dict[str, Station] = {station.id: station for station in stations}
    scoped = [s for s in stations if capability_allows_station(capability, s.type)]

    kept: List[Session] = []
    for session in sessions:
        station = by_id.get(session.station_id) if session.station_id else None
        if station is None or capability_allows_station(capability, station.type):
            kept.append(session)
    logger.debug(
        "Capability %s kept %d/%d sessions and %d/%d stations",
        capability.value if capability else "unset",
        len(kept),
        len(sessions),
        len(scoped),
        len(stations),
    )
    return kept, scoped
