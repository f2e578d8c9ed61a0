import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Protocol, Sequence, Tuple

import requests

from .capability import normalize_station_type
from .models import Session, Station

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000/api/v1"
HISTORY_PATH = "/sessions/history"
STATIONS_PATH = "/stations"


class ReportFetchError(RuntimeError):
    """Raised when the upstream API cannot serve session or station data."""


class SessionSource(Protocol):
    def fetch_page(self, page: int, page_size: int) -> Tuple[List[Session], int | None]:
        """Return the sessions of ``page`` and the reported total page count."""


class StationSource(Protocol):
    def fetch_stations(self, org_id: str | None = None) -> List[Station]:
        """Return the stations visible for ``org_id``."""


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unable to parse timestamp '%s'", value)
        return None


def _number(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", ".")
        if not cleaned:
            return default
        try:
            number = float(cleaned)
        except ValueError:
            return default
    else:
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _nested_name(entry: Dict[str, Any], key: str) -> str | None:
    nested = entry.get(key)
    if isinstance(nested, dict):
        return _text(nested.get("name") or nested.get("fullName"))
    return None


def _elapsed_minutes(started_at: datetime, ended_at: datetime) -> int:
    # A naive end (or start) is read in the zone of its aware counterpart
    zone = started_at.tzinfo or ended_at.tzinfo
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=zone)
    if ended_at.tzinfo is None:
        ended_at = ended_at.replace(tzinfo=zone)
    seconds = (ended_at - started_at).total_seconds()
    return int(seconds // 60) if seconds >= 0 else 0


def parse_session(entry: Dict[str, Any]) -> Session | None:
    """Build a :class:`Session` from an API payload entry."""
    session_id = _text(entry.get("id") or entry.get("sessionId") or entry.get("_id"))
    if session_id is None:
        return None
    started_at = parse_timestamp(entry.get("startedAt") or entry.get("started_at"))
    ended_at = parse_timestamp(entry.get("endedAt") or entry.get("ended_at"))

    duration = entry.get("durationMinutes")
    if duration is None:
        duration = entry.get("duration_minutes")
    if duration is not None:
        duration_minutes = int(_number(duration))
    elif started_at is not None and ended_at is not None:
        duration_minutes = _elapsed_minutes(started_at, ended_at)
    else:
        duration_minutes = 0

    energy = entry.get("energyDeliveredKWh")
    if energy is None:
        energy = entry.get("energyDelivered")
    if energy is None:
        energy = entry.get("energy_delivered_kwh")

    return Session(
        id=session_id,
        station_id=_text(entry.get("stationId") or entry.get("station_id")),
        user_id=_text(entry.get("userId") or entry.get("user_id")),
        started_at=started_at,
        ended_at=ended_at,
        cost=_number(entry.get("cost")),
        energy_delivered_kwh=_number(energy),
        duration_minutes=duration_minutes,
        status=_text(entry.get("status")),
        station_name=_text(entry.get("stationName")) or _nested_name(entry, "station"),
        user_name=_text(entry.get("userName")) or _nested_name(entry, "user"),
    )


def parse_sessions(items: Sequence[Any]) -> List[Session]:
    sessions: List[Session] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        session = parse_session(item)
        if session is None:
            logger.debug("Skipping session entry without id: %s", item)
            continue
        sessions.append(session)
    return sessions


def parse_history_page(data: Any) -> Tuple[List[Session], int | None]:
    """Return the sessions and total page count of a history response."""
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    if isinstance(data, list):
        return parse_sessions(data), None
    if not isinstance(data, dict):
        return [], None
    items = data.get("sessions") or data.get("items") or []
    if not isinstance(items, list):
        items = []
    pagination = data.get("pagination") or {}
    total_pages = pagination.get("totalPages") if isinstance(pagination, dict) else None
    if total_pages is None:
        total_pages = data.get("totalPages")
    try:
        total = int(total_pages) if total_pages is not None else None
    except (TypeError, ValueError):
        total = None
    return parse_sessions(items), total


def parse_stations(data: Any) -> List[Station]:
    items: List[Any]
    if isinstance(data, dict):
        items = data.get("data") or data.get("stations") or data.get("items") or []
    elif isinstance(data, list):
        items = data
    else:
        items = []
    result: List[Station] = []
    for it in items:
        if not isinstance(it, dict):
            continue
        station_id = _text(it.get("id") or it.get("stationId") or it.get("_id"))
        if station_id is None:
            logger.debug("Skipping station entry without id: %s", it)
            continue
        result.append(
            Station(
                id=station_id,
                type=normalize_station_type(it.get("type")),
                name=_text(it.get("name")),
                org_id=_text(it.get("orgId") or it.get("organizationId")),
            )
        )
    logger.debug("Parsed %d stations", len(result))
    return result


class ApiClient:
    """Minimal client for the session history and station endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: str | None = None,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        if token:
            self.http.headers["Authorization"] = f"Bearer {token}"

    def _get(self, path: str, params: Dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("GET %s params=%s", url, params)
        try:
            resp = self.http.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise ReportFetchError(f"Request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ReportFetchError(f"Invalid JSON from {path}") from exc

    def fetch_page(self, page: int, page_size: int) -> Tuple[List[Session], int | None]:
        data = self._get(HISTORY_PATH, {"page": page, "limit": page_size})
        return parse_history_page(data)

    def fetch_stations(self, org_id: str | None = None) -> List[Station]:
        params = {"orgId": org_id} if org_id else None
        return parse_stations(self._get(STATIONS_PATH, params))


def _load_json(path: Path) -> Any:
    logger.debug("Loading JSON from %s", path)
    try:
        with path.open(encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as exc:
        raise ReportFetchError(f"Unable to read {path}: {exc}") from exc


class FileSessionSource:
    """Serve a local history export through the paginated source contract.

    Sessions are ordered newest first regardless of their order in the
    file; entries without a parseable start time go last.
    """

    def __init__(self, path: Path) -> None:
        data = _load_json(path)
        if isinstance(data, dict):
            data = data.get("sessions") or data.get("data") or []
        sessions = parse_sessions(data if isinstance(data, list) else [])
        dated = [s for s in sessions if s.started_at is not None]
        undated = [s for s in sessions if s.started_at is None]
        dated.sort(key=lambda s: s.started_at.timestamp(), reverse=True)
        self.sessions = dated + undated
        logger.debug("Loaded %d sessions from %s", len(self.sessions), path)

    def fetch_page(self, page: int, page_size: int) -> Tuple[List[Session], int | None]:
        total_pages = max(1, math.ceil(len(self.sessions) / page_size))
        offset = (page - 1) * page_size
        return self.sessions[offset:offset + page_size], total_pages


class FileStationSource:
    """Serve stations from a local JSON file, optionally scoped to an org."""

    def __init__(self, path: Path) -> None:
        self.stations = parse_stations(_load_json(path))

    def fetch_stations(self, org_id: str | None = None) -> List[Station]:
        if not org_id:
            return list(self.stations)
        return [s for s in self.stations if s.org_id in (None, org_id)]
