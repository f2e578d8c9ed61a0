"""FastAPI backend serving owner reports."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from .data import DEFAULT_BASE_URL, ApiClient, ReportFetchError
from .export import export_filename, rows_to_csv
from .logging_utils import setup_logging
from .models import OwnerCapability, ReportMetrics, ReportQuery, ReportRange
from .paginate import MAX_PAGES, PAGE_SIZE
from .service import PaginationOptions, compute_owner_report
from .windows import local_now

logger = logging.getLogger(__name__)

REPORT_CACHE_MAX_ENTRIES = 256


@dataclass
class Settings:
    """Runtime configuration for the report service."""

    api_base_url: str
    api_token: str | None
    request_timeout: int
    page_size: int
    max_pages: int
    assume_newest_first: bool
    report_cache_ttl: int
    cors_origins: list[str]
    timezone: str | None
    debug: bool


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _parse_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-integer %s='%s'; using %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Ignoring %s='%s' below %d; using %d", name, raw, minimum, default)
        return default
    return value


def load_settings() -> Settings:
    """Load service configuration from environment variables."""

    cors_env = os.getenv("EVZONE_CORS_ORIGINS", "*")
    cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
    return Settings(
        api_base_url=os.getenv("EVZONE_API_BASE_URL") or DEFAULT_BASE_URL,
        api_token=os.getenv("EVZONE_API_TOKEN") or None,
        request_timeout=_parse_int("EVZONE_REQUEST_TIMEOUT", 30, minimum=1),
        page_size=_parse_int("EVZONE_PAGE_SIZE", PAGE_SIZE, minimum=1),
        max_pages=_parse_int("EVZONE_MAX_PAGES", MAX_PAGES, minimum=1),
        assume_newest_first=_parse_bool(os.getenv("EVZONE_ASSUME_NEWEST_FIRST"), True),
        report_cache_ttl=_parse_int("EVZONE_REPORT_CACHE_TTL", 60),
        cors_origins=cors_origins or ["*"],
        timezone=os.getenv("EVZONE_TIMEZONE") or None,
        debug=_parse_bool(os.getenv("EVZONE_DEBUG"), False),
    )


_INITIAL_SETTINGS = load_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = load_settings()
    setup_logging(settings.debug)
    logger.debug("Loaded settings: %s", settings)
    if settings.cors_origins != _INITIAL_SETTINGS.cors_origins:
        logger.warning(
            "CORS origin configuration changed to %s after startup; restart required for changes to apply.",
            settings.cors_origins,
        )
    app.state.settings = settings
    app.state.client = ApiClient(
        settings.api_base_url,
        token=settings.api_token,
        timeout=settings.request_timeout,
    )
    app.state.report_cache: Dict[Tuple[str, ...], Dict[str, Any]] = {}
    app.state.report_cache_lock = asyncio.Lock()
    yield
    app.state.report_cache.clear()


app = FastAPI(title="EVzone Owner Reports API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_INITIAL_SETTINGS.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


def _require_settings() -> Settings:
    settings = getattr(app.state, "settings", None)
    if settings is None:  # pragma: no cover - startup should populate
        raise HTTPException(status_code=503, detail="Service not initialised")
    return settings


def _parse_query(
    range_: str,
    viewer_id: str | None,
    org_id: str | None,
    capability: str | None,
) -> ReportQuery:
    try:
        return ReportQuery(
            range=ReportRange.parse(range_),
            viewer_id=viewer_id or None,
            org_id=org_id or None,
            capability=OwnerCapability.parse(capability),
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _prune_cache(
    cache: Dict[Tuple[str, ...], Dict[str, Any]],
    ttl: int,
    now: float,
    limit: int = REPORT_CACHE_MAX_ENTRIES,
) -> None:
    """Drop expired reports and keep room for one more entry under ``limit``."""
    for key in [k for k, entry in cache.items() if now - entry["stored"] >= ttl]:
        del cache[key]
    while len(cache) >= limit:
        oldest = min(cache, key=lambda k: cache[k]["stored"])
        del cache[oldest]


async def _owner_report(query: ReportQuery) -> ReportMetrics:
    settings = _require_settings()
    cache: Dict[Tuple[str, ...], Dict[str, Any]] = app.state.report_cache
    lock: asyncio.Lock = app.state.report_cache_lock
    ttl = settings.report_cache_ttl

    if ttl > 0:
        async with lock:
            cached = cache.get(query.key)
        if cached and time.monotonic() - cached["stored"] < ttl:
            logger.debug("Serving cached report for %s", query.key)
            return cached["metrics"]

    client = app.state.client
    options = PaginationOptions(
        page_size=settings.page_size,
        max_pages=settings.max_pages,
        assume_newest_first=settings.assume_newest_first,
    )
    now = local_now(settings.timezone)
    try:
        metrics = await asyncio.to_thread(
            compute_owner_report, query, client, client, options=options, now=now
        )
    except ReportFetchError as exc:
        logger.exception("Report computation failed for %s", query.key)
        raise HTTPException(
            status_code=502,
            detail="Unable to load session history. Please retry.",
        ) from exc

    if ttl > 0:
        async with lock:
            stored = time.monotonic()
            _prune_cache(cache, ttl, stored)
            cache[query.key] = {"metrics": metrics, "stored": stored}
    return metrics


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    settings = _require_settings()
    return {
        "status": "ok",
        "upstream": settings.api_base_url,
        "cached_reports": len(getattr(app.state, "report_cache", {})),
    }


@app.get("/api/reports/owner")
async def owner_report(
    range_: str = Query("7d", alias="range"),
    viewer_id: Optional[str] = Query(None),
    org_id: Optional[str] = Query(None),
    capability: Optional[str] = Query(None),
) -> Dict[str, Any]:
    query = _parse_query(range_, viewer_id, org_id, capability)
    metrics = await _owner_report(query)
    return metrics.to_dict()


@app.get("/api/reports/owner/export")
async def owner_report_export(
    range_: str = Query("7d", alias="range"),
    viewer_id: Optional[str] = Query(None),
    org_id: Optional[str] = Query(None),
    capability: Optional[str] = Query(None),
) -> Response:
    query = _parse_query(range_, viewer_id, org_id, capability)
    metrics = await _owner_report(query)
    if not metrics.export_rows:
        return Response(status_code=204)
    settings = _require_settings()
    filename = export_filename(query.range, local_now(settings.timezone).date())
    return Response(
        content=rows_to_csv(list(metrics.export_rows)),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    import uvicorn

    uvicorn.run(
        "evzone_reports.api:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
