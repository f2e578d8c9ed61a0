import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List

from .data import ApiClient, FileSessionSource, FileStationSource, ReportFetchError
from .export import export_filename, write_csv
from .logging_utils import setup_logging
from .models import OwnerCapability, ReportQuery, ReportRange, Station
from .paginate import MAX_PAGES, PAGE_SIZE
from .service import PaginationOptions, compute_owner_report
from .windows import local_now

logger = logging.getLogger(__name__)


class _NoStations:
    def fetch_stations(self, org_id: str | None = None) -> List[Station]:
        return []


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compute an owner report")
    parser.add_argument("--file", type=Path, help="Local JSON session history")
    parser.add_argument("--stations", type=Path, help="Local JSON station list")
    parser.add_argument("--api-url", help="Base URL of the EVzone API (instead of --file)")
    parser.add_argument("--api-token", help="Bearer token for the EVzone API")
    parser.add_argument(
        "--range",
        dest="range_",
        default="7d",
        choices=[r.value for r in ReportRange],
        help="Report range",
    )
    parser.add_argument(
        "--capability",
        choices=[c.value for c in OwnerCapability],
        help="Owner capability scope (default: no restriction)",
    )
    parser.add_argument("--viewer-id", default="cli", help="Viewer identity")
    parser.add_argument("--org-id", help="Organisation scope for stations")
    parser.add_argument("--page-size", type=int, default=PAGE_SIZE)
    parser.add_argument("--max-pages", type=int, default=MAX_PAGES)
    parser.add_argument(
        "--no-early-stop",
        action="store_true",
        help="Read every history page even if the source is sorted newest first",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="CSV export path (default: evzone_owner_report_<range>_<date>.csv)",
    )
    parser.add_argument("--json", type=Path, help="Write the full metrics as JSON")
    parser.add_argument(
        "--timezone",
        default=os.getenv("EVZONE_TIMEZONE"),
        help="IANA time zone for day boundaries (default: TZ or the system offset)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: List[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.file and not args.api_url:
        parser.error("one of --file or --api-url is required")

    setup_logging(args.debug)

    query = ReportQuery(
        range=ReportRange.parse(args.range_),
        viewer_id=args.viewer_id,
        org_id=args.org_id,
        capability=OwnerCapability.parse(args.capability),
    )
    options = PaginationOptions(
        page_size=args.page_size,
        max_pages=args.max_pages,
        assume_newest_first=not args.no_early_stop,
    )
    now = local_now(args.timezone)
    try:
        if args.api_url:
            client = ApiClient(args.api_url, token=args.api_token)
            sessions, stations = client, client
        else:
            sessions = FileSessionSource(args.file)
            stations = FileStationSource(args.stations) if args.stations else _NoStations()
        metrics = compute_owner_report(query, sessions, stations, options=options, now=now)
    except ReportFetchError as exc:
        logger.error("Metrics unavailable: %s", exc)
        return 1

    summary = metrics.summary
    logger.info(
        "Window %s to %s: %d sessions, revenue %.2f",
        metrics.window_start.date().isoformat(),
        metrics.window_end.date().isoformat(),
        metrics.total_sessions,
        metrics.total_revenue,
    )
    logger.info(
        "Avg/day %.2f, busiest hour %s, reliability %s, churn risk %s, forecast %.2f (%s)",
        summary.average_revenue_per_day,
        summary.busiest_hour,
        summary.energy_reliability_label,
        summary.churn_risk_label,
        metrics.forecast.estimated_monthly_close,
        metrics.forecast.trend,
    )

    if args.json:
        args.json.parent.mkdir(parents=True, exist_ok=True)
        args.json.write_text(json.dumps(metrics.to_dict(), indent=2), encoding="utf-8")
        logger.info("Wrote metrics to %s", args.json)

    output = args.output or Path(export_filename(query.range, now.date()))
    write_csv(list(metrics.export_rows), output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
