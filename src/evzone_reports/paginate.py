import logging
from datetime import datetime
from typing import Dict, List

from .data import ReportFetchError, SessionSource
from .models import ReportRange, Session
from .windows import local_now, threshold_for_range

logger = logging.getLogger(__name__)

PAGE_SIZE = 200
MAX_PAGES = 30


def _newest_start(sessions: List[Session]) -> datetime | None:
    dates = [s.started_at for s in sessions if s.started_at is not None]
    return max(dates, key=lambda d: d.timestamp()) if dates else None


def fetch_sessions_for_range(
    source: SessionSource,
    range_: ReportRange,
    *,
    now: datetime | None = None,
    page_size: int = PAGE_SIZE,
    max_pages: int = MAX_PAGES,
    assume_newest_first: bool = True,
) -> List[Session]:
    """Drain ``source`` page by page for the sessions relevant to ``range_``.

    Pages are fetched one at a time because the early-stop check needs the
    contents of the page just read. The source must serve sessions newest
    first for that check to be sound; pass ``assume_newest_first=False`` to
    always read every page up to ``max_pages``.

    Any failure aborts the whole run; pages already read are discarded.
    """
    if now is None:
        now = local_now()
    threshold = threshold_for_range(range_, now) if assume_newest_first else None

    collected: List[Session] = []
    pages_read = 0
    for page in range(1, max_pages + 1):
        try:
            page_sessions, total_pages = source.fetch_page(page, page_size)
        except ReportFetchError:
            logger.error("Session history page %d failed; discarding %d pages", page, pages_read)
            raise
        except Exception as exc:
            logger.error("Session history page %d failed; discarding %d pages", page, pages_read)
            raise ReportFetchError(f"Failed to fetch session page {page}") from exc
        pages_read += 1
        logger.debug(
            "Fetched page %d with %d sessions (total_pages=%s)",
            page,
            len(page_sessions),
            total_pages,
        )

        if not page_sessions:
            logger.debug("Stopping at page %d: empty page", page)
            break
        collected.extend(page_sessions)

        if page >= (total_pages if total_pages is not None else page):
            logger.debug("Stopping at page %d: last page reported", page)
            break

        if threshold is not None:
            newest = _newest_start(page_sessions)
            if newest is not None and newest.timestamp() < threshold.timestamp():
                logger.debug(
                    "Stopping at page %d: newest session %s predates %s",
                    page,
                    newest.isoformat(),
                    threshold.isoformat(),
                )
                break
    else:
        logger.warning("Reached the %d page ceiling for range %s", max_pages, range_.value)

    unique: Dict[str, Session] = {}
    for session in collected:
        unique[session.id] = session
    logger.info(
        "Fetched %d sessions (%d unique) over %d pages for range %s",
        len(collected),
        len(unique),
        pages_read,
        range_.value,
    )
    return list(unique.values())
