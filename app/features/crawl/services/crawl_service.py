"""
Crawl service (API side): start, inspect and cancel crawls.

The crawl itself runs in a Celery worker (see workers/tasks.py); these
functions only touch rows through the request's AsyncSession.
"""
import math
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.crawl.models.crawl import Crawl, CrawlStatus, CrawlUrl, CrawlUrlStatus
from app.features.sites.models.site import Site, SiteStatus
from app.platform.config import settings
from app.platform.exceptions import InvalidStateError, NotFoundError
from app.platform.logger import get_logger
from app.platform.utils.time import utcnow

logger = get_logger(__name__)

MAX_PAGES_LIMIT = 1000
MAX_DEPTH_LIMIT = 10


def estimate_time_remaining(
    status: CrawlStatus,
    started_at: Optional[datetime],
    done: int,
    queued: int,
    now: datetime,
) -> Optional[str]:
    """Remaining time from the average time per completed page; None unless running."""
    if status != CrawlStatus.running or done == 0 or started_at is None:
        return None

    elapsed = (now - started_at).total_seconds()
    remaining_seconds = (elapsed / done) * queued
    minutes = math.ceil(remaining_seconds / 60)

    if minutes < 1:
        return "Less than 1 minute"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes > 1 else ''}"
    return f"{minutes // 60}h {minutes % 60}m"


def build_crawl_status(crawl: Crawl, counts: Dict[str, int], now: Optional[datetime] = None) -> Dict:
    now = now or utcnow()
    status_counts = {s.value: counts.get(s.value, 0) for s in CrawlUrlStatus}
    total = sum(status_counts.values())
    progress = round(status_counts["done"] / total * 100) if total else 0

    return {
        "crawl_id": crawl.id,
        "site_id": crawl.site_id,
        "status": crawl.status.value,
        "max_pages": crawl.max_pages,
        "max_depth": crawl.max_depth,
        "pages_done": crawl.pages_done,
        "pages_error": crawl.pages_error,
        "pages_skipped": crawl.pages_skipped,
        "total_urls": total,
        "status_counts": status_counts,
        "progress": progress,
        "estimated_time_remaining": estimate_time_remaining(
            crawl.status, crawl.started_at, status_counts["done"], status_counts["queued"], now
        ),
        "is_running": crawl.status == CrawlStatus.running,
        "cancel_requested": crawl.cancel_requested_at is not None,
        "cancelled": crawl.cancelled_at is not None,
        "can_restart": crawl.is_terminal,
        "error_message": crawl.error_message,
        "started_at": crawl.started_at,
        "finished_at": crawl.finished_at,
    }


async def start_crawl(
    db: AsyncSession,
    site_id: str,
    max_pages: Optional[int] = None,
    max_depth: Optional[int] = None,
    include_sitemap: bool = True,
) -> Crawl:
    """Create the queued Crawl row. The caller dispatches the worker task."""
    max_pages = settings.CRAWL_DEFAULT_MAX_PAGES if max_pages is None else max_pages
    max_depth = settings.CRAWL_DEFAULT_MAX_DEPTH if max_depth is None else max_depth

    if not 1 <= max_pages <= MAX_PAGES_LIMIT:
        raise InvalidStateError(f"max_pages must be between 1 and {MAX_PAGES_LIMIT}")
    if not 0 <= max_depth <= MAX_DEPTH_LIMIT:
        raise InvalidStateError(f"max_depth must be between 0 and {MAX_DEPTH_LIMIT}")

    site = await db.get(Site, site_id)
    if not site or site.status == SiteStatus.deleted:
        raise NotFoundError(f"Site {site_id} not found")

    crawl = Crawl(
        site_id=site_id,
        status=CrawlStatus.queued,
        max_pages=max_pages,
        max_depth=max_depth,
        include_sitemap=include_sitemap,
    )
    db.add(crawl)
    await db.commit()
    await db.refresh(crawl)
    logger.info(f"[{crawl.id}] Crawl queued for site {site_id} ({site.root_url})")
    return crawl


async def get_crawl_status(db: AsyncSession, crawl_id: str) -> Dict:
    crawl = await db.get(Crawl, crawl_id)
    if not crawl:
        raise NotFoundError(f"Crawl {crawl_id} not found")

    result = await db.execute(
        select(CrawlUrl.status, func.count(CrawlUrl.id))
        .where(CrawlUrl.crawl_id == crawl_id)
        .group_by(CrawlUrl.status)
    )
    counts = {status.value: count for status, count in result.all()}
    return build_crawl_status(crawl, counts)


async def cancel_crawl(db: AsyncSession, crawl_id: str) -> Crawl:
    """
    Request cancellation. A queued crawl is closed immediately; a running
    crawl is flagged and the worker stops dequeuing on its next poll.
    """
    crawl = await db.get(Crawl, crawl_id)
    if not crawl:
        raise NotFoundError(f"Crawl {crawl_id} not found")
    if crawl.is_terminal:
        raise InvalidStateError(f"Crawl {crawl_id} is already {crawl.status.value}")

    now = utcnow()
    crawl.cancel_requested_at = now
    if crawl.status == CrawlStatus.queued:
        crawl.status = CrawlStatus.done
        crawl.cancelled_at = now
        crawl.finished_at = now

    await db.commit()
    await db.refresh(crawl)
    logger.info(f"[{crawl_id}] Cancellation requested (status={crawl.status.value})")
    return crawl
