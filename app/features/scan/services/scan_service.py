"""
Scan service (API side): queue, inspect and cancel scan batches.
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.crawl.models.crawl import Crawl, CrawlStatus, CrawlUrl, CrawlUrlStatus
from app.features.crawl.services.frontier import normalize_url, registrable_domain
from app.features.scan.models.scan import Scan, ScanBatch, ScanBatchStatus, ScanTrigger
from app.features.scan.schemas.scan import ScanBatchResponse, ScanDetail, ScanSummary
from app.features.sites.models.site import Site, SiteStatus
from app.platform.exceptions import InvalidStateError, NotFoundError
from app.platform.logger import get_logger
from app.platform.utils.time import utcnow
from app.platform.utils.url_validator import validate_url

logger = get_logger(__name__)


def prepare_urls(site: Site, urls: List[str]) -> List[str]:
    """Validate, normalize and de-duplicate page URLs, keeping the input order."""
    site_domain = registrable_domain(site.root_url)
    prepared: List[str] = []
    for raw in urls:
        is_valid, url_str, error_message = validate_url(raw)
        if not is_valid:
            raise InvalidStateError(f"Invalid URL {raw!r}: {error_message}")
        url = normalize_url(url_str)
        if url is None or registrable_domain(url) != site_domain:
            raise InvalidStateError(f"URL {raw!r} is outside {site.root_url}")
        if url not in prepared:
            prepared.append(url)
    return prepared


async def _crawled_urls(db: AsyncSession, site: Site, crawl_id: str) -> List[str]:
    crawl = await db.get(Crawl, crawl_id)
    if not crawl or crawl.site_id != site.id:
        raise NotFoundError(f"Crawl {crawl_id} not found for site {site.id}")
    if crawl.status != CrawlStatus.done:
        raise InvalidStateError(f"Crawl {crawl_id} is {crawl.status.value}, wait until it is done")

    result = await db.execute(
        select(CrawlUrl.url)
        .where(CrawlUrl.crawl_id == crawl_id, CrawlUrl.status == CrawlUrlStatus.done)
        .order_by(CrawlUrl.depth, CrawlUrl.url)
    )
    return list(result.scalars().all())


async def create_scan_batch(
    db: AsyncSession,
    site_id: str,
    urls: Optional[List[str]] = None,
    crawl_id: Optional[str] = None,
    trigger: ScanTrigger = ScanTrigger.manual,
) -> ScanBatch:
    site = await db.get(Site, site_id)
    if not site or site.status == SiteStatus.deleted:
        raise NotFoundError(f"Site {site_id} not found")

    urls = list(urls or [])
    if not urls and crawl_id:
        urls = await _crawled_urls(db, site, crawl_id)
        trigger = ScanTrigger.crawl
    urls = prepare_urls(site, urls)
    if not urls:
        raise InvalidStateError("Nothing to scan: provide urls or a finished crawl with pages")

    batch = ScanBatch(
        site_id=site.id,
        crawl_id=crawl_id,
        status=ScanBatchStatus.queued,
        trigger=trigger,
        urls=urls,
        total_pages=len(urls),
    )
    db.add(batch)
    await db.commit()
    await db.refresh(batch)
    logger.info(f"[{batch.id}] Scan batch queued for site {site.id}: {len(urls)} pages")
    return batch


async def get_scan_batch(db: AsyncSession, batch_id: str) -> ScanBatchResponse:
    batch = await db.get(ScanBatch, batch_id)
    if not batch:
        raise NotFoundError(f"Scan batch {batch_id} not found")

    result = await db.execute(select(Scan).where(Scan.batch_id == batch_id).order_by(Scan.sequence))
    scans = result.scalars().all()

    finished = batch.pages_done + batch.pages_error
    progress = round(finished / batch.total_pages * 100) if batch.total_pages else 0

    return ScanBatchResponse(
        batch_id=batch.id,
        site_id=batch.site_id,
        crawl_id=batch.crawl_id,
        status=batch.status.value,
        trigger=batch.trigger.value,
        total_pages=batch.total_pages,
        pages_done=batch.pages_done,
        pages_error=batch.pages_error,
        progress=progress,
        cancel_requested=batch.cancel_requested_at is not None,
        error_message=batch.error_message,
        started_at=batch.started_at,
        finished_at=batch.finished_at,
        scans=[ScanSummary.from_model(scan) for scan in scans],
    )


async def get_scan(db: AsyncSession, scan_id: str) -> ScanDetail:
    scan = await db.get(Scan, scan_id)
    if not scan:
        raise NotFoundError(f"Scan {scan_id} not found")
    return ScanDetail.from_model(scan)


async def cancel_scan_batch(db: AsyncSession, batch_id: str) -> ScanBatch:
    """Queued batches close at once; running batches stop before their next page."""
    batch = await db.get(ScanBatch, batch_id)
    if not batch:
        raise NotFoundError(f"Scan batch {batch_id} not found")
    if batch.status in (ScanBatchStatus.done, ScanBatchStatus.error):
        raise InvalidStateError(f"Scan batch {batch_id} is already {batch.status.value}")

    now = utcnow()
    batch.cancel_requested_at = now
    if batch.status == ScanBatchStatus.queued:
        batch.status = ScanBatchStatus.done
        batch.finished_at = now

    await db.commit()
    await db.refresh(batch)
    logger.info(f"[{batch_id}] Scan batch cancellation requested (status={batch.status.value})")
    return batch
