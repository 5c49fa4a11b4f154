import pytest

from app.features.crawl.models.crawl import Crawl, CrawlStatus, CrawlUrl, CrawlUrlStatus
from app.features.scan.models.scan import ScanBatchStatus, ScanTrigger
from app.features.scan.services import scan_service
from app.features.scan.services.scan_service import prepare_urls
from app.features.sites.models.site import Site
from app.features.sites.services import site_service
from app.platform.exceptions import InvalidStateError, NotFoundError


def test_prepare_urls_normalizes_and_dedupes_in_order():
    site = Site(account_id="acct_1", root_url="https://example.com")

    urls = prepare_urls(site, [
        "example.com/b",
        "https://EXAMPLE.com/a#top",
        "https://example.com/b/",
        "https://blog.example.com/post",
    ])

    assert urls == ["https://example.com/b", "https://example.com/a", "https://blog.example.com/post"]


def test_prepare_urls_rejects_other_sites():
    site = Site(account_id="acct_1", root_url="https://example.com")
    with pytest.raises(InvalidStateError):
        prepare_urls(site, ["https://other.org/"])
    with pytest.raises(InvalidStateError):
        prepare_urls(site, ["   "])


@pytest.mark.asyncio
async def test_create_batch_from_explicit_urls(async_db):
    site, _ = await site_service.get_or_create_site(async_db, url="https://example.com", account_id="acct_1")

    batch = await scan_service.create_scan_batch(async_db, site.id, urls=["https://example.com/", "https://example.com/"])

    assert batch.status == ScanBatchStatus.queued
    assert batch.trigger == ScanTrigger.manual
    assert batch.urls == ["https://example.com/"]
    assert batch.total_pages == 1


@pytest.mark.asyncio
async def test_create_batch_from_finished_crawl(async_db):
    site, _ = await site_service.get_or_create_site(async_db, url="https://example.com", account_id="acct_1")
    crawl = Crawl(site_id=site.id, status=CrawlStatus.done, max_pages=10, max_depth=2)
    async_db.add(crawl)
    await async_db.commit()
    async_db.add_all([
        CrawlUrl(crawl_id=crawl.id, url="https://example.com/", depth=0, status=CrawlUrlStatus.done),
        CrawlUrl(crawl_id=crawl.id, url="https://example.com/b", depth=1, status=CrawlUrlStatus.done),
        CrawlUrl(crawl_id=crawl.id, url="https://example.com/broken", depth=1, status=CrawlUrlStatus.error),
    ])
    await async_db.commit()

    batch = await scan_service.create_scan_batch(async_db, site.id, crawl_id=crawl.id)

    assert batch.trigger == ScanTrigger.crawl
    assert batch.urls == ["https://example.com/", "https://example.com/b"]


@pytest.mark.asyncio
async def test_create_batch_needs_something_to_scan(async_db):
    site, _ = await site_service.get_or_create_site(async_db, url="https://example.com", account_id="acct_1")

    with pytest.raises(InvalidStateError):
        await scan_service.create_scan_batch(async_db, site.id, urls=[])
    with pytest.raises(NotFoundError):
        await scan_service.create_scan_batch(async_db, "missing", urls=["https://example.com/"])


@pytest.mark.asyncio
async def test_create_batch_rejects_running_crawl(async_db):
    site, _ = await site_service.get_or_create_site(async_db, url="https://example.com", account_id="acct_1")
    crawl = Crawl(site_id=site.id, status=CrawlStatus.running, max_pages=10, max_depth=2)
    async_db.add(crawl)
    await async_db.commit()

    with pytest.raises(InvalidStateError):
        await scan_service.create_scan_batch(async_db, site.id, crawl_id=crawl.id)


@pytest.mark.asyncio
async def test_cancel_queued_batch_closes_it(async_db):
    site, _ = await site_service.get_or_create_site(async_db, url="https://example.com", account_id="acct_1")
    batch = await scan_service.create_scan_batch(async_db, site.id, urls=["https://example.com/"])

    cancelled = await scan_service.cancel_scan_batch(async_db, batch.id)

    assert cancelled.status == ScanBatchStatus.done
    assert cancelled.cancel_requested_at is not None
    with pytest.raises(InvalidStateError):
        await scan_service.cancel_scan_batch(async_db, batch.id)


@pytest.mark.asyncio
async def test_cancel_running_batch_only_requests_stop(async_db):
    site, _ = await site_service.get_or_create_site(async_db, url="https://example.com", account_id="acct_1")
    batch = await scan_service.create_scan_batch(async_db, site.id, urls=["https://example.com/"])
    batch.status = ScanBatchStatus.running
    await async_db.commit()

    cancelled = await scan_service.cancel_scan_batch(async_db, batch.id)

    assert cancelled.status == ScanBatchStatus.running
    assert cancelled.cancel_requested_at is not None


@pytest.mark.asyncio
async def test_batch_progress(async_db):
    site, _ = await site_service.get_or_create_site(async_db, url="https://example.com", account_id="acct_1")
    batch = await scan_service.create_scan_batch(
        async_db, site.id, urls=["https://example.com/", "https://example.com/a", "https://example.com/b", "https://example.com/c"]
    )
    batch.pages_done = 1
    batch.pages_error = 1
    await async_db.commit()

    response = await scan_service.get_scan_batch(async_db, batch.id)

    assert response.progress == 50
    assert response.total_pages == 4
    assert response.scans == []
