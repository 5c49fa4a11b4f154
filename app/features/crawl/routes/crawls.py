from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.crawl.schemas.crawl import CrawlStartRequest, CrawlStartResponse, CrawlStatusResponse
from app.features.crawl.services import crawl_service
from app.features.crawl.workers.tasks import run_crawl
from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response

logger = get_logger(__name__)

router = APIRouter(prefix="/crawls", tags=["crawls"])


@router.post("")
async def start_crawl(payload: CrawlStartRequest, db: AsyncSession = Depends(get_db)):
    crawl = await crawl_service.start_crawl(
        db,
        site_id=payload.site_id,
        max_pages=payload.max_pages,
        max_depth=payload.max_depth,
        include_sitemap=payload.include_sitemap,
    )

    task = run_crawl.delay(crawl.id)
    crawl.celery_task_id = task.id
    await db.commit()

    return api_response(
        data=CrawlStartResponse(crawl_id=crawl.id, status=crawl.status.value, task_id=task.id),
        message="Crawl queued",
        status_code=status.HTTP_202_ACCEPTED,
    )


@router.get("/{crawl_id}")
async def get_crawl_status(crawl_id: str, db: AsyncSession = Depends(get_db)):
    crawl_status = await crawl_service.get_crawl_status(db, crawl_id)
    return api_response(
        data=CrawlStatusResponse(**crawl_status),
        message="Crawl status retrieved",
    )


@router.post("/{crawl_id}/cancel")
async def cancel_crawl(crawl_id: str, db: AsyncSession = Depends(get_db)):
    crawl = await crawl_service.cancel_crawl(db, crawl_id)
    return api_response(
        data={"crawl_id": crawl.id, "status": crawl.status.value, "cancel_requested": True},
        message="Crawl cancellation requested",
    )
