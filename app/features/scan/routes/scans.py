from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.schemas.scan import ScanBatchRequest, ScanBatchStartResponse
from app.features.scan.services import scan_service
from app.features.scan.workers.tasks import run_scan_batch
from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response

logger = get_logger(__name__)

router = APIRouter(prefix="/scans", tags=["scans"])


@router.post("")
async def start_scan_batch(payload: ScanBatchRequest, db: AsyncSession = Depends(get_db)):
    batch = await scan_service.create_scan_batch(
        db,
        site_id=payload.site_id,
        urls=payload.urls,
        crawl_id=payload.crawl_id,
    )

    task = run_scan_batch.delay(batch.id)
    batch.celery_task_id = task.id
    await db.commit()

    return api_response(
        data=ScanBatchStartResponse(
            batch_id=batch.id,
            status=batch.status.value,
            total_pages=batch.total_pages,
            task_id=task.id,
        ),
        message="Scan batch queued",
        status_code=status.HTTP_202_ACCEPTED,
    )


@router.get("/{batch_id}")
async def get_scan_batch(batch_id: str, db: AsyncSession = Depends(get_db)):
    batch = await scan_service.get_scan_batch(db, batch_id)
    return api_response(data=batch, message="Scan batch retrieved")


@router.post("/{batch_id}/cancel")
async def cancel_scan_batch(batch_id: str, db: AsyncSession = Depends(get_db)):
    batch = await scan_service.cancel_scan_batch(db, batch_id)
    return api_response(
        data={"batch_id": batch.id, "status": batch.status.value, "cancel_requested": True},
        message="Scan batch cancellation requested",
    )


@router.get("/results/{scan_id}")
async def get_scan_result(scan_id: str, db: AsyncSession = Depends(get_db)):
    scan = await scan_service.get_scan(db, scan_id)
    return api_response(data=scan, message="Scan retrieved")
