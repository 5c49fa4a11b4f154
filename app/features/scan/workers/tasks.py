from typing import Any, Dict

from app.platform.celery_app import celery_app
from app.platform.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    name="app.features.scan.workers.tasks.run_scan_batch",
    max_retries=0,
)
def run_scan_batch(self, batch_id: str) -> Dict[str, Any]:
    """
    Scan every page of one batch.

    Transient page failures are retried inside the orchestrator, so the task
    itself is never retried: a second run would create duplicate Scan rows.

    Args:
        batch_id: The ScanBatch ID

    Returns:
        Batch summary with per-status counts and the created scan ids
    """
    import app.platform.db.models  # noqa: F401
    from app.features.scan.services.scan_batch import ScanBatchRunner

    logger.info(f"[{batch_id}] Scan batch task started (task_id={self.request.id})")
    summary = ScanBatchRunner().run(batch_id)
    logger.info(
        f"[{batch_id}] Scan batch task finished: status={summary['status']} "
        f"done={summary['pages_done']} error={summary['pages_error']}"
    )
    return summary
