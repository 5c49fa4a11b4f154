from typing import Any, Dict, Optional

from app.platform.celery_app import celery_app
from app.platform.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    name="app.features.assurance.workers.tasks.run_assurance_scan",
    max_retries=0,
)
def run_assurance_scan(self, domain_id: str, trigger: str = "scheduled") -> Dict[str, Any]:
    """Scan one monitored domain now; the domain's schedule still advances."""
    import app.platform.db.models  # noqa: F401
    from app.features.assurance.models.assurance import AssuranceScanTrigger
    from app.features.assurance.services.assurance_scanner import AssuranceScanner

    logger.info(f"[{domain_id}] Assurance scan task started (task_id={self.request.id})")
    return AssuranceScanner().execute_assurance_scan(domain_id, AssuranceScanTrigger(trigger))


@celery_app.task(
    bind=True,
    name="app.features.assurance.workers.tasks.run_due_assurance_scans",
    max_retries=0,
)
def run_due_assurance_scans(self, limit: Optional[int] = None) -> Dict[str, Any]:
    """Beat entry point: sweep every domain whose next run is due."""
    import app.platform.db.models  # noqa: F401
    from app.features.assurance.services.assurance_scanner import AssuranceScanner

    results = AssuranceScanner().execute_due_scans(limit)
    if results["failed"]:
        logger.warning(f"{results['failed']} of {results['total']} due assurance scans failed")
    return results
