from typing import Any, Dict

from app.platform.celery_app import celery_app
from app.platform.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    name="app.features.crawl.workers.tasks.run_crawl",
    max_retries=0,
)
def run_crawl(self, crawl_id: str) -> Dict[str, Any]:
    """
    Run one crawl to completion.

    Page-level failures are recorded on the CrawlUrl rows; only a crawl that
    could not run at all ends in status error.
    """
    import app.platform.db.models  # noqa: F401
    from app.features.crawl.services.crawler import Crawler

    logger.info(f"[{crawl_id}] Crawl task started (task_id={self.request.id})")
    summary = Crawler().run(crawl_id)
    logger.info(f"[{crawl_id}] Crawl task finished with status {summary['status']}")
    return summary
