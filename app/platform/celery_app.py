from celery import Celery
from kombu import Queue

from app.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - crawl: Site crawls (httpx fetch pool, no browser)
    - scan: Scan batches (Selenium browser pool)
    - assurance: Scheduled and manual assurance scans
    - default: Everything else

    Crawl and scan workers should run separately, since scan workers hold
    headless browsers and need far less concurrency.
    """
    celery_app = Celery(
        "accessibility_assurance",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    # Task serialization
    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        # Result settings
        result_expires=3600,  # Results expire after 1 hour

        # Task routing - each stage goes to its dedicated queue
        task_routes={
            "app.features.crawl.workers.tasks.run_crawl": {"queue": "crawl"},
            "app.features.scan.workers.tasks.run_scan_batch": {"queue": "scan"},
            "app.features.assurance.workers.tasks.run_assurance_scan": {"queue": "assurance"},
            "app.features.assurance.workers.tasks.run_due_assurance_scans": {"queue": "assurance"},
        },

        # Define queues
        task_queues=(
            Queue("default"),
            Queue("crawl"),
            Queue("scan"),
            Queue("assurance"),
        ),

        # Default queue
        task_default_queue="default",

        # Concurrency settings (can be overridden per worker)
        worker_prefetch_multiplier=1,  # Fair distribution

        # Retry settings
        task_acks_late=True,  # Acknowledge after task completes
        task_reject_on_worker_lost=True,  # Requeue if worker dies

        # Celery Beat schedule for periodic tasks
        beat_schedule={
            "run-due-assurance-scans": {
                "task": "app.features.assurance.workers.tasks.run_due_assurance_scans",
                "schedule": 900.0,  # Every 15 minutes
            },
        },
    )

    celery_app.autodiscover_tasks(
        [
            "app.features.crawl.workers",
            "app.features.scan.workers",
            "app.features.assurance.workers",
        ]
    )

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
