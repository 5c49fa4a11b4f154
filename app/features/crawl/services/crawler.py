"""
Crawler

Drains a UrlFrontier with a bounded pool of fetch workers. Each worker
dequeues a URL, fetches and parses it, records the CrawlUrl outcome and
enqueues newly discovered links. One failing URL never aborts the crawl.
"""
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.features.crawl.models.crawl import Crawl, CrawlStatus, CrawlUrl, CrawlUrlStatus
from app.features.crawl.services.fetcher import PageFetcher, build_http_client
from app.features.crawl.services.frontier import UrlFrontier, normalize_url
from app.features.crawl.services.robots import RobotsPolicy, SitemapReader
from app.platform.config import settings
from app.platform.db.session import get_sync_db
from app.platform.exceptions import NotFoundError
from app.platform.logger import get_logger
from app.platform.utils.cancellation import CancellationToken
from app.platform.utils.time import utcnow

logger = get_logger(__name__)

ROBOTS_BLOCKED_REASON = "Blocked by robots.txt"
CANCELLED_REASON = "Crawl cancelled"


class CrawlRecorder:
    """
    Serializes every CrawlUrl / Crawl write of one crawl through a single
    session. Rows are keyed by normalized URL and created lazily, so a worker
    may mark a URL running before the discovering worker has recorded it.
    """

    def __init__(self, db: Session, crawl_id: str):
        self.db = db
        self.crawl_id = crawl_id
        self._lock = threading.Lock()
        self._rows: Dict[str, CrawlUrl] = {}

    def _get_or_create(self, url: str, depth: int, parent_url: Optional[str] = None) -> CrawlUrl:
        row = self._rows.get(url)
        if row is None:
            row = CrawlUrl(
                crawl_id=self.crawl_id,
                url=url,
                depth=depth,
                parent_url=parent_url,
                status=CrawlUrlStatus.queued,
            )
            self.db.add(row)
            self._rows[url] = row
        return row

    def discovered(self, url: str, depth: int, parent_url: Optional[str] = None):
        with self._lock:
            row = self._get_or_create(url, depth, parent_url)
            if parent_url and not row.parent_url:
                row.parent_url = parent_url
            self.db.commit()

    def running(self, url: str, depth: int):
        with self._lock:
            row = self._get_or_create(url, depth)
            row.status = CrawlUrlStatus.running
            self.db.commit()

    def finish(self, url: str, depth: int, status: CrawlUrlStatus, reason: Optional[str] = None, **fields):
        with self._lock:
            row = self._get_or_create(url, depth)
            if row.status in (CrawlUrlStatus.done, CrawlUrlStatus.error, CrawlUrlStatus.skipped):
                return
            row.status = status
            row.reason = reason
            row.fetched_at = utcnow()
            for key, value in fields.items():
                setattr(row, key, value)

            crawl = self.db.get(Crawl, self.crawl_id)
            if status == CrawlUrlStatus.done:
                crawl.pages_done += 1
            elif status == CrawlUrlStatus.error:
                crawl.pages_error += 1
            else:
                crawl.pages_skipped += 1
            self.db.commit()

    def skip_unfinished(self, reason: str) -> int:
        """Terminal-ize every row still queued or running. Returns how many were skipped."""
        with self._lock:
            skipped = 0
            for row in self._rows.values():
                if row.status in (CrawlUrlStatus.queued, CrawlUrlStatus.running):
                    row.status = CrawlUrlStatus.skipped
                    row.reason = reason
                    skipped += 1
            if skipped:
                crawl = self.db.get(Crawl, self.crawl_id)
                crawl.pages_skipped += skipped
            self.db.commit()
            return skipped


@dataclass
class CrawlContext:
    crawl_id: str
    frontier: UrlFrontier
    recorder: CrawlRecorder
    token: CancellationToken
    robots: Optional[RobotsPolicy]


class Crawler:
    """Runs one Crawl to a terminal state. Used from the crawl Celery task."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_sync_db,
        client: Optional[httpx.Client] = None,
        workers: Optional[int] = None,
        respect_robots: Optional[bool] = None,
        poll_interval: float = 2.0,
    ):
        self.session_factory = session_factory
        self.client = client or build_http_client()
        self.fetcher = PageFetcher(self.client)
        self.workers = workers or settings.CRAWL_WORKERS
        self.respect_robots = settings.CRAWL_RESPECT_ROBOTS if respect_robots is None else respect_robots
        self.poll_interval = poll_interval

    def _cancel_requested(self, crawl_id: str) -> bool:
        db = self.session_factory()
        try:
            crawl = db.get(Crawl, crawl_id)
            return crawl is None or crawl.cancel_requested_at is not None
        finally:
            db.close()

    def run(self, crawl_id: str, token: Optional[CancellationToken] = None) -> Dict:
        db = self.session_factory()
        try:
            crawl = db.get(Crawl, crawl_id)
            if not crawl:
                raise NotFoundError(f"Crawl {crawl_id} not found")
            if crawl.is_terminal:
                logger.info(f"[{crawl_id}] Crawl already {crawl.status.value}, nothing to do")
                return self._summary(db, crawl)

            token = token or CancellationToken(
                poll=lambda: self._cancel_requested(crawl_id), poll_interval=self.poll_interval
            )
            if crawl.cancel_requested_at is not None:
                token.cancel()

            seed = normalize_url(crawl.site.root_url)
            crawl.status = CrawlStatus.running
            crawl.started_at = utcnow()
            db.commit()
            logger.info(
                f"[{crawl_id}] Starting crawl of {seed} (max_pages={crawl.max_pages}, "
                f"max_depth={crawl.max_depth}, workers={self.workers})"
            )

            try:
                self._crawl(db, crawl, seed, token)
            except Exception as e:
                logger.error(f"[{crawl_id}] Crawl failed: {e}", exc_info=True)
                db.rollback()
                crawl = db.get(Crawl, crawl_id)
                crawl.status = CrawlStatus.error
                crawl.error_message = str(e)
                crawl.finished_at = utcnow()
                db.commit()
                raise

            return self._summary(db, crawl)
        finally:
            db.close()

    def _crawl(self, db: Session, crawl: Crawl, seed: Optional[str], token: CancellationToken):
        crawl_id = crawl.id
        recorder = CrawlRecorder(db, crawl_id)

        if seed is None:
            self._fail(db, crawl, recorder, f"Seed URL {crawl.site.root_url} is not a valid http(s) URL")
            return

        frontier = UrlFrontier(seed, crawl.max_pages, crawl.max_depth)
        robots = None
        if self.respect_robots:
            robots = RobotsPolicy(self.client, settings.CRAWL_USER_AGENT).load(seed)

        ctx = CrawlContext(crawl_id=crawl_id, frontier=frontier, recorder=recorder, token=token, robots=robots)

        if frontier.enqueue(seed, 0):
            recorder.discovered(seed, 0)

        # The seed runs alone first: if its host never answers, the crawl cannot start at all
        url, depth, ok = frontier.dequeue()
        if ok:
            try:
                seed_result = self._process(ctx, url, depth)
            finally:
                frontier.mark_visited(url)
            if seed_result is not None and seed_result.unreachable:
                frontier.close()
                self._fail(db, crawl, recorder, f"Could not reach seed {seed}: {seed_result.error}")
                return

        if crawl.include_sitemap and not token.cancelled:
            for sitemap_url in SitemapReader(self.client).read(seed):
                self._discover(ctx, sitemap_url, 1, parent_url=None)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=f"crawl-{crawl_id[:8]}") as pool:
            futures = [pool.submit(self._worker, ctx) for _ in range(self.workers)]
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_EXCEPTION)
                for future in done:
                    if future.exception() is not None:
                        frontier.close()
                        raise future.exception()
                if pending and token.cancelled and not frontier.closed:
                    leftover = frontier.close()
                    logger.info(f"[{crawl_id}] Cancellation observed, dropped {len(leftover)} queued URLs")

        cancelled = token.cancelled
        if cancelled:
            frontier.close()
            recorder.skip_unfinished(CANCELLED_REASON)

        db.refresh(crawl)
        crawl.status = CrawlStatus.done
        crawl.finished_at = utcnow()
        if cancelled:
            crawl.cancelled_at = crawl.finished_at
        db.commit()
        logger.info(
            f"[{crawl_id}] Crawl finished: done={crawl.pages_done} error={crawl.pages_error} "
            f"skipped={crawl.pages_skipped}{' (cancelled)' if cancelled else ''}"
        )

    def _fail(self, db: Session, crawl: Crawl, recorder: CrawlRecorder, message: str):
        logger.error(f"[{crawl.id}] {message}")
        recorder.skip_unfinished(message)
        db.refresh(crawl)
        crawl.status = CrawlStatus.error
        crawl.error_message = message
        crawl.finished_at = utcnow()
        db.commit()

    def _worker(self, ctx: CrawlContext):
        while not ctx.token.cancelled:
            url, depth, ok = ctx.frontier.dequeue()
            if not ok:
                return
            try:
                self._process(ctx, url, depth)
            except Exception as e:
                logger.error(f"[{ctx.crawl_id}] Unexpected failure on {url}: {e}", exc_info=True)
                ctx.recorder.finish(url, depth, CrawlUrlStatus.error, reason=f"Unexpected error: {e}")
            finally:
                ctx.frontier.mark_visited(url)

    def _process(self, ctx: CrawlContext, url: str, depth: int):
        if ctx.token.cancelled:
            ctx.recorder.finish(url, depth, CrawlUrlStatus.skipped, reason=CANCELLED_REASON)
            return None

        ctx.recorder.running(url, depth)

        if ctx.robots is not None and not ctx.robots.allowed(url):
            logger.debug(f"[{ctx.crawl_id}] {url} blocked by robots.txt")
            ctx.recorder.finish(url, depth, CrawlUrlStatus.skipped, reason=ROBOTS_BLOCKED_REASON)
            return None

        result = self.fetcher.fetch(url)

        # In-flight fetches are allowed to finish, but their outcome no longer counts
        if ctx.token.cancelled:
            ctx.recorder.finish(url, depth, CrawlUrlStatus.skipped, reason=CANCELLED_REASON)
            return result

        if not result.ok:
            logger.warning(f"[{ctx.crawl_id}] {url} failed: {result.error}")
            ctx.recorder.finish(
                url, depth, CrawlUrlStatus.error, reason=result.error, http_status=result.status_code
            )
            return result

        if depth < ctx.frontier.max_depth:
            for link in result.links:
                self._discover(ctx, link, depth + 1, parent_url=url)

        ctx.recorder.finish(
            url,
            depth,
            CrawlUrlStatus.done,
            http_status=result.status_code,
            title=result.title,
            links_found=len(result.links),
        )
        return result

    def _discover(self, ctx: CrawlContext, link: str, depth: int, parent_url: Optional[str]):
        normalized = normalize_url(link)
        if normalized and ctx.frontier.enqueue(normalized, depth):
            ctx.recorder.discovered(normalized, depth, parent_url)

    def _summary(self, db: Session, crawl: Crawl) -> Dict:
        total = db.query(func.count(CrawlUrl.id)).filter(CrawlUrl.crawl_id == crawl.id).scalar()
        return {
            "crawl_id": crawl.id,
            "status": crawl.status.value,
            "pages_done": crawl.pages_done,
            "pages_error": crawl.pages_error,
            "pages_skipped": crawl.pages_skipped,
            "total_urls": total,
            "cancelled": crawl.cancelled_at is not None,
            "error_message": crawl.error_message,
        }
