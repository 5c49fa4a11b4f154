"""
Scan Orchestrator

Turns a list of page URLs for one site into per-page outcomes:

- one active browser session per site (SiteLocks), unrelated sites run in
  parallel up to the browser pool's global cap
- pages are scanned in input order
- only transient failures are retried, with exponential backoff
- a page failure never stops its siblings; a batch-fatal failure (no browser)
  marks every remaining page failed without touching the browser again
"""
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

from app.features.scan.schemas.results import FailureKind, ScanFailure, ScanOutcome
from app.features.scan.services.browser_pool import BrowserPool
from app.features.scan.services.scan_runner import ScanRunner
from app.platform.cache.redis import get_redis
from app.platform.config import settings
from app.platform.exceptions import BatchFatalError
from app.platform.logger import get_logger
from app.platform.utils.cancellation import CancellationToken

logger = get_logger(__name__)

CANCELLED_REASON = "Scan batch cancelled"


class SiteLocks:
    """
    Per-site mutual exclusion for browser sessions.

    Always serialises within the process; when a redis client is available
    the same key is also locked in redis so separate worker processes
    respect it.
    """

    def __init__(self, redis_client=None, timeout: Optional[int] = None):
        self.redis = redis_client
        self.timeout = timeout or settings.SCAN_SITE_LOCK_TIMEOUT
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _local(self, site_id: str) -> threading.Lock:
        with self._guard:
            if site_id not in self._locks:
                self._locks[site_id] = threading.Lock()
            return self._locks[site_id]

    @contextmanager
    def hold(self, site_id: str):
        local = self._local(site_id)
        if not local.acquire(timeout=self.timeout):
            raise BatchFatalError(f"Timed out waiting for the browser session of site {site_id}")
        try:
            if self.redis is None:
                yield
                return

            remote = self.redis.lock(
                f"scan:site:{site_id}",
                timeout=self.timeout,
                blocking_timeout=self.timeout,
            )
            if not remote.acquire():
                raise BatchFatalError(f"Site {site_id} is being scanned by another worker")
            try:
                yield
            finally:
                remote.release()
        finally:
            local.release()


_pool: Optional[BrowserPool] = None
_site_locks: Optional[SiteLocks] = None
_singleton_lock = threading.Lock()


def get_browser_pool() -> BrowserPool:
    global _pool
    with _singleton_lock:
        if _pool is None:
            _pool = BrowserPool(settings.SCAN_GLOBAL_CONCURRENCY, acquire_timeout=settings.SCAN_SESSION_ACQUIRE_TIMEOUT)
        return _pool


def get_site_locks() -> SiteLocks:
    global _site_locks
    with _singleton_lock:
        if _site_locks is None:
            _site_locks = SiteLocks(get_redis())
        return _site_locks


OnResult = Callable[[int, ScanOutcome], None]


class ScanOrchestrator:
    def __init__(
        self,
        runner: Optional[ScanRunner] = None,
        site_locks: Optional[SiteLocks] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner or ScanRunner(get_browser_pool())
        self.site_locks = site_locks or get_site_locks()
        self.max_retries = settings.SCAN_MAX_RETRIES if max_retries is None else max_retries
        self.backoff = settings.SCAN_RETRY_BACKOFF if backoff is None else backoff
        self.sleep = sleep

    def scan_site(
        self,
        site_id: str,
        urls: List[str],
        token: Optional[CancellationToken] = None,
        on_result: Optional[OnResult] = None,
    ) -> List[ScanOutcome]:
        """
        Scan every URL of one site. Returns one outcome per input URL, in input order.
        on_result(index, outcome) is called as soon as each page reaches a terminal state.
        """
        token = token or CancellationToken()
        outcomes: List[ScanOutcome] = []

        def emit(outcome: ScanOutcome):
            if on_result is not None:
                on_result(len(outcomes), outcome)
            outcomes.append(outcome)

        try:
            with self.site_locks.hold(site_id):
                logger.info(f"[{site_id}] Scanning {len(urls)} pages")
                fatal: Optional[ScanFailure] = None
                for url in urls:
                    if fatal is not None:
                        emit(ScanFailure(url=url, reason=f"Batch aborted: {fatal.reason}",
                                         kind=FailureKind.batch, attempts=0))
                        continue
                    if token.cancelled:
                        emit(ScanFailure(url=url, reason=CANCELLED_REASON,
                                         kind=FailureKind.cancelled, attempts=0))
                        continue

                    outcome = self.scan_page(url, token)
                    if isinstance(outcome, ScanFailure) and outcome.kind == FailureKind.batch:
                        logger.error(f"[{site_id}] Batch-fatal failure on {url}: {outcome.reason}")
                        fatal = outcome
                    emit(outcome)
        except BatchFatalError as e:
            logger.error(f"[{site_id}] Could not start scan batch: {e.message}", exc_info=True)
            for url in urls[len(outcomes):]:
                emit(ScanFailure(url=url, reason=e.message, kind=FailureKind.batch, attempts=0))

        done = sum(1 for outcome in outcomes if outcome.ok)
        logger.info(f"[{site_id}] Scan batch finished: {done} done, {len(outcomes) - done} failed")
        return outcomes

    def scan_page(self, url: str, token: Optional[CancellationToken] = None) -> ScanOutcome:
        """Run one page with the transient-retry policy."""
        attempt = 1
        while True:
            outcome = self.runner.run_scan(url, attempt=attempt)
            if outcome.ok or not outcome.retryable or attempt > self.max_retries:
                if not outcome.ok and outcome.kind == FailureKind.page:
                    logger.error(f"Page scan failed for {url}: {outcome.reason}")
                return outcome
            if token is not None and token.cancelled:
                return outcome

            delay = self.backoff * (2 ** (attempt - 1))
            logger.warning(f"Transient failure on {url} (attempt {attempt}), retrying in {delay:.1f}s: {outcome.reason}")
            self.sleep(delay)
            attempt += 1
