"""
Headless browser pool.

Browser sessions are checked out through a context manager and always come
back: healthy drivers return to the idle list, drivers that crashed or timed
out are quit. The pool size is the global cap on concurrent browser sessions.
"""
import threading
from contextlib import contextmanager
from typing import Callable, List, Optional

from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from app.platform.config import settings
from app.platform.exceptions import BatchFatalError, TransientScanError
from app.platform.logger import get_logger

logger = get_logger(__name__)

DESKTOP_WINDOW = (1280, 800)


def build_driver() -> webdriver.Chrome:
    chrome_options = Options()
    chrome_options.add_argument('--headless=new')
    chrome_options.add_argument('--no-sandbox')
    chrome_options.add_argument('--disable-dev-shm-usage')
    chrome_options.add_argument(f'--window-size={DESKTOP_WINDOW[0]},{DESKTOP_WINDOW[1]}')

    if settings.CHROMEDRIVER_PATH:
        driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
        driver = webdriver.Chrome(service=driver_service, options=chrome_options)
    else:
        driver = webdriver.Chrome(options=chrome_options)

    return driver


def quit_driver(driver):
    try:
        driver.quit()
    except WebDriverException as e:
        logger.warning(f"Error while quitting browser session: {e}")


class BrowserLease:
    def __init__(self, driver):
        self.driver = driver
        self.discarded = False

    def discard(self):
        """Do not return this driver to the pool (crashed or in an unknown state)."""
        self.discarded = True


class BrowserPool:
    def __init__(
        self,
        max_size: Optional[int] = None,
        factory: Callable[[], object] = build_driver,
        acquire_timeout: Optional[float] = None,
    ):
        self.max_size = max_size or settings.SCAN_GLOBAL_CONCURRENCY
        self.factory = factory
        self.acquire_timeout = settings.SCAN_SESSION_ACQUIRE_TIMEOUT if acquire_timeout is None else acquire_timeout
        self._slots = threading.BoundedSemaphore(self.max_size)
        self._lock = threading.Lock()
        self._idle: List[object] = []
        self._closed = False

    @contextmanager
    def checkout(self, timeout: Optional[float] = None):
        """
        Yield a BrowserLease. Raises BatchFatalError when no session can be
        acquired within the timeout or a new browser cannot be launched.
        """
        timeout = self.acquire_timeout if timeout is None else timeout
        if not self._slots.acquire(timeout=timeout):
            raise BatchFatalError("No browser session available")

        lease = None
        try:
            with self._lock:
                if self._closed:
                    raise BatchFatalError("Browser pool is closed")
                driver = self._idle.pop() if self._idle else None

            if driver is None:
                try:
                    driver = self.factory()
                except WebDriverException as e:
                    raise BatchFatalError(f"Could not launch browser: {e.msg or e}") from e

            lease = BrowserLease(driver)
            try:
                yield lease
            except (TransientScanError, WebDriverException):
                lease.discard()
                raise
        finally:
            if lease is not None:
                self._release(lease)
            self._slots.release()

    def _release(self, lease: BrowserLease):
        with self._lock:
            if not lease.discarded and not self._closed:
                self._idle.append(lease.driver)
                return
        quit_driver(lease.driver)

    def close(self):
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for driver in idle:
            quit_driver(driver)

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)
