import threading
import time
from typing import Callable, Optional


class CancellationToken:
    """
    Cooperative cancellation flag for a crawl or scan batch.

    Cancellation is usually requested from another process (the API writes a
    timestamp on the row), so the token can poll a callable at most once per
    poll_interval. Once observed, cancellation is sticky.
    """

    def __init__(self, poll: Optional[Callable[[], bool]] = None, poll_interval: float = 2.0):
        self._event = threading.Event()
        self._poll = poll
        self._poll_interval = poll_interval
        self._poll_lock = threading.Lock()
        self._last_poll = 0.0

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._poll is None:
            return False

        # Only one thread polls; the others read the last observed value
        if not self._poll_lock.acquire(blocking=False):
            return self._event.is_set()
        try:
            now = time.monotonic()
            if now - self._last_poll >= self._poll_interval:
                self._last_poll = now
                if self._poll():
                    self._event.set()
        finally:
            self._poll_lock.release()
        return self._event.is_set()
