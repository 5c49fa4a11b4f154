"""
URL Frontier

Deduplicated, bounded queue of discovered URLs shared by every fetch worker of
one crawl. All state lives behind a single lock; critical sections only touch
in-memory sets and the deque.
"""
import enum
import threading
from collections import deque
from typing import Deque, Optional, Set, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import tldextract

from app.platform.logger import get_logger

logger = get_logger(__name__)

# Bundled public-suffix snapshot only; never fetch the list over the network
_tld_extract = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())

TRACKING_PARAMS = {"gclid", "fbclid", "msclkid", "dclid", "ref", "mc_cid", "mc_eid", "_ga", "_gl"}
TRACKING_PREFIXES = ("utm_",)

DEFAULT_PORTS = {"http": 80, "https": 443}


class RejectReason(enum.Enum):
    malformed = "malformed URL"
    off_domain = "outside the seed's registrable domain"
    visited = "already discovered"
    depth = "exceeds max depth"
    budget = "page budget exhausted"
    closed = "frontier closed"


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def normalize_url(url: str, base: Optional[str] = None) -> Optional[str]:
    """
    Canonical form used for dedup.

    Resolves relative references against base, lowercases scheme and host,
    drops default ports, fragments and tracking parameters, sorts the
    remaining query and strips the trailing slash of non-root paths.
    Returns None for anything that is not an absolute http(s) URL.
    """
    if not url or not url.strip():
        return None

    raw = url.strip()
    if base:
        raw = urljoin(base, raw)

    try:
        parsed = urlparse(raw)
        port = parsed.port
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parsed.hostname:
        return None

    host = parsed.hostname.lower()
    netloc = host if port in (None, DEFAULT_PORTS[scheme]) else f"{host}:{port}"

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    query = urlencode(sorted(query_pairs))

    return urlunparse((scheme, netloc, path, "", query, ""))


def registrable_domain(url: str) -> Optional[str]:
    """example.com for https://blog.example.com/x; the bare host for IPs and localhost."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    ext = _tld_extract(host)
    if ext.suffix and ext.domain:
        return f"{ext.domain}.{ext.suffix}".lower()
    return host.lower()


class UrlFrontier:
    """
    Enqueue/Dequeue/MarkVisited for one crawl.

    A URL is accepted at most once. max_pages bounds the number of accepted
    URLs, so the crawl never records more CrawlUrl rows than its budget.
    """

    def __init__(self, seed_url: str, max_pages: int, max_depth: int):
        self.seed_domain = registrable_domain(seed_url)
        self.max_pages = max_pages
        self.max_depth = max_depth

        self._lock = threading.Lock()
        self._has_work = threading.Condition(self._lock)
        self._queue: Deque[Tuple[str, int]] = deque()
        self._seen: Set[str] = set()
        self._visited: Set[str] = set()
        self._in_flight = 0
        self._accepted = 0
        self._closed = False

    # ── Public contract ─────────────────────────

    def normalize(self, url: str, base: Optional[str] = None) -> Optional[str]:
        return normalize_url(url, base)

    def enqueue(self, url: str, depth: int) -> bool:
        accepted, reason = self.try_enqueue(url, depth)
        if not accepted:
            logger.debug(f"Frontier rejected {url} at depth {depth}: {reason.value}")
        return accepted

    def try_enqueue(self, url: str, depth: int) -> Tuple[bool, Optional[RejectReason]]:
        normalized = normalize_url(url)
        if normalized is None:
            return False, RejectReason.malformed
        if self.seed_domain is None or registrable_domain(normalized) != self.seed_domain:
            return False, RejectReason.off_domain
        if depth > self.max_depth:
            return False, RejectReason.depth

        with self._lock:
            if self._closed:
                return False, RejectReason.closed
            if normalized in self._seen or normalized in self._visited:
                return False, RejectReason.visited
            if self._accepted >= self.max_pages:
                return False, RejectReason.budget
            self._seen.add(normalized)
            self._accepted += 1
            self._queue.append((normalized, depth))
            self._has_work.notify()
        return True, None

    def dequeue(self, timeout: Optional[float] = None) -> Tuple[Optional[str], int, bool]:
        """
        Pop the next URL. Blocks while the queue is empty but other workers
        still hold URLs that may yield new links. Returns (None, 0, False)
        once the frontier is exhausted or closed.
        """
        with self._has_work:
            while not self._queue and self._in_flight > 0 and not self._closed:
                if not self._has_work.wait(timeout=timeout):
                    return None, 0, False
            if self._closed or not self._queue:
                return None, 0, False
            url, depth = self._queue.popleft()
            self._in_flight += 1
            return url, depth, True

    def mark_visited(self, url: str):
        """Record the URL as processed and release the worker's in-flight slot."""
        with self._has_work:
            self._visited.add(url)
            if self._in_flight > 0:
                self._in_flight -= 1
            self._has_work.notify_all()

    def close(self) -> list:
        """Stop handing out work. Returns the URLs that were queued but never dequeued."""
        with self._has_work:
            self._closed = True
            remaining = [url for url, _ in self._queue]
            self._queue.clear()
            self._has_work.notify_all()
            return remaining

    # ── Introspection ───────────────────────────

    @property
    def accepted_count(self) -> int:
        with self._lock:
            return self._accepted

    @property
    def remaining_budget(self) -> int:
        with self._lock:
            return max(0, self.max_pages - self._accepted)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def is_exhausted(self) -> bool:
        with self._lock:
            return self._closed or (not self._queue and self._in_flight == 0)
