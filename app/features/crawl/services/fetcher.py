from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

SKIP_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico", ".bmp",
    ".pdf", ".zip", ".gz", ".rar", ".7z", ".tar",
    ".mp3", ".mp4", ".avi", ".mov", ".webm", ".wav",
    ".css", ".js", ".json", ".xml", ".txt", ".woff", ".woff2", ".ttf", ".eot",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
)


@dataclass
class FetchResult:
    url: str
    status_code: Optional[int] = None
    final_url: Optional[str] = None
    title: Optional[str] = None
    links: List[str] = field(default_factory=list)
    error: Optional[str] = None
    unreachable: bool = False  # host never answered (DNS / connect failure)

    @property
    def ok(self) -> bool:
        return self.error is None


def build_http_client(timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    return httpx.Client(
        follow_redirects=True,
        timeout=timeout or settings.CRAWL_FETCH_TIMEOUT,
        headers={"User-Agent": settings.CRAWL_USER_AGENT},
        transport=transport,
    )


def title_from_url(url: str) -> str:
    """Readable title from the last path segment, used when the page has no <title>."""
    path = urlparse(url).path.rstrip("/")
    if not path:
        return "Home"
    slug = path.split("/")[-1]
    slug = slug.rsplit(".", 1)[0] if "." in slug else slug
    title = slug.replace("-", " ").replace("_", " ").strip().title()
    return title or "Untitled Page"


def extract_links(html: str, page_url: str) -> List[str]:
    """
    Absolute http(s) targets of every <a href> on the page, in document order.
    Honors <base href>; drops fragments-only links, non-web schemes and static assets.
    """
    soup = BeautifulSoup(html, "lxml")

    base_url = page_url
    base_tag = soup.find("base", href=True)
    if base_tag:
        base_url = urljoin(page_url, base_tag["href"])

    links = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#"):
            continue
        absolute = urljoin(base_url, href)
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            continue
        if parsed.path.lower().endswith(SKIP_EXTENSIONS):
            continue
        absolute = absolute.split("#", 1)[0]
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


def extract_title(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "lxml")
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None


class PageFetcher:
    """Fetches one page over HTTP and parses its title and outgoing links."""

    def __init__(self, client: httpx.Client):
        self.client = client

    def fetch(self, url: str) -> FetchResult:
        try:
            response = self.client.get(url)
        except httpx.TimeoutException:
            return FetchResult(url=url, error=f"Timeout after {self.client.timeout.read}s")
        except httpx.ConnectError as e:
            return FetchResult(url=url, error=f"Connection failed: {e}", unreachable=True)
        except httpx.TooManyRedirects:
            return FetchResult(url=url, error="Too many redirects")
        except httpx.HTTPError as e:
            return FetchResult(url=url, error=f"Request failed: {e}")

        result = FetchResult(url=url, status_code=response.status_code, final_url=str(response.url))

        if response.status_code >= 400:
            result.error = f"HTTP {response.status_code}"
            return result

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type.lower():
            result.title = title_from_url(url)
            return result

        html = response.text
        result.title = extract_title(html) or title_from_url(url)
        result.links = extract_links(html, str(response.url))
        return result
