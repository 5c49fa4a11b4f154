from typing import List, Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup

from app.platform.logger import get_logger

logger = get_logger(__name__)


def site_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


class RobotsPolicy:
    """robots.txt rules for one origin. Missing or unreachable robots.txt allows everything."""

    def __init__(self, client: httpx.Client, user_agent: str):
        self.client = client
        self.user_agent = user_agent
        self._parser: Optional[RobotFileParser] = None

    def load(self, origin: str) -> "RobotsPolicy":
        robots_url = f"{site_origin(origin)}/robots.txt"
        try:
            response = self.client.get(robots_url)
        except httpx.HTTPError as e:
            logger.debug(f"Could not fetch robots.txt at {robots_url}: {e}")
            return self

        if response.status_code == 200:
            parser = RobotFileParser(robots_url)
            parser.parse(response.text.splitlines())
            self._parser = parser
        return self

    def allowed(self, url: str) -> bool:
        if self._parser is None:
            return True
        return self._parser.can_fetch(self.user_agent, url)


class SitemapReader:
    """Reads /sitemap.xml, following one level of sitemap index."""

    def __init__(self, client: httpx.Client):
        self.client = client

    def read(self, origin: str) -> List[str]:
        return self._read(f"{site_origin(origin)}/sitemap.xml", nested=True)

    def _read(self, sitemap_url: str, nested: bool) -> List[str]:
        try:
            response = self.client.get(sitemap_url)
        except httpx.HTTPError as e:
            logger.debug(f"Sitemap fetch failed for {sitemap_url}: {e}")
            return []
        if response.status_code != 200:
            return []

        content = response.text
        soup = BeautifulSoup(content, "xml")
        locs = [loc.get_text(strip=True) for loc in soup.find_all("loc")]

        if soup.find("sitemapindex"):
            if not nested:
                return []
            urls = []
            for child in locs:
                urls.extend(self._read(child, nested=False))
            return urls

        return [loc for loc in locs if loc]
