import logging
from typing import AsyncIterator, List, Optional, Set
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from .constants import DEFAULT_MAX_PAGES
from .fetcher import PageFetcher
from .models import PageRecord
from .utils import try_normalize

logger = logging.getLogger(__name__)

SITEMAP_HEADERS = {'Accept': 'application/xml,text/xml,*/*'}


def parse_sitemap(xml: str) -> List[str]:
    """Every <loc> value, in document order"""
    soup = BeautifulSoup(xml, 'html.parser')
    return [loc.get_text(strip=True) for loc in soup.find_all('loc') if loc.get_text(strip=True)]


def is_sitemap_index(xml: str) -> bool:
    return '<sitemapindex' in xml or '<sitemap>' in xml


def sitemap_url_for(start_url: str) -> str:
    parsed = urlparse(start_url)
    return f'{parsed.scheme}://{parsed.netloc}/sitemap.xml'


class SitemapSource:
    """Page source for sites whose links only exist after JavaScript runs."""

    def __init__(self, fetcher: PageFetcher, start_url: str, max_pages: int = DEFAULT_MAX_PAGES):
        self.fetcher = fetcher
        self.start_url = start_url
        self.max_pages = max_pages

    async def _fetch_text(self, url: str) -> Optional[str]:
        try:
            response = await self.fetcher.client.get(url, headers=SITEMAP_HEADERS, timeout=self.fetcher.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f'Error fetching sitemap {url}: {type(e).__name__}')
            return None
        if response.status_code != 200:
            logger.warning(f'Sitemap {url} returned status {response.status_code}')
            return None
        return response.text

    async def fetch_urls(self, sitemap_url: Optional[str] = None, visited: Optional[Set[str]] = None) -> List[str]:
        """Collect page URLs, following sitemap indexes; each sitemap is read once."""
        sitemap_url = sitemap_url or sitemap_url_for(self.start_url)
        visited = visited if visited is not None else set()
        if sitemap_url in visited:
            return []
        visited.add(sitemap_url)

        logger.info(f'Fetching sitemap: {sitemap_url}')
        xml = await self._fetch_text(sitemap_url)
        if xml is None:
            return []

        locations = parse_sitemap(xml)
        if not is_sitemap_index(xml):
            logger.info(f'Found {len(locations)} URLs in sitemap {sitemap_url}')
            return locations

        logger.info(f'Sitemap index found at {sitemap_url}, fetching {len(locations)} nested sitemaps')
        urls: List[str] = []
        for nested_url in locations:
            urls.extend(await self.fetch_urls(nested_url, visited))
        return urls

    async def stream(self) -> AsyncIterator[PageRecord]:
        seen: Set[str] = set()
        for url in await self.fetch_urls():
            canonical = try_normalize(url)
            if not canonical or canonical in seen:
                continue
            seen.add(canonical)
            yield PageRecord(url=canonical, title='From sitemap', source='sitemap')
            if len(seen) >= self.max_pages:
                logger.info(f'Reached page limit ({self.max_pages}) while reading sitemap.')
                break
