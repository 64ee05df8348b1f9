import logging
from typing import AsyncIterator, List, Optional, Protocol, Sequence, Set

from .models import PageRecord

logger = logging.getLogger(__name__)

SPA_WARNING = 'Possible SPA without sitemap - limited coverage'


class PageSource(Protocol):
    """Anything that yields PageRecords: the crawler, a sitemap, a fixed list of URLs"""

    def stream(self) -> AsyncIterator[PageRecord]: ...


def looks_like_spa(records: Sequence[PageRecord]) -> bool:
    """A lone page without a single reference usually means the links are rendered by JavaScript."""
    return len(records) == 1 and records[0].ok and not records[0].references


class SmartDiscovery:
    """
    Crawl first; fall back to another source when the crawl looks like a single-page app.

    Primary records are passed through as they arrive. The fallback only contributes
    pages the primary did not already produce.
    """

    def __init__(self, primary: PageSource, fallback: Optional[PageSource] = None):
        self.primary = primary
        self.fallback = fallback
        self.method = 'traditional'
        self.spa_warning: Optional[str] = None

    async def stream(self) -> AsyncIterator[PageRecord]:
        records: List[PageRecord] = []
        async for record in self.primary.stream():
            records.append(record)
            yield record

        if self.fallback is None or not looks_like_spa(records):
            logger.info(f'Traditional crawling successful: {len(records)} pages discovered')
            return

        logger.info(f'SPA detected ({len(records)} page, 0 links), attempting fallback discovery')
        seen: Set[str] = {record.url for record in records}
        added = 0
        async for record in self.fallback.stream():
            if record.url in seen:
                continue
            seen.add(record.url)
            added += 1
            yield record

        if added:
            self.method = 'sitemap'
            logger.info(f'Sitemap discovery successful: {added} additional pages')
        else:
            self.spa_warning = SPA_WARNING
            logger.warning('Unable to discover additional pages, this may be a SPA without a sitemap.xml')
