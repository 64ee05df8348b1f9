import datetime
import logging
import time
from typing import Callable, List, Optional, Tuple

import httpx

from .aggregator import ResultAggregator
from .config import CheckerConfig
from .core import Crawler, ProgressCallback
from .discovery import SmartDiscovery
from .fetcher import PageFetcher, Resolver, create_client
from .models import PageRecord, Reference, Report
from .sitemap import SitemapSource
from .utils import try_normalize
from .validator import LinkValidator, VerdictCallback

logger = logging.getLogger(__name__)


class SiteChecker:
    """
    Crawls a site and validates its links in one pipelined run.

    Links leaving the site are handed to the validator as soon as the page holding them
    is crawled. Same-origin links wait for the crawl to finish: by then they are either
    known pages (skipped) or pages the crawl never reached, which get checked like any link.
    """

    def __init__(
        self,
        config: CheckerConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resolver: Optional[Resolver] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_broken_link: Optional[VerdictCallback] = None,
        on_page: Optional[Callable[[PageRecord], None]] = None,
    ):
        self.config = config
        self._transport = transport
        self._resolver = resolver
        self._on_progress = on_progress
        self._on_broken_link = on_broken_link
        self._on_page = on_page

    async def run(self) -> Report:
        config = self.config
        start_time = datetime.datetime.now(datetime.timezone.utc)
        start_perf = time.perf_counter()

        async with create_client(
            max_connections=config.max_connections,
            timeout=config.page_timeout,
            max_redirects=config.max_redirects,
            user_agent=config.user_agent,
            verify_ssl=config.verify_ssl,
            transport=self._transport,
        ) as client:
            fetcher = PageFetcher(
                client,
                timeout=config.page_timeout,
                probe_timeout=config.probe_timeout,
                max_body_bytes=config.max_body_bytes,
                resolver=self._resolver,
            )
            crawler = Crawler(
                start_url=config.start_url,
                fetcher=fetcher,
                concurrency=config.concurrency,
                max_pages=config.max_pages,
                blacklist_extensions=config.blacklist_extensions,
                on_progress=self._on_progress,
            )
            fallback = SitemapSource(fetcher, crawler.start_url, config.max_pages) if config.use_sitemap_fallback else None
            discovery = SmartDiscovery(crawler, fallback)
            validator = LinkValidator(
                fetcher,
                known_pages=crawler.frontier,
                request_delay=config.request_delay,
                jitter=config.jitter,
                max_retries=config.max_retries,
                backoff=config.backoff,
                failure_threshold=config.failure_threshold,
                max_concurrency=config.max_link_concurrency,
                on_broken=self._on_broken_link,
            )
            aggregator = ResultAggregator(crawler.start_url)
            validator.add_listener(aggregator.add_verdict)

            deferred: List[Tuple[Reference, str]] = []
            try:
                async for record in discovery.stream():
                    aggregator.add_page(record)
                    if self._on_page:
                        self._on_page(record)

                    for reference in record.references:
                        canonical = try_normalize(reference.url)
                        if canonical and crawler.is_crawlable(canonical):
                            deferred.append((reference, record.url))
                        else:
                            validator.submit(reference, record.url)

                logger.info(f'Discovery complete ({discovery.method}): {aggregator.page_count} pages')
                for reference, page_url in deferred:
                    validator.submit(reference, page_url)

                await validator.join()
            except BaseException:
                await validator.aclose()
                raise

        end_time = datetime.datetime.now(datetime.timezone.utc)
        report = aggregator.build_report(
            discovery_method=discovery.method,
            spa_warning=discovery.spa_warning,
            start_time=start_time,
            end_time=end_time,
        )
        report.summary.duration_seconds = round(time.perf_counter() - start_perf, 2)

        logger.info(f'Check finished in {report.summary.duration_seconds:.2f} seconds.')
        logger.info(f'Pages: {report.summary.total_pages}, unique links: {report.summary.total_links}')
        logger.info(f'Broken: {report.summary.broken_links}, warnings: {report.summary.warnings}')
        return report


async def check_site(start_url: str, **options) -> Report:
    """Check a site with CheckerConfig options given as keyword arguments"""
    transport = options.pop('transport', None)
    resolver = options.pop('resolver', None)
    config = CheckerConfig(start_url=start_url, **options)
    return await SiteChecker(config, transport=transport, resolver=resolver).run()
