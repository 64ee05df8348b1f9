import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional

import httpx

from .constants import DEFAULT_BLACKLIST_EXTENSIONS, DEFAULT_CONCURRENCY, DEFAULT_MAX_PAGES, STATUS_MESSAGES
from .extractor import extract_references
from .fetcher import PageFetcher, classify_error, describe_error
from .frontier import CrawlFrontier
from .models import ErrorKind, PageRecord, ReferenceKind
from .utils import get_hostname, is_blacklisted, is_same_origin, try_normalize

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class Crawler:
    """
    Discovers every same-origin page reachable from a seed URL.

    At most `concurrency` pages are fetched at once. Records are yielded from
    `stream()` as soon as each fetch settles, so consumers can work on links while
    the crawl is still running.
    """

    def __init__(
        self,
        start_url: str,
        fetcher: PageFetcher,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_pages: int = DEFAULT_MAX_PAGES,
        blacklist_extensions: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        _start_url_normalized = try_normalize(start_url)
        if not _start_url_normalized:
            raise ValueError(f'Invalid start URL provided: {start_url}')
        self.start_url = _start_url_normalized

        if concurrency < 1:
            raise ValueError('concurrency must be at least 1')
        if max_pages < 1:
            raise ValueError('max_pages must be at least 1')

        self.fetcher = fetcher
        self.concurrency = concurrency
        self.max_pages = max_pages
        self.origin_host = get_hostname(self.start_url)

        if blacklist_extensions is not None:
            self.blacklist_extensions = set(blacklist_extensions)
        else:
            self.blacklist_extensions = DEFAULT_BLACKLIST_EXTENSIONS.copy()

        self.frontier = CrawlFrontier(max_pages=max_pages)
        self._on_progress = on_progress
        self._pages_crawled = 0
        self._started = False

        logger.info('Crawler initialized:')
        logger.info(f'  Start URL: {self.start_url}')
        logger.info(f'  Concurrency: {self.concurrency}, Max Pages: {self.max_pages}')
        logger.info(f'  Blacklisted Extensions Count: {len(self.blacklist_extensions)}')

    @property
    def pages_crawled(self) -> int:
        return self._pages_crawled

    def stop(self) -> None:
        """Schedule no new fetches; pages already in flight still finish and are yielded."""
        if not self.frontier.closed:
            logger.info(f'Crawl stop requested, draining {self.frontier.in_flight_count} in-flight pages.')
        self.frontier.close()

    def is_crawlable(self, canonical_url: str) -> bool:
        """Same-origin and not blacklisted, i.e. something the crawl would fetch as a page"""
        return is_same_origin(canonical_url, self.origin_host) and not is_blacklisted(
            canonical_url, self.blacklist_extensions
        )

    async def stream(self) -> AsyncIterator[PageRecord]:
        """Run the crawl, yielding one PageRecord per fetched page."""
        if self._started:
            raise RuntimeError('Crawler.stream() can only be consumed once')
        self._started = True

        self.frontier.offer(self.start_url)
        tasks: Dict[asyncio.Task, str] = {}

        try:
            self._fill(tasks)
            while tasks:
                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

                finished: List[PageRecord] = []
                for task in done:
                    url = tasks.pop(task)
                    record = task.result()
                    self._discover(record)
                    self.frontier.settle(url)
                    self._pages_crawled += 1
                    finished.append(record)

                # refill before handing records out so fetching continues while the consumer works
                self._fill(tasks)
                self._report_progress()

                for record in finished:
                    yield record
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
                for url in tasks.values():
                    self.frontier.settle(url)

        if self.frontier.cap_reached:
            logger.info(f'Reached page limit ({self.max_pages}), crawl stopped discovering pages.')
        logger.info(
            f'Crawl finished: {self._pages_crawled} pages crawled, {self.frontier.pending_count} left unvisited.'
        )

    async def crawl(self) -> List[PageRecord]:
        return [record async for record in self.stream()]

    def _fill(self, tasks: Dict[asyncio.Task, str]) -> None:
        while len(tasks) < self.concurrency:
            url = self.frontier.claim_next()
            if url is None:
                break
            task = asyncio.create_task(self._fetch(url), name=f'fetch-{url}')
            tasks[task] = url

    def _report_progress(self) -> None:
        if self._on_progress:
            self._on_progress(self.frontier.pages_found, self._pages_crawled)

    async def _fetch(self, url: str) -> PageRecord:
        """Fetch and parse one page. Never raises; failures become the record's error."""
        logger.info(f'Fetching: {url}')
        try:
            result = await self.fetcher.fetch_page(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f'Request error fetching {url}: {type(e).__name__}')
            return PageRecord(
                url=url,
                title='Error loading page',
                error=describe_error(e),
                error_kind=classify_error(e),
            )

        if not 200 <= result.status_code < 300:
            logger.warning(f'HTTP error fetching {url}: Status {result.status_code}')
            message = STATUS_MESSAGES.get(result.status_code, f'HTTP {result.status_code}')
            return PageRecord(
                url=url,
                final_url=result.final_url,
                title='Error loading page',
                status_code=result.status_code,
                content_type=result.content_type or None,
                error=f'HTTP Status {result.status_code}: {message}',
                error_kind=ErrorKind.HTTP_SERVER_ERROR if result.status_code >= 500 else ErrorKind.HTTP_CLIENT_ERROR,
            )

        if result.body is None:
            logger.debug(f'Non-HTML content skipped for link extraction: {url} ({result.content_type})')
            return PageRecord(
                url=url,
                final_url=result.final_url,
                status_code=result.status_code,
                content_type=result.content_type or None,
            )

        try:
            title, references = extract_references(result.body, result.final_url)
        except Exception as e:
            logger.error(f'Processing error for {url}: {e}', exc_info=True)
            return PageRecord(
                url=url,
                final_url=result.final_url,
                status_code=result.status_code,
                content_type=result.content_type,
                error=f'Processing Error: {type(e).__name__}',
            )

        return PageRecord(
            url=url,
            final_url=result.final_url,
            title=title,
            status_code=result.status_code,
            content_type=result.content_type,
            references=references,
        )

    def _discover(self, record: PageRecord) -> None:
        if record.final_url:
            final_canonical = try_normalize(record.final_url)
            if final_canonical and final_canonical != record.url:
                self._follow_redirect(record, final_canonical)

        queued = 0
        for reference in record.references:
            if reference.kind is not ReferenceKind.LINK:
                continue
            canonical = try_normalize(reference.url)
            if not canonical or not self.is_crawlable(canonical):
                continue
            if self.frontier.offer(canonical):
                queued += 1
                logger.debug(f'Queueing Link: {canonical}')

        logger.debug(f'{record.url}: {len(record.references)} references, {queued} new pages queued')

    def _follow_redirect(self, record: PageRecord, final_canonical: str) -> None:
        final_host = get_hostname(final_canonical)
        if record.url == self.start_url and record.ok and final_host and final_host != self.origin_host:
            # only discoveries from here on are judged against the new origin
            logger.info(f'Seed redirected to {final_host}, adopting it as crawl origin (was {self.origin_host})')
            self.origin_host = final_host

        if is_same_origin(final_canonical, self.origin_host):
            # the redirect target's content was just parsed, never fetch it again
            self.frontier.mark_visited(final_canonical)
