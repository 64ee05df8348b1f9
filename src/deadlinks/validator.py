import asyncio
import logging
import random
from typing import Callable, Container, Dict, List, Optional, Set
from urllib.parse import urldefrag

import httpx

from .circuit import CircuitBreaker
from .constants import (
    ACCESS_DENIED_STATUSES,
    DEFAULT_BACKOFF,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_JITTER,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_DELAY,
    PROBE_REJECTED_STATUSES,
    STATUS_MESSAGES,
)
from .fetcher import PageFetcher, classify_error, describe_error
from .models import ErrorKind, FetchResult, LinkVerdict, Occurrence, Outcome, Reference
from .utils import get_hostname, is_trivial_redirect, try_normalize

logger = logging.getLogger(__name__)

VerdictCallback = Callable[[LinkVerdict], None]

CIRCUIT_OPEN_MESSAGE = 'Unable to verify - rate limited'


class DomainQueue:
    """Rate-limited lane for one hostname: one check at a time, a pause between checks."""

    def __init__(self, hostname: str, failure_threshold: int):
        self.hostname = hostname
        self.queue: asyncio.Queue = asyncio.Queue()
        self.breaker = CircuitBreaker(threshold=failure_threshold, name=hostname)
        self.dns_ok: Optional[bool] = None
        self.requests_made = 0
        self.task: Optional[asyncio.Task] = None


class LinkValidator:
    """
    Checks link targets for liveness while they are still being discovered.

    `submit()` can be called at any time before `join()`; every canonical target is
    checked once no matter how many pages reference it. Targets found in `known_pages`
    (pages the crawl already fetched) are skipped. Hostnames are checked in parallel,
    each through its own DomainQueue.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        known_pages: Container[str] = frozenset(),
        request_delay: float = DEFAULT_REQUEST_DELAY,
        jitter: float = DEFAULT_JITTER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        max_concurrency: Optional[int] = None,
        on_broken: Optional[VerdictCallback] = None,
    ):
        if max_retries < 0:
            raise ValueError('max_retries cannot be negative')
        self.fetcher = fetcher
        self.known_pages = known_pages
        self.request_delay = request_delay
        self.jitter = jitter
        self.max_retries = max_retries
        self.backoff = backoff
        self.failure_threshold = failure_threshold
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._on_broken = on_broken
        self._listeners: List[VerdictCallback] = []

        self._occurrences: Dict[str, List[Occurrence]] = {}
        self._request_urls: Dict[str, str] = {}
        self._verdicts: Dict[str, LinkVerdict] = {}
        self._domains: Dict[str, DomainQueue] = {}
        self.skipped: Set[str] = set()
        self._closed = False

    def add_listener(self, callback: VerdictCallback) -> None:
        self._listeners.append(callback)

    @property
    def domains(self) -> Dict[str, DomainQueue]:
        return self._domains

    @property
    def verdicts(self) -> Dict[str, LinkVerdict]:
        """Verdicts so far, keyed by canonical URL, with every occurrence seen"""
        return {
            url: verdict.model_copy(update={'occurrences': list(self._occurrences[url])})
            for url, verdict in self._verdicts.items()
        }

    def submit(self, reference: Reference, page_url: str) -> bool:
        """
        Queue a reference for checking. Returns True if this started a new check.

        Unusable URLs are dropped; repeated targets only add an occurrence.
        """
        if self._closed:
            raise RuntimeError('LinkValidator is closed, no more links can be submitted')

        canonical = try_normalize(reference.url)
        if not canonical:
            logger.debug(f'Dropped malformed link {reference.url!r} from {page_url}')
            return False

        occurrence = Occurrence(page=page_url, text=reference.text, kind=reference.kind)
        if canonical in self._occurrences:
            self._occurrences[canonical].append(occurrence)
            return False
        self._occurrences[canonical] = [occurrence]

        if canonical in self.known_pages:
            logger.debug(f'Skipping already crawled page: {canonical}')
            self.skipped.add(canonical)
            return False

        self._request_urls[canonical] = urldefrag(reference.url.strip()).url
        self._domain_for(get_hostname(canonical)).queue.put_nowait(canonical)
        return True

    async def join(self) -> Dict[str, LinkVerdict]:
        """Stop accepting links and wait for every queued check to finish."""
        self._closed = True
        for domain in self._domains.values():
            domain.queue.put_nowait(None)
        tasks = [domain.task for domain in self._domains.values() if domain.task]
        if tasks:
            await asyncio.gather(*tasks)
        logger.info(
            f'Link validation finished: {len(self._verdicts)} checked, {len(self.skipped)} skipped, '
            f'{len(self._domains)} hosts'
        )
        return self.verdicts

    async def aclose(self) -> None:
        """Abandon outstanding checks."""
        self._closed = True
        tasks = [domain.task for domain in self._domains.values() if domain.task and not domain.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> 'LinkValidator':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.join()
        else:
            await self.aclose()

    def _domain_for(self, hostname: str) -> DomainQueue:
        domain = self._domains.get(hostname)
        if domain is None:
            domain = DomainQueue(hostname, self.failure_threshold)
            domain.task = asyncio.create_task(self._run_domain(domain), name=f'domain-{hostname}')
            self._domains[hostname] = domain
            logger.debug(f'New domain queue: {hostname}')
        return domain

    async def _run_domain(self, domain: DomainQueue) -> None:
        domain.dns_ok = await self.fetcher.resolve(domain.hostname)
        if not domain.dns_ok:
            logger.warning(f'DNS lookup failed for {domain.hostname}, marking its links broken without probing')

        while True:
            canonical = await domain.queue.get()
            if canonical is None:
                break
            try:
                verdict = await self._check_in_domain(domain, canonical)
            except Exception as e:
                logger.error(f'Critical error checking {canonical}: {e}', exc_info=True)
                verdict = LinkVerdict(
                    url=canonical, outcome=Outcome.BROKEN, message=f'Processing Error: {type(e).__name__}'
                )
            self._record(verdict)

    async def _check_in_domain(self, domain: DomainQueue, canonical: str) -> LinkVerdict:
        if not domain.dns_ok:
            return LinkVerdict(
                url=canonical,
                outcome=Outcome.BROKEN,
                error_kind=ErrorKind.DNS_FAILURE,
                message=f'DNS lookup failed for {domain.hostname}',
            )

        if domain.breaker.is_open:
            return LinkVerdict(
                url=canonical,
                outcome=Outcome.WARNING,
                error_kind=ErrorKind.CIRCUIT_OPEN,
                message=CIRCUIT_OPEN_MESSAGE,
            )

        if domain.requests_made and self.request_delay > 0:
            await asyncio.sleep(self.request_delay + random.uniform(0, self.jitter))
        domain.requests_made += 1

        if self._semaphore is None:
            return await self._check_url(canonical, domain.breaker)
        async with self._semaphore:
            return await self._check_url(canonical, domain.breaker)

    async def _check_url(self, canonical: str, breaker: CircuitBreaker) -> LinkVerdict:
        """HEAD probe with one GET fallback, retried with exponential backoff on request failures."""
        url = self._request_urls[canonical]
        fallback_used = False
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if attempt:
                wait = self.backoff * 2 ** (attempt - 1)
                logger.debug(f'Retrying {url} in {wait:.2f}s (attempt {attempt + 1})')
                await asyncio.sleep(wait)

            result: Optional[FetchResult] = None
            try:
                result = await self.fetcher.probe(url)
            except httpx.TooManyRedirects as e:
                breaker.record_http_response(0)
                return self._failure_verdict(canonical, e)
            except httpx.RequestError as e:
                last_error = e

            if not fallback_used and (result is None or result.status_code in PROBE_REJECTED_STATUSES):
                fallback_used = True
                logger.debug(f'HEAD rejected for {url}, falling back to GET')
                try:
                    result = await self.fetcher.fetch_capped(url)
                except httpx.TooManyRedirects as e:
                    breaker.record_http_response(0)
                    return self._failure_verdict(canonical, e)
                except httpx.RequestError as e:
                    last_error = e
                    result = None

            if result is not None:
                breaker.record_http_response(result.status_code)
                return self._classify(canonical, url, result, breaker)

        logger.error(f'Request error checking {url}: {type(last_error).__name__}')
        breaker.record_transport_failure()
        return self._failure_verdict(canonical, last_error)

    def _classify(self, canonical: str, url: str, result: FetchResult, breaker: CircuitBreaker) -> LinkVerdict:
        status = result.status_code

        if 200 <= status < 400:
            breaker.record_success()
            # httpx percent-encodes the request URL, so compare against the encoded form
            if result.redirected and not is_trivial_redirect(str(httpx.URL(url)), result.final_url):
                return LinkVerdict(
                    url=canonical, outcome=Outcome.REDIRECT, status_code=status, final_url=result.final_url
                )
            return LinkVerdict(url=canonical, outcome=Outcome.OK, status_code=status, final_url=result.final_url)

        message = STATUS_MESSAGES.get(status, f'HTTP {status}')
        if status in ACCESS_DENIED_STATUSES:
            logger.info(f'Access denied for {url}: Status {status}')
            return LinkVerdict(
                url=canonical,
                outcome=Outcome.WARNING,
                status_code=status,
                error_kind=ErrorKind.ACCESS_DENIED,
                message=f'{message} (may be accessible to users)',
            )

        logger.warning(f'Broken link {url}: Status {status}')
        return LinkVerdict(
            url=canonical,
            outcome=Outcome.BROKEN,
            status_code=status,
            error_kind=ErrorKind.HTTP_SERVER_ERROR if status >= 500 else ErrorKind.HTTP_CLIENT_ERROR,
            message=message,
        )

    def _failure_verdict(self, canonical: str, error: Optional[Exception]) -> LinkVerdict:
        if error is None:
            return LinkVerdict(url=canonical, outcome=Outcome.BROKEN, status_code=0, message='Request failed')
        return LinkVerdict(
            url=canonical,
            outcome=Outcome.BROKEN,
            status_code=0,
            error_kind=classify_error(error),
            message=describe_error(error),
        )

    def _record(self, verdict: LinkVerdict) -> None:
        verdict = verdict.model_copy(update={'occurrences': list(self._occurrences[verdict.url])})
        self._verdicts[verdict.url] = verdict
        logger.debug(f'{verdict.outcome.value}: {verdict.url}')

        for listener in self._listeners:
            listener(verdict)
        if verdict.outcome is Outcome.BROKEN and self._on_broken:
            self._on_broken(verdict)
