import asyncio
import logging
import socket
from typing import Awaitable, Callable, Dict, Optional

import httpx

from .constants import (
    DEFAULT_HEADERS,
    DEFAULT_KEEPALIVE_EXPIRY,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
)
from .models import ErrorKind, FetchResult

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[bool]]


async def resolve_hostname(hostname: str) -> bool:
    """True if the hostname has at least one address record"""
    loop = asyncio.get_running_loop()
    try:
        await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        return True
    except socket.gaierror as e:
        logger.debug(f'DNS lookup failed for {hostname}: {e}')
        return False
    except UnicodeError:
        # idna encoding rejects the name, it cannot resolve
        return False


def create_client(
    max_connections: int,
    timeout: float = DEFAULT_PAGE_TIMEOUT,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    user_agent: Optional[str] = None,
    verify_ssl: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared pooled client, sized to the concurrency ceilings of the run"""
    headers = DEFAULT_HEADERS.copy()
    if user_agent:
        headers['User-Agent'] = user_agent

    kwargs = {}
    if transport is not None:
        kwargs['transport'] = transport

    return httpx.AsyncClient(
        headers=headers,
        timeout=timeout,
        verify=verify_ssl,
        follow_redirects=True,
        max_redirects=max_redirects,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
            keepalive_expiry=DEFAULT_KEEPALIVE_EXPIRY,
        ),
        **kwargs,
    )


def classify_error(error: Exception) -> ErrorKind:
    """Map an httpx exception onto the error taxonomy"""
    if isinstance(error, httpx.TooManyRedirects):
        return ErrorKind.TOO_MANY_REDIRECTS
    if isinstance(error, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    return ErrorKind.CONNECTION_ERROR


def describe_error(error: Exception) -> str:
    if isinstance(error, httpx.TooManyRedirects):
        return 'Too many redirects'
    if isinstance(error, httpx.TimeoutException):
        return f'Timeout: {type(error).__name__}'
    return f'Request Error: {type(error).__name__}'


def _headers(response: httpx.Response) -> Dict[str, str]:
    return {key.lower(): value for key, value in response.headers.items()}


class PageFetcher:
    """Thin wrapper over an httpx.AsyncClient with the three request modes the checker needs"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = DEFAULT_PAGE_TIMEOUT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        resolver: Optional[Resolver] = None,
    ):
        self.client = client
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.max_body_bytes = max_body_bytes
        self._resolver = resolver or resolve_hostname

    async def fetch_page(self, url: str) -> FetchResult:
        """GET a page; the body is read only when the response is HTML."""
        async with self.client.stream('GET', url, timeout=self.timeout) as response:
            result = FetchResult(
                requested_url=url,
                final_url=str(response.url),
                redirected=bool(response.history),
                status_code=response.status_code,
                headers=_headers(response),
            )
            if result.is_html and response.is_success:
                await response.aread()
                result.body = response.text
            else:
                logger.debug(f'Body skipped for {url} ({response.status_code}, {result.content_type or "no type"})')
        return result

    async def probe(self, url: str) -> FetchResult:
        """HEAD request with the short probe timeout"""
        response = await self.client.head(url, timeout=self.probe_timeout)
        return FetchResult(
            requested_url=url,
            final_url=str(response.url),
            redirected=bool(response.history),
            status_code=response.status_code,
            headers=_headers(response),
        )

    async def fetch_capped(self, url: str) -> FetchResult:
        """GET that reads at most max_body_bytes and throws them away"""
        received = 0
        async with self.client.stream('GET', url, timeout=self.probe_timeout) as response:
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received >= self.max_body_bytes:
                    break
            return FetchResult(
                requested_url=url,
                final_url=str(response.url),
                redirected=bool(response.history),
                status_code=response.status_code,
                headers=_headers(response),
            )

    async def resolve(self, hostname: str) -> bool:
        try:
            return await asyncio.wait_for(self._resolver(hostname), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            # slow resolver is not proof of a dead host, let the probes decide
            logger.debug(f'DNS lookup timed out for {hostname}')
            return True
