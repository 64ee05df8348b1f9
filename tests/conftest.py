import asyncio
import contextlib
from collections import Counter
from typing import Dict, List, Optional, Set, Tuple

import httpx
import pytest

from deadlinks.fetcher import PageFetcher, create_client


def _key(url: str) -> Tuple[str, str]:
    parsed = httpx.URL(url)
    path = parsed.path or '/'
    if parsed.query:
        path += '?' + parsed.query.decode()
    return parsed.host, path


class FakeWeb:
    """In-memory web served through httpx.MockTransport, recording every request."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], dict] = {}
        self.timeout_hosts: Set[str] = set()
        self.dead_hosts: Set[str] = set()
        self.requests: List[Tuple[str, str]] = []
        self.latency = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def page(self, url: str, html: str = '', status: int = 200, headers: Optional[dict] = None) -> None:
        self.routes[_key(url)] = {'status': status, 'html': html, 'headers': headers or {}}

    def site(self, pages: Dict[str, List[str]], base: str = 'http://example.com') -> None:
        """Add HTML pages whose bodies link to the given paths."""
        for path, links in pages.items():
            anchors = ''.join(f'<a href="{link}">{link}</a>' for link in links)
            self.page(base + path, f'<html><head><title>{path}</title></head><body>{anchors}</body></html>')

    def file(self, url: str, content: bytes = b'data', content_type: str = 'image/png', status: int = 200) -> None:
        self.routes[_key(url)] = {'status': status, 'content': content, 'headers': {'content-type': content_type}}

    def redirect(self, url: str, location: str, status: int = 301) -> None:
        self.routes[_key(url)] = {'status': status, 'headers': {'location': location}}

    def reject_head(self, url: str, status: int = 405) -> None:
        self.routes[_key(url)]['head_status'] = status

    def count(self, url: str, method: Optional[str] = None) -> int:
        target = _key(url)
        return sum(1 for m, u in self.requests if _key(u) == target and (method is None or m == method))

    def host_count(self, host: str) -> int:
        return sum(1 for _, u in self.requests if httpx.URL(u).host == host)

    def get_counts(self) -> Counter:
        return Counter(_key(u) for m, u in self.requests if m == 'GET')

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, str(request.url)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            if request.url.host in self.timeout_hosts:
                raise httpx.ConnectTimeout('timed out', request=request)

            route = self.routes.get(_key(str(request.url)))
            if route is None:
                return httpx.Response(404, html='<html><body>Not Found</body></html>')

            status = route['status']
            if request.method == 'HEAD' and 'head_status' in route:
                return httpx.Response(route['head_status'])
            if 'html' in route:
                return httpx.Response(status, html=route['html'], headers=route['headers'])
            return httpx.Response(status, content=route.get('content', b''), headers=route['headers'])
        finally:
            self.in_flight -= 1

    async def resolve(self, hostname: str) -> bool:
        return hostname not in self.dead_hosts and not hostname.endswith('.invalid')

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @contextlib.asynccontextmanager
    async def fetcher(self, max_redirects: int = 5, **kwargs):
        async with create_client(max_connections=50, max_redirects=max_redirects, transport=self.transport) as client:
            yield PageFetcher(client, resolver=self.resolve, **kwargs)


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()
