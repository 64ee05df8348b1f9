import asyncio

import httpx
import pytest

from deadlinks.constants import DEFAULT_KEEPALIVE_EXPIRY, DEFAULT_USER_AGENT
from deadlinks.fetcher import PageFetcher, classify_error, create_client, describe_error
from deadlinks.models import ErrorKind


@pytest.mark.asyncio
async def test_fetch_page_reads_html_body(web):
    web.page('http://example.com/', '<title>Home</title>')

    async with web.fetcher() as fetcher:
        result = await fetcher.fetch_page('http://example.com/')

    assert result.status_code == 200
    assert result.is_html
    assert '<title>Home</title>' in result.body


@pytest.mark.asyncio
async def test_fetch_page_skips_non_html_and_error_bodies(web):
    web.file('http://example.com/logo.png')

    async with web.fetcher() as fetcher:
        image = await fetcher.fetch_page('http://example.com/logo.png')
        missing = await fetcher.fetch_page('http://example.com/missing')

    assert image.body is None
    assert image.content_type == 'image/png'
    assert missing.status_code == 404
    assert missing.body is None


@pytest.mark.asyncio
async def test_fetch_page_follows_redirects(web):
    web.redirect('http://example.com/old', '/new')
    web.page('http://example.com/new', '<p>new</p>')

    async with web.fetcher() as fetcher:
        result = await fetcher.fetch_page('http://example.com/old')

    assert result.requested_url == 'http://example.com/old'
    assert result.final_url == 'http://example.com/new'


@pytest.mark.asyncio
async def test_redirect_loop_raises_too_many_redirects(web):
    web.redirect('http://example.com/a', '/b')
    web.redirect('http://example.com/b', '/a')

    async with web.fetcher(max_redirects=3) as fetcher:
        with pytest.raises(httpx.TooManyRedirects) as exc_info:
            await fetcher.fetch_page('http://example.com/a')

    assert classify_error(exc_info.value) is ErrorKind.TOO_MANY_REDIRECTS


@pytest.mark.asyncio
async def test_probe_uses_head(web):
    web.page('http://example.com/', '<p>hi</p>')

    async with web.fetcher() as fetcher:
        result = await fetcher.probe('http://example.com/')

    assert result.status_code == 200
    assert result.body is None
    assert web.requests == [('HEAD', 'http://example.com/')]


@pytest.mark.asyncio
async def test_fetch_capped_stops_reading_early():
    chunks_sent = []

    async def body():
        for _ in range(100):
            chunks_sent.append(1)
            yield b'x' * 1024

    def handler(request):
        return httpx.Response(200, content=body())

    async with create_client(max_connections=1, transport=httpx.MockTransport(handler)) as client:
        fetcher = PageFetcher(client, max_body_bytes=4096)
        result = await fetcher.fetch_capped('http://example.com/big')

    assert result.status_code == 200
    assert len(chunks_sent) < 100


@pytest.mark.asyncio
async def test_resolve_uses_injected_resolver(web):
    web.dead_hosts.add('gone.example')

    async with web.fetcher() as fetcher:
        assert await fetcher.resolve('example.com') is True
        assert await fetcher.resolve('gone.example') is False
        assert await fetcher.resolve('nonexistent.invalid') is False


@pytest.mark.asyncio
async def test_slow_resolver_is_inconclusive():
    async def slow(hostname):
        await asyncio.sleep(1)
        return False

    async with create_client(max_connections=1) as client:
        fetcher = PageFetcher(client, probe_timeout=0.01, resolver=slow)
        assert await fetcher.resolve('example.com') is True


def test_create_client_headers_and_limits():
    client = create_client(max_connections=7, user_agent='TestAgent/1.0', max_redirects=2)
    assert client.headers['User-Agent'] == 'TestAgent/1.0'
    assert client.follow_redirects is True
    assert client.max_redirects == 2

    pool = client._transport._pool
    assert pool._max_connections == 7
    assert pool._max_keepalive_connections == 7
    assert pool._keepalive_expiry == DEFAULT_KEEPALIVE_EXPIRY

    default_client = create_client(max_connections=7)
    assert default_client.headers['User-Agent'] == DEFAULT_USER_AGENT


@pytest.mark.parametrize(
    'error, kind',
    [
        (httpx.ConnectTimeout('t'), ErrorKind.TIMEOUT),
        (httpx.ReadTimeout('t'), ErrorKind.TIMEOUT),
        (httpx.ConnectError('c'), ErrorKind.CONNECTION_ERROR),
        (httpx.RemoteProtocolError('p'), ErrorKind.CONNECTION_ERROR),
        (httpx.TooManyRedirects('r'), ErrorKind.TOO_MANY_REDIRECTS),
    ],
)
def test_classify_error(error, kind):
    assert classify_error(error) is kind


def test_describe_error():
    assert describe_error(httpx.ConnectError('c')) == 'Request Error: ConnectError'
    assert describe_error(httpx.ReadTimeout('t')) == 'Timeout: ReadTimeout'
