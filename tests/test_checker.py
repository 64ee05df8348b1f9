import httpx
import pydantic
import pytest

from deadlinks import CheckerConfig, SiteChecker, check_site
from deadlinks import checker as checker_module
from deadlinks.fetcher import create_client
from deadlinks.models import ErrorKind, Outcome

FAST = {'request_delay': 0, 'jitter': 0, 'backoff': 0}


def build_site(web):
    web.page(
        'http://example.com/',
        """<html><head><title>Home</title></head><body>
        <a href="/b">B</a><a href="/c">C</a>
        <a href="https://ext.com/ok">External ok</a>
        <a href="https://ext.com/gone">External gone</a>
        <a href="https://blocked.com/">Blocked</a>
        <a href="http://nonexistent.invalid/page">Dead domain</a>
        <a href="https://short.link/home">Short link</a>
        <img src="/logo.png" alt="Logo">
        </body></html>""",
    )
    web.page('http://example.com/b', '<a href="/d">D</a><a href="/missing">Missing</a><a href="#top">Top</a>')
    web.page('http://example.com/c', '<a href="/d/">D again</a><a href="/missing">Missing again</a>')
    web.page('http://example.com/d', '<title>D</title>')
    web.file('http://example.com/logo.png')
    web.page('https://ext.com/ok', 'ok')
    web.page('https://blocked.com/', 'no', status=403)
    web.redirect('https://short.link/home', 'http://example.com/d')


@pytest.mark.asyncio
async def test_full_check(web):
    build_site(web)
    broken_live = []

    config = CheckerConfig(start_url='http://example.com', concurrency=4, **FAST)
    checker = SiteChecker(config, transport=web.transport, resolver=web.resolve, on_broken_link=broken_live.append)
    report = await checker.run()

    assert report.discovery_method == 'traditional'
    assert sorted(page.url for page in report.pages) == [
        'http://example.com/',
        'http://example.com/b',
        'http://example.com/c',
        'http://example.com/d',
        'http://example.com/missing',
    ]
    # D has two incoming links and is fetched once
    assert web.count('http://example.com/d', 'GET') == 1

    broken = {v.url: v for v in report.broken_links}
    assert set(broken) == {
        'http://example.com/missing',
        'https://ext.com/gone',
        'http://nonexistent.invalid/page',
    }
    assert broken['http://nonexistent.invalid/page'].error_kind is ErrorKind.DNS_FAILURE
    assert 'DNS' in broken['http://nonexistent.invalid/page'].message
    assert web.host_count('nonexistent.invalid') == 0

    # the crawled 404 page is reported from its crawl, never probed as a link
    assert broken['http://example.com/missing'].checked is False
    assert web.count('http://example.com/missing', 'HEAD') == 0
    assert web.count('http://example.com/missing', 'GET') == 1
    assert [o.page for o in broken['http://example.com/missing'].occurrences] == [
        'http://example.com/b',
        'http://example.com/c',
    ]

    assert [v.url for v in report.warnings] == ['https://blocked.com/']
    assert report.warnings[0].status_code == 403

    redirects = {v.url: v for v in report.redirects}
    assert redirects['https://short.link/home'].final_url == 'http://example.com/d'

    # live notifications only cover links the validator checked
    assert sorted(v.url for v in broken_live) == ['http://nonexistent.invalid/page', 'https://ext.com/gone']

    summary = report.summary
    assert summary.total_pages == 5
    assert summary.broken_links == 3
    assert summary.warnings == 1
    assert summary.redirects == 1
    assert summary.pages_with_errors == 1
    assert summary.links_checked + summary.links_skipped == summary.total_links
    assert summary.duration_seconds is not None


@pytest.mark.asyncio
async def test_links_to_a_broken_redirect_target_are_reported(web):
    web.site({'/': ['/old', '/new']})
    web.redirect('http://example.com/old', '/new')

    report = await check_site(
        'http://example.com', concurrency=1, transport=web.transport, resolver=web.resolve, **FAST
    )

    assert sorted(v.url for v in report.broken_links) == ['http://example.com/new', 'http://example.com/old']
    assert all(v.status_code == 404 for v in report.broken_links)
    assert report.summary.total_links == 2
    assert report.summary.broken_links == 2
    assert web.count('http://example.com/new', 'GET') == 1

    home = next(page for page in report.pages if page.url == 'http://example.com/')
    assert sorted(issue.url for issue in home.broken_links) == ['http://example.com/new', 'http://example.com/old']


@pytest.mark.asyncio
async def test_same_origin_links_beyond_the_page_cap_are_checked(web):
    web.site({'/': ['/a', '/b', '/c']})
    web.site({'/a': [], '/b': []})

    report = await check_site(
        'http://example.com', max_pages=2, concurrency=1, transport=web.transport, resolver=web.resolve, **FAST
    )

    assert report.summary.total_pages == 2
    assert report.summary.total_links == 3
    assert report.summary.links_skipped == 1
    assert report.summary.links_checked == 2
    # /c does not exist, it was never crawled but is still checked as a link
    assert [v.url for v in report.broken_links] == ['http://example.com/c']
    assert report.broken_links[0].checked is True


@pytest.mark.asyncio
async def test_unreachable_site_still_reports(web):
    web.timeout_hosts.add('example.com')

    report = await check_site('http://example.com', transport=web.transport, resolver=web.resolve, **FAST)

    assert report.summary.total_pages == 1
    assert report.summary.pages_with_errors == 1
    assert report.pages[0].error.startswith('Timeout')


@pytest.mark.asyncio
async def test_spa_site_uses_sitemap(web):
    web.page('https://app.example.com/', '<html><body><div id="root"></div></body></html>')
    web.file(
        'https://app.example.com/sitemap.xml',
        b'<urlset><url><loc>https://app.example.com/</loc></url>'
        b'<url><loc>https://app.example.com/docs</loc></url></urlset>',
        'application/xml',
    )

    report = await check_site('https://app.example.com/', transport=web.transport, resolver=web.resolve, **FAST)

    assert report.discovery_method == 'sitemap'
    assert [page.source for page in report.pages] == ['crawl', 'sitemap']


@pytest.mark.asyncio
async def test_spa_without_sitemap_warns(web):
    web.page('https://app.example.com/', '<div id="root"></div>')

    report = await check_site('https://app.example.com/', transport=web.transport, resolver=web.resolve, **FAST)

    assert report.discovery_method == 'traditional'
    assert report.spa_warning is not None


@pytest.mark.asyncio
async def test_sitemap_fallback_can_be_disabled(web):
    web.page('https://app.example.com/', '<div id="root"></div>')

    report = await check_site(
        'https://app.example.com/',
        use_sitemap_fallback=False,
        transport=web.transport,
        resolver=web.resolve,
        **FAST,
    )

    assert report.spa_warning is None
    assert web.count('https://app.example.com/sitemap.xml') == 0


@pytest.mark.asyncio
async def test_progress_and_page_callbacks(web):
    web.site({'/': ['/a'], '/a': []})
    progress, pages = [], []

    config = CheckerConfig(start_url='http://example.com', **FAST)
    await SiteChecker(
        config,
        transport=web.transport,
        resolver=web.resolve,
        on_progress=lambda found, crawled: progress.append((found, crawled)),
        on_page=pages.append,
    ).run()

    assert progress[-1] == (2, 2)
    assert sorted(page.url for page in pages) == ['http://example.com/', 'http://example.com/a']


def test_invalid_seed_is_rejected_up_front():
    with pytest.raises(ValueError):
        CheckerConfig(start_url='not a url')


@pytest.mark.parametrize('field', ['concurrency', 'max_pages', 'failure_threshold', 'max_link_concurrency'])
def test_config_rejects_non_positive_limits(field):
    with pytest.raises(pydantic.ValidationError):
        CheckerConfig(start_url='http://example.com', **{field: 0})


def test_config_defaults():
    config = CheckerConfig(start_url='http://example.com')
    assert config.concurrency == 20
    assert config.request_delay == 0.5
    assert config.max_retries == 2
    assert config.failure_threshold == 5
    assert config.max_connections == config.concurrency + config.max_link_concurrency


def test_outcome_values_are_stable():
    assert [o.value for o in Outcome] == ['ok', 'broken', 'warning', 'redirect']


@pytest.mark.asyncio
async def test_client_pool_is_sized_to_both_ceilings(web, monkeypatch):
    web.site({'/': []})
    sizes = []

    def recording_create_client(**kwargs):
        sizes.append(kwargs['max_connections'])
        return create_client(**kwargs)

    monkeypatch.setattr(checker_module, 'create_client', recording_create_client)
    config = CheckerConfig(start_url='http://example.com', concurrency=3, max_link_concurrency=9, **FAST)
    await SiteChecker(config, transport=web.transport, resolver=web.resolve).run()

    assert sizes == [12]
    assert config.max_connections == 12


@pytest.mark.asyncio
async def test_dropped_keepalive_connections_are_retried_under_fan_out(web):
    targets = [f'https://ext.com/item{i}' for i in range(40)]
    web.page('http://example.com/', ''.join(f'<a href="{url}">item</a>' for url in targets))
    for url in targets:
        web.page(url, 'ok')

    dropped = set()
    serve = web.handle

    async def handle(request):
        # each target's first exchange lands on a connection the server already closed
        url = str(request.url)
        if request.url.host == 'ext.com' and url not in dropped:
            dropped.add(url)
            raise httpx.RemoteProtocolError('Server disconnected without sending a response.', request=request)
        return await serve(request)

    web.handle = handle

    report = await check_site(
        'http://example.com', max_link_concurrency=20, transport=web.transport, resolver=web.resolve, **FAST
    )

    assert len(dropped) == len(targets)
    assert report.broken_links == []
    assert report.summary.working_links == len(targets)
    assert report.summary.links_checked == len(targets)
