import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from deadlinks import CheckerConfig, SiteChecker
from deadlinks.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_PAGES,
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_REQUEST_DELAY,
)
from deadlinks.utils import process_blacklist_input


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Find broken links and images on a website')
    parser.add_argument('start_url', help='The page to start crawling from')
    parser.add_argument('--concurrency', type=int, default=DEFAULT_CONCURRENCY, help='Pages fetched in parallel')
    parser.add_argument('--max-pages', type=int, default=DEFAULT_MAX_PAGES, help='Stop discovering pages after this many')
    parser.add_argument('--timeout', type=float, default=DEFAULT_PAGE_TIMEOUT, help='Page fetch timeout in seconds')
    parser.add_argument(
        '--probe-timeout', type=float, default=DEFAULT_PROBE_TIMEOUT, help='Link check timeout in seconds'
    )
    parser.add_argument(
        '--delay', type=float, default=DEFAULT_REQUEST_DELAY, help='Pause between checks on the same host, in seconds'
    )
    parser.add_argument(
        '--blacklist',
        help="Comma-separated list of file extensions (e.g. '.jpg,.png') or path to a file containing them; "
        'matching same-origin URLs are checked as links but never crawled as pages',
    )
    parser.add_argument('--no-sitemap', action='store_true', help='Do not fall back to sitemap.xml for SPA sites')
    parser.add_argument('--user-agent', help='Custom User-Agent string')
    parser.add_argument('--output-json', help='File path to save the report as JSON')
    parser.add_argument(
        '--no-verify-ssl', action='store_true', help='Disable SSL certificate verification (use with caution)'
    )
    parser.add_argument(
        '--verbose', '-v', action='count', default=0, help='Increase logging verbosity (-v for INFO, -vv for DEBUG)'
    )
    return parser


def configure_logging(verbosity: int) -> None:
    if verbosity == 1:
        log_level = logging.INFO
    elif verbosity >= 2:
        log_level = logging.DEBUG
    else:
        log_level = logging.WARNING

    logging.basicConfig(
        level=log_level, format='%(asctime)s - %(levelname)s - [%(name)s] %(message)s', stream=sys.stdout
    )

    # set httpx/httpcore logging level explicitly to avoid noise
    library_log_level = logging.WARNING if log_level >= logging.INFO else logging.DEBUG
    logging.getLogger('httpx').setLevel(library_log_level)
    logging.getLogger('httpcore').setLevel(library_log_level)


def print_progress(pages_found: int, pages_crawled: int) -> None:
    sys.stderr.write(f'\r\033[KPages found: {pages_found} | Crawled: {pages_crawled}')
    sys.stderr.flush()


def print_broken(verdict) -> None:
    sys.stderr.write(f'\n  x {verdict.status_code or "ERR"} {verdict.url} ({verdict.message})\n')
    sys.stderr.flush()


async def run_check(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        blacklist_extensions = process_blacklist_input(args.blacklist)
    except (IOError, ValueError) as e:
        logging.error(f'Failed to process blacklist: {e}')
        return 1

    try:
        config = CheckerConfig(
            start_url=args.start_url,
            concurrency=args.concurrency,
            max_pages=args.max_pages,
            page_timeout=args.timeout,
            probe_timeout=args.probe_timeout,
            request_delay=args.delay,
            blacklist_extensions=blacklist_extensions,
            use_sitemap_fallback=not args.no_sitemap,
            user_agent=args.user_agent,
            verify_ssl=not args.no_verify_ssl,
        )
    except ValueError as e:
        logging.error(f'Initialization Error: {e}')
        return 1

    checker = SiteChecker(config, on_progress=print_progress, on_broken_link=print_broken)
    report = await checker.run()
    summary = report.summary

    print('\n' + '=' * 30 + ' Link Check Summary ' + '=' * 30)
    print(f'Start URL:         {report.start_url}')
    print(f'Discovery:         {report.discovery_method}')
    if report.spa_warning:
        print(f'Warning:           {report.spa_warning}')
    print(f'Duration:          {summary.duration_seconds:.2f} seconds')
    print(f'Pages:             {summary.total_pages} ({summary.pages_with_errors} with errors)')
    print(f'Unique Links:      {summary.total_links}')
    print(f'Checked/Skipped:   {summary.links_checked}/{summary.links_skipped}')
    print(f'Working:           {summary.working_links}')
    print(f'Broken:            {summary.broken_links}')
    print(f'Warnings:          {summary.warnings}')
    print(f'Redirects:         {summary.redirects}')

    if report.broken_links:
        print('\nBroken Links:')
        for verdict in report.broken_links:
            print(f'  {verdict.status_code or "ERR"} {verdict.url} - {verdict.message}')
            for occurrence in verdict.occurrences[:5]:
                print(f'      on {occurrence.page} ({occurrence.kind.value}: {occurrence.text})')
            if len(verdict.occurrences) > 5:
                print('      ...')
    print('=' * 80)

    if args.output_json:
        print(f'\nSaving results to {args.output_json}...')
        try:
            with open(args.output_json, 'w', encoding='utf-8') as f:
                f.write(report.model_dump_json(indent=2))
            print('Successfully saved results.')
        except IOError as e:
            print(f'Error saving results to JSON file: {e}', file=sys.stderr)

    return 0


if __name__ == '__main__':
    sys.exit(asyncio.run(run_check()))
