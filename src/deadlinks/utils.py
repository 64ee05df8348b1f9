import logging
import os
from typing import List, Optional, Set
from urllib.parse import urljoin, urlparse, urlunparse

from .exceptions import MalformedURLError

logger = logging.getLogger(__name__)

HTTP_SCHEMES = ('http', 'https')
DEFAULT_PORTS = {'http': 80, 'https': 443}


def normalize_url(url: str) -> str:
    """
    Canonicalize a URL so that equivalent addresses compare equal.

    Drops the fragment, lowercases scheme and host, drops default ports and removes
    trailing slashes from every path except the root. The result is the deduplication
    key for pages and link targets, and normalize_url(normalize_url(u)) == normalize_url(u).

    Raises:
        MalformedURLError: if the URL is not an absolute http(s) URL.
    """
    if not isinstance(url, str) or not url.strip():
        raise MalformedURLError(str(url), 'empty URL')

    try:
        parsed = urlparse(url.strip())
        scheme = parsed.scheme.lower()
        hostname = parsed.hostname
        port = parsed.port
    except ValueError as e:
        raise MalformedURLError(url, str(e)) from e

    if scheme not in HTTP_SCHEMES:
        raise MalformedURLError(url, f'unsupported scheme {parsed.scheme!r}')
    if not hostname:
        raise MalformedURLError(url, 'missing host')

    netloc = hostname.lower()
    if port and port != DEFAULT_PORTS[scheme]:
        netloc = f'{netloc}:{port}'

    path = parsed.path.rstrip('/') or '/'

    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ''))


def try_normalize(url: str) -> Optional[str]:
    """normalize_url that returns None instead of raising"""
    try:
        return normalize_url(url)
    except MalformedURLError:
        return None


def to_absolute(link: str, base_url: str) -> Optional[str]:
    """Resolve a potentially relative link against the page it was found on"""
    if link is None:
        return None
    try:
        absolute_url = urljoin(base_url, link.strip())
        parsed = urlparse(absolute_url)

        if parsed.scheme.lower() not in HTTP_SCHEMES or not parsed.netloc:
            return None
        # touching .port validates it
        parsed.port
        return absolute_url
    except ValueError:
        return None


def get_hostname(url: str) -> Optional[str]:
    """Extract the lowercased hostname (no port) from a URL"""
    try:
        hostname = urlparse(url).hostname
        return hostname.lower() if hostname else None
    except ValueError:
        return None


def is_same_origin(url: str, origin_host: str) -> bool:
    """Exact hostname comparison, subdomains are different origins"""
    hostname = get_hostname(url)
    return hostname is not None and hostname == origin_host.lower()


def _strip_www(hostname: str) -> str:
    return hostname[4:] if hostname.startswith('www.') else hostname


def is_trivial_redirect(original_url: str, final_url: str) -> bool:
    """True if the redirect only changed scheme, a www. prefix or a trailing slash"""
    try:
        original = urlparse(original_url)
        final = urlparse(final_url)
    except ValueError:
        return False

    original_host = _strip_www((original.hostname or '').lower())
    final_host = _strip_www((final.hostname or '').lower())
    if not original_host or original_host != final_host:
        return False

    original_path = original.path.rstrip('/') or '/'
    final_path = final.path.rstrip('/') or '/'
    return original_path == final_path and original.query == final.query


def get_extension(url: str) -> Optional[str]:
    """Extract the file extension from the URL path"""
    try:
        parsed = urlparse(url)
        path = parsed.path
        if path:
            _, ext = os.path.splitext(path)
            return ext.lower() if ext else None
        return None
    except ValueError:
        return None


def is_blacklisted(url: str, blacklist_extensions: Optional[Set[str]]) -> bool:
    if not blacklist_extensions:
        return False
    ext = get_extension(url)
    return bool(ext and ext in blacklist_extensions)


def process_blacklist_input(input_value: Optional[str]) -> Optional[List[str]]:
    """
    Processes the blacklist input; a comma-separated string of extensions or a path to a file containing them.

    Args:
        input_value: The string provided via the --blacklist argument, or None.

    Returns:
        A sorted list of cleaned extensions (lowercase, starting with '.'), or None if no input_value was provided.
        Returns an empty list if the input was provided but contained no extensions.

    Raises:
        IOError: If input_value looks like a file path but cannot be read.
    """
    if not input_value:
        return None

    if os.path.isfile(input_value):
        logger.info(f'Reading blacklist extensions from file: {input_value}')
        try:
            with open(input_value, 'r', encoding='utf-8') as f:
                content = f.read()
        except IOError as e:
            logger.error(f"IOError reading blacklist file '{input_value}': {e}")
            raise IOError(f"Could not read blacklist file '{input_value}'") from e
    elif os.path.sep in input_value:
        raise IOError(f"Blacklist argument '{input_value}' looks like a path but file not found")
    else:
        logger.info('Processing blacklist extensions from command line string')
        content = input_value

    extensions: Set[str] = set()
    for item in content.split(','):
        ext = item.strip().lower()
        if not ext:
            continue
        if not ext.startswith('.'):
            ext = '.' + ext
        extensions.add(ext)

    if not extensions:
        logger.info('Blacklist input provided, but it resulted in an empty list!')
    logger.debug(f'Processed blacklist extensions: {extensions}')

    return sorted(extensions)
