import logging
from typing import List, Tuple

from bs4 import BeautifulSoup

from .constants import ANCHOR_TEXT_LIMIT
from .models import Reference, ReferenceKind
from .utils import to_absolute

logger = logging.getLogger(__name__)


def extract_references(html: str, page_url: str) -> Tuple[str, List[Reference]]:
    """
    Parse a page and collect its title plus every link and image reference.

    Links come first in document order, then images. Anchors and images whose
    target cannot be resolved to an absolute http(s) URL are dropped.
    """
    soup = BeautifulSoup(html, 'html.parser')

    title = 'Untitled'
    title_tag = soup.find('title')
    if title_tag and title_tag.get_text(strip=True):
        title = title_tag.get_text(strip=True)

    links: List[Reference] = []
    for link_tag in soup.find_all('a', href=True):
        absolute_url = to_absolute(link_tag['href'], page_url)
        if not absolute_url:
            logger.debug(f'Dropped unusable href {link_tag["href"]!r} on {page_url}')
            continue
        text = link_tag.get_text(' ', strip=True)[:ANCHOR_TEXT_LIMIT]
        links.append(Reference(url=absolute_url, text=text or '(no text)', kind=ReferenceKind.LINK))

    images: List[Reference] = []
    for img_tag in soup.find_all('img', src=True):
        absolute_url = to_absolute(img_tag['src'], page_url)
        if not absolute_url:
            continue
        alt = (img_tag.get('alt') or '').strip()[:ANCHOR_TEXT_LIMIT]
        images.append(Reference(url=absolute_url, text=alt or '(no alt text)', kind=ReferenceKind.IMAGE))

    return title, links + images
